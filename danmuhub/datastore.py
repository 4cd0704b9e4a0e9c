from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from datetime import date, datetime
from pathlib import Path
from threading import Lock, RLock, local
from typing import Any, Dict, List, Optional, Sequence

from werkzeug.security import check_password_hash, generate_password_hash

from . import schema
from .importer import ImportConfig, ImportReport, import_records
from .records import (
    HOTSPOT_CHUNK_SECONDS,
    MIN_VIDEO_DURATION,
    AuthInfo,
    DanmuRecord,
    Identity,
    Sex,
    UserRecord,
    VideoRecord,
    format_timestamp,
    utcnow_str,
)


logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 60_000
NEW_ID_FLOOR = 10_000_000
NEXT_VIDEO_LIMIT = 5

_BIRTHDAY_RE = re.compile(r"^(\d{1,2})月(\d{1,2})日$")
_TOGGLE_TABLES = {"user_like_video", "user_fav_video"}


class SQLiteConnectionManager:
    def __init__(self, db_path: Path, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._local = local()

    def open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA temp_store=MEMORY")
        conn.execute("PRAGMA cache_size=-8000")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = self.open_connection()
            self._local.connection = conn
        return conn

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class DataStore:
    def __init__(self, base_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / "danmu.sqlite3"
        self._connection_manager = SQLiteConnectionManager(self.db_path, busy_timeout_ms)
        self._setup_lock = RLock()
        self._import_lock = Lock()
        self._setup_complete = False
        self._setup_database()

    def _conn(self) -> sqlite3.Connection:
        return self._connection_manager.get_connection()

    def close(self) -> None:
        self._connection_manager.close_connection()

    def _setup_database(self) -> None:
        if self._setup_complete:
            return
        with self._setup_lock:
            if self._setup_complete:
                return
            conn = self._conn()
            schema.ensure_metadata(conn)
            state = schema.get_state(conn)
            if state is None:
                schema.reset_schema(conn)
                schema.finalize_schema(conn)
            elif state == schema.STATE_LOADING:
                logger.warning("上次导入未完成，数据库处于未就绪状态：%s", self.db_path)
            self._setup_complete = True

    # --- 管理与导入 ---------------------------------------------------

    def import_data(
        self,
        users: Sequence[UserRecord],
        videos: Sequence[VideoRecord],
        danmus: Sequence[DanmuRecord],
        config: Optional[ImportConfig] = None,
    ) -> ImportReport:
        with self._import_lock:
            return import_records(self._connection_manager.open_connection, users, videos, danmus, config)

    def truncate(self) -> None:
        schema.truncate(self._conn())

    def sum(self, a: int, b: int) -> int:
        row = self._conn().execute("SELECT ? + ?", (a, b)).fetchone()
        return row[0]

    def is_ready(self) -> bool:
        return schema.get_state(self._conn()) == schema.STATE_READY

    def row_counts(self) -> Dict[str, int]:
        return schema.row_counts(self._conn())

    # --- 认证 ---------------------------------------------------------

    @staticmethod
    def _mid_by_column(conn: sqlite3.Connection, column: str, value: Optional[str]) -> Optional[int]:
        if not value:
            return None
        row = conn.execute(f"SELECT mid FROM user_active WHERE {column} = ?", (value,)).fetchone()
        return row["mid"] if row else None

    def _authenticate(self, conn: sqlite3.Connection, auth: Optional[AuthInfo]) -> int:
        if auth is None:
            raise PermissionError("缺少认证信息")
        mid_match: Optional[int] = None
        if auth.mid and auth.mid > 0 and auth.password:
            row = conn.execute("SELECT pwd FROM user_active WHERE mid = ?", (auth.mid,)).fetchone()
            if row and row["pwd"] and check_password_hash(row["pwd"], auth.password):
                mid_match = auth.mid
        qq_match = self._mid_by_column(conn, "qqid", auth.qq)
        wechat_match = self._mid_by_column(conn, "wxid", auth.wechat)
        if qq_match is not None and wechat_match is not None and qq_match != wechat_match:
            raise PermissionError("QQ 与微信认证信息不一致")
        for candidate in (mid_match, qq_match, wechat_match):
            if candidate is not None:
                return candidate
        raise PermissionError("认证失败")

    def verify_auth(self, auth: Optional[AuthInfo]) -> int:
        return self._authenticate(self._conn(), auth)

    @staticmethod
    def _identity(conn: sqlite3.Connection, mid: int) -> Optional[str]:
        row = conn.execute("SELECT identity FROM user_active WHERE mid = ?", (mid,)).fetchone()
        return row["identity"] if row else None

    def _is_super(self, conn: sqlite3.Connection, mid: int) -> bool:
        return self._identity(conn, mid) == Identity.SUPER.value

    def require_super(self, auth: Optional[AuthInfo]) -> int:
        conn = self._conn()
        mid = self._authenticate(conn, auth)
        if not self._is_super(conn, mid):
            raise PermissionError("需要超级用户权限")
        return mid

    @staticmethod
    def _check_page(page_size: int, page_num: int) -> None:
        if page_size <= 0 or page_num <= 0:
            raise ValueError("分页参数必须为正整数")

    @staticmethod
    def _page(items: List[Any], page_size: int, page_num: int) -> List[Any]:
        offset = (page_num - 1) * page_size
        return items[offset : offset + page_size]

    # --- 用户 ---------------------------------------------------------

    @staticmethod
    def _validate_birthday(birthday: str) -> None:
        match = _BIRTHDAY_RE.match(birthday)
        if not match:
            raise ValueError("生日格式错误")
        try:
            date(2000, int(match.group(1)), int(match.group(2)))
        except ValueError:
            raise ValueError("生日格式错误") from None

    def register_user(
        self,
        name: str,
        password: str,
        sex: Any,
        birthday: Optional[str] = None,
        sign: Optional[str] = None,
        qq: Optional[str] = None,
        wechat: Optional[str] = None,
    ) -> int:
        name = (name or "").strip()
        if not name:
            raise ValueError("用户名不能为空")
        if not password:
            raise ValueError("密码不能为空")
        if sex is None or sex == "":
            raise ValueError("性别不能为空")
        parsed_sex = Sex.parse(sex)
        if birthday:
            self._validate_birthday(birthday)
        conn = self._conn()
        if self._mid_by_column(conn, "qqid", qq) is not None:
            raise ValueError("该 QQ 已被绑定")
        if self._mid_by_column(conn, "wxid", wechat) is not None:
            raise ValueError("该微信已被绑定")
        password_hash = generate_password_hash(password)
        with conn:
            row = conn.execute(
                """
                INSERT INTO user_info (mid, name, sex, birthday, level, sign, identity, pwd, qqid, wxid, coin, active)
                SELECT MAX(COALESCE(MAX(mid) + 1, 0), ?), ?, ?, ?, 0, ?, 'USER', ?, ?, ?, 0, 1 FROM user_info
                RETURNING mid
                """,
                (
                    NEW_ID_FLOOR,
                    name,
                    parsed_sex.value,
                    birthday or None,
                    sign,
                    password_hash,
                    qq or None,
                    wechat or None,
                ),
            ).fetchone()
        return row["mid"]

    def delete_account(self, auth: AuthInfo, mid: int) -> None:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            target_identity = self._identity(conn, mid)
            if target_identity is None:
                raise ValueError("未找到用户")
            if real_mid != mid and not (
                self._is_super(conn, real_mid) and target_identity == Identity.USER.value
            ):
                raise PermissionError("无权删除该用户")
            conn.execute("UPDATE user_info SET active = 0 WHERE mid = ?", (mid,))
            conn.execute(
                "UPDATE danmu_info SET active = 0 WHERE bv IN (SELECT bv FROM video_info WHERE owner_mid = ?)",
                (mid,),
            )
            conn.execute("UPDATE video_info SET active = 0 WHERE owner_mid = ?", (mid,))
            conn.execute("UPDATE danmu_info SET active = 0 WHERE sender_mid = ?", (mid,))

    def follow(self, auth: AuthInfo, followee_mid: int) -> bool:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            if real_mid == followee_mid:
                raise ValueError("不能关注自己")
            if self._identity(conn, followee_mid) is None:
                raise ValueError("未找到用户")
            removed = conn.execute(
                "DELETE FROM user_follow WHERE star_mid = ? AND fan_mid = ?",
                (followee_mid, real_mid),
            )
            if removed.rowcount:
                return False
            conn.execute(
                "INSERT INTO user_follow (star_mid, fan_mid) VALUES (?, ?)",
                (followee_mid, real_mid),
            )
            return True

    def get_user_info(self, mid: int) -> Dict[str, Any]:
        conn = self._conn()
        row = conn.execute("SELECT coin FROM user_active WHERE mid = ?", (mid,)).fetchone()
        if not row:
            raise ValueError("未找到用户")

        def column(sql: str) -> List[Any]:
            return [item[0] for item in conn.execute(sql, (mid,))]

        return {
            "mid": mid,
            "coin": row["coin"],
            "following": column(
                "SELECT f.star_mid FROM user_follow f JOIN user_active u ON u.mid = f.star_mid "
                "WHERE f.fan_mid = ? ORDER BY f.star_mid"
            ),
            "follower": column(
                "SELECT f.fan_mid FROM user_follow f JOIN user_active u ON u.mid = f.fan_mid "
                "WHERE f.star_mid = ? ORDER BY f.fan_mid"
            ),
            "watched": column(
                "SELECT r.bv FROM user_watch_video r JOIN video_active v ON v.bv = r.bv WHERE r.mid = ? ORDER BY r.bv"
            ),
            "liked": column(
                "SELECT r.bv FROM user_like_video r JOIN video_active v ON v.bv = r.bv WHERE r.mid = ? ORDER BY r.bv"
            ),
            "collected": column(
                "SELECT r.bv FROM user_fav_video r JOIN video_active v ON v.bv = r.bv WHERE r.mid = ? ORDER BY r.bv"
            ),
            # 自己的投稿包含未审核与未到发布时间的视频
            "posted": column("SELECT bv FROM video_active_super WHERE owner_mid = ? ORDER BY bv"),
        }

    # --- 视频 ---------------------------------------------------------

    @staticmethod
    def _get_video(conn: sqlite3.Connection, bv: str) -> Optional[sqlite3.Row]:
        if not bv:
            return None
        return conn.execute("SELECT * FROM video_active_super WHERE bv = ?", (bv,)).fetchone()

    def _searchable_video(self, conn: sqlite3.Connection, mid: int, bv: str) -> Optional[sqlite3.Row]:
        video = self._get_video(conn, bv)
        if video is None:
            return None
        if video["owner_mid"] == mid or self._is_super(conn, mid):
            return video
        public = conn.execute("SELECT 1 FROM video_active WHERE bv = ?", (bv,)).fetchone()
        return video if public else None

    @staticmethod
    def _check_video_request(
        conn: sqlite3.Connection,
        owner_mid: int,
        title: str,
        duration: float,
        public_time: Optional[datetime],
        exclude_bv: str = "",
    ) -> None:
        if not title or not title.strip():
            raise ValueError("视频标题不能为空")
        if duration is None or duration < MIN_VIDEO_DURATION:
            raise ValueError(f"视频时长不能少于 {MIN_VIDEO_DURATION} 秒")
        if public_time is not None and format_timestamp(public_time) < utcnow_str():
            raise ValueError("发布时间早于当前时间")
        duplicate = conn.execute(
            "SELECT 1 FROM video_active_super WHERE title = ? AND owner_mid = ? AND bv <> ?",
            (title, owner_mid, exclude_bv),
        ).fetchone()
        if duplicate:
            raise ValueError("已存在同名视频")

    @staticmethod
    def _generate_bv(conn: sqlite3.Connection) -> str:
        while True:
            candidate = f"BV{uuid.uuid4().hex[:15]}"
            if not conn.execute("SELECT 1 FROM video_info WHERE bv = ?", (candidate,)).fetchone():
                return candidate

    def post_video(
        self,
        auth: AuthInfo,
        title: str,
        description: Optional[str],
        duration: float,
        public_time: Optional[datetime] = None,
    ) -> str:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            self._check_video_request(conn, real_mid, title, duration, public_time)
            bv = self._generate_bv(conn)
            conn.execute(
                """
                INSERT INTO video_info (bv, title, owner_mid, commit_time, public_time, duration, descr, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (bv, title, real_mid, utcnow_str(), format_timestamp(public_time), duration, description),
            )
        return bv

    def delete_video(self, auth: AuthInfo, bv: str) -> None:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = self._get_video(conn, bv)
            if video is None:
                raise ValueError("未找到视频")
            if video["owner_mid"] != real_mid and not self._is_super(conn, real_mid):
                raise PermissionError("无权删除该视频")
            conn.execute("UPDATE video_info SET active = 0 WHERE bv = ?", (bv,))
            conn.execute("UPDATE danmu_info SET active = 0 WHERE bv = ?", (bv,))

    def update_video_info(
        self,
        auth: AuthInfo,
        bv: str,
        title: str,
        description: Optional[str],
        duration: float,
        public_time: Optional[datetime] = None,
    ) -> bool:
        """Returns True when the update revoked an existing review."""
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = self._get_video(conn, bv)
            if video is None:
                raise ValueError("未找到视频")
            if video["owner_mid"] != real_mid:
                raise PermissionError("只能修改自己的视频")
            if duration != video["duration"]:
                raise ValueError("视频时长不可修改")
            self._check_video_request(conn, real_mid, title, duration, public_time, exclude_bv=bv)
            new_public_time = format_timestamp(public_time)
            if (
                title == video["title"]
                and description == video["descr"]
                and new_public_time == video["public_time"]
            ):
                raise ValueError("视频信息未改变")
            conn.execute(
                "UPDATE video_info SET title = ?, descr = ?, public_time = ? WHERE bv = ?",
                (title, description, new_public_time, bv),
            )
            if video["reviewer_mid"] is None:
                return False
            conn.execute(
                "UPDATE video_info SET reviewer_mid = NULL, review_time = NULL WHERE bv = ?",
                (bv,),
            )
            return True

    @staticmethod
    def _relevance(words: Sequence[str], *texts: Optional[str]) -> int:
        haystacks = [(text or "").lower() for text in texts]
        return sum(haystack.count(word) for word in words for haystack in haystacks)

    def search_video(self, auth: AuthInfo, keywords: str, page_size: int, page_num: int) -> List[str]:
        words = [word.lower() for word in (keywords or "").split()]
        if not words:
            raise ValueError("搜索关键词不能为空")
        self._check_page(page_size, page_num)
        conn = self._conn()
        real_mid = self._authenticate(conn, auth)
        is_super = self._is_super(conn, real_mid)
        rows = conn.execute(
            """
            SELECT v.bv, v.title, v.descr, v.owner_mid, u.name AS owner_name,
                   (SELECT COUNT(*) FROM user_watch_video w WHERE w.bv = v.bv) AS views,
                   EXISTS (SELECT 1 FROM video_active p WHERE p.bv = v.bv) AS is_public
            FROM video_active_super v
            LEFT JOIN user_info u ON u.mid = v.owner_mid
            """
        ).fetchall()
        ranked = []
        for row in rows:
            if not (is_super or row["is_public"] or row["owner_mid"] == real_mid):
                continue
            relevance = self._relevance(words, row["title"], row["descr"], row["owner_name"])
            if relevance > 0:
                ranked.append((-relevance, -row["views"], row["bv"]))
        ranked.sort()
        return [bv for _, _, bv in self._page(ranked, page_size, page_num)]

    def average_view_rate(self, bv: str) -> Optional[float]:
        conn = self._conn()
        video = self._get_video(conn, bv)
        if video is None:
            raise ValueError("未找到视频")
        row = conn.execute(
            "SELECT COUNT(*) AS cnt, AVG(last_pos) AS avg_pos FROM user_watch_video WHERE bv = ?",
            (bv,),
        ).fetchone()
        if not row["cnt"] or not video["duration"]:
            return None
        return row["avg_pos"] / video["duration"]

    def get_hotspot(self, bv: str) -> List[int]:
        conn = self._conn()
        if self._get_video(conn, bv) is None:
            raise ValueError("未找到视频")
        rows = conn.execute(
            """
            SELECT CAST(show_time / ? AS INTEGER) AS chunk, COUNT(*) AS cnt
            FROM danmu_active WHERE bv = ?
            GROUP BY chunk
            """,
            (HOTSPOT_CHUNK_SECONDS, bv),
        ).fetchall()
        if not rows:
            return []
        top = max(row["cnt"] for row in rows)
        return sorted(row["chunk"] for row in rows if row["cnt"] == top)

    def review_video(self, auth: AuthInfo, bv: str) -> bool:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = self._get_video(conn, bv)
            if video is None:
                raise ValueError("未找到视频")
            if not self._is_super(conn, real_mid):
                raise PermissionError("需要超级用户权限")
            if video["owner_mid"] == real_mid:
                raise PermissionError("不能审核自己的视频")
            if video["reviewer_mid"] is not None:
                return False
            conn.execute(
                "UPDATE video_info SET reviewer_mid = ?, review_time = ? WHERE bv = ?",
                (real_mid, utcnow_str(), bv),
            )
            return True

    def coin_video(self, auth: AuthInfo, bv: str) -> bool:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = self._searchable_video(conn, real_mid, bv)
            if video is None:
                raise ValueError("未找到视频")
            if video["owner_mid"] == real_mid:
                raise PermissionError("不能给自己的视频投币")
            if conn.execute(
                "SELECT 1 FROM user_coin_video WHERE mid = ? AND bv = ?",
                (real_mid, bv),
            ).fetchone():
                return False
            balance = conn.execute("SELECT coin FROM user_info WHERE mid = ?", (real_mid,)).fetchone()
            if balance["coin"] <= 0:
                raise ValueError("硬币不足")
            conn.execute("INSERT INTO user_coin_video (mid, bv) VALUES (?, ?)", (real_mid, bv))
            conn.execute("UPDATE user_info SET coin = coin - 1 WHERE mid = ?", (real_mid,))
            return True

    def _toggle_video_relation(self, auth: AuthInfo, bv: str, table: str) -> bool:
        if table not in _TOGGLE_TABLES:
            raise ValueError(f"不支持的关系表：{table}")
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = self._searchable_video(conn, real_mid, bv)
            if video is None:
                raise ValueError("未找到视频")
            if video["owner_mid"] == real_mid:
                raise PermissionError("不能对自己的视频进行该操作")
            removed = conn.execute(f"DELETE FROM {table} WHERE mid = ? AND bv = ?", (real_mid, bv))
            if removed.rowcount:
                return False
            conn.execute(f"INSERT INTO {table} (mid, bv) VALUES (?, ?)", (real_mid, bv))
            return True

    def like_video(self, auth: AuthInfo, bv: str) -> bool:
        return self._toggle_video_relation(auth, bv, "user_like_video")

    def collect_video(self, auth: AuthInfo, bv: str) -> bool:
        return self._toggle_video_relation(auth, bv, "user_fav_video")

    # --- 弹幕 ---------------------------------------------------------

    @staticmethod
    def _has_watched(conn: sqlite3.Connection, mid: int, bv: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM user_watch_video WHERE mid = ? AND bv = ?",
            (mid, bv),
        ).fetchone()
        return row is not None

    def send_danmu(self, auth: AuthInfo, bv: str, content: str, time: float) -> int:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            video = conn.execute("SELECT duration FROM video_active WHERE bv = ?", (bv,)).fetchone()
            if video is None:
                raise ValueError("未找到视频")
            if not content or not content.strip():
                raise ValueError("弹幕内容不能为空")
            if not self._has_watched(conn, real_mid, bv):
                raise PermissionError("需要先观看视频")
            if time is None or time < 0 or time > video["duration"]:
                raise ValueError("弹幕时间超出视频范围")
            row = conn.execute(
                """
                INSERT INTO danmu_info (danmu_id, bv, sender_mid, show_time, content, post_time, active)
                SELECT MAX(COALESCE(MAX(danmu_id) + 1, 0), ?), ?, ?, ?, ?, ?, 1 FROM danmu_info
                RETURNING danmu_id
                """,
                (NEW_ID_FLOOR, bv, real_mid, time, content, utcnow_str()),
            ).fetchone()
        return row["danmu_id"]

    def display_danmu(
        self,
        bv: str,
        time_start: float,
        time_end: float,
        filter_duplicates: bool = False,
    ) -> List[int]:
        conn = self._conn()
        video = self._get_video(conn, bv)
        if video is None:
            raise ValueError("未找到视频")
        if time_start < 0 or time_start > time_end or time_end > video["duration"]:
            raise ValueError("时间范围无效")
        if filter_duplicates:
            sql = """
                SELECT danmu_id FROM (
                    SELECT danmu_id, show_time,
                           ROW_NUMBER() OVER (PARTITION BY content ORDER BY post_time, danmu_id) AS rn
                    FROM danmu_active
                    WHERE bv = ? AND show_time BETWEEN ? AND ?
                )
                WHERE rn = 1
                ORDER BY show_time, danmu_id
            """
        else:
            sql = """
                SELECT danmu_id FROM danmu_active
                WHERE bv = ? AND show_time BETWEEN ? AND ?
                ORDER BY show_time, danmu_id
            """
        return [row["danmu_id"] for row in conn.execute(sql, (bv, time_start, time_end))]

    def like_danmu(self, auth: AuthInfo, danmu_id: int) -> bool:
        conn = self._conn()
        with conn:
            real_mid = self._authenticate(conn, auth)
            danmu = conn.execute("SELECT bv FROM danmu_active WHERE danmu_id = ?", (danmu_id,)).fetchone()
            if danmu is None:
                raise ValueError("未找到弹幕")
            if not self._has_watched(conn, real_mid, danmu["bv"]):
                raise PermissionError("需要先观看视频")
            removed = conn.execute(
                "DELETE FROM user_like_danmu WHERE danmu_id = ? AND mid = ?",
                (danmu_id, real_mid),
            )
            if removed.rowcount:
                return False
            conn.execute(
                "INSERT INTO user_like_danmu (danmu_id, mid) VALUES (?, ?)",
                (danmu_id, real_mid),
            )
            return True

    # --- 推荐 ---------------------------------------------------------

    def recommend_next_video(self, bv: str) -> List[str]:
        conn = self._conn()
        if self._get_video(conn, bv) is None:
            raise ValueError("未找到视频")
        rows = conn.execute(
            """
            SELECT w.bv FROM user_watch_video w
            WHERE w.mid IN (SELECT mid FROM user_watch_video WHERE bv = ?)
              AND w.mid IN (SELECT mid FROM user_active)
              AND w.bv <> ?
              AND w.bv IN (SELECT bv FROM video_active_super)
            GROUP BY w.bv
            ORDER BY COUNT(*) DESC, w.bv
            LIMIT ?
            """,
            (bv, bv, NEXT_VIDEO_LIMIT),
        ).fetchall()
        return [row["bv"] for row in rows]

    def general_recommendations(self, page_size: int, page_num: int) -> List[str]:
        self._check_page(page_size, page_num)
        rows = self._conn().execute(
            """
            SELECT v.bv,
                   (COALESCE(l.cnt, 0) + COALESCE(c.cnt, 0) + COALESCE(f.cnt, 0) + COALESCE(d.cnt, 0)
                    + w.total_pos / v.duration) * 1.0 / w.cnt AS score
            FROM video_active_super v
            JOIN (SELECT bv, COUNT(*) AS cnt, SUM(last_pos) AS total_pos
                  FROM user_watch_video WHERE mid IN (SELECT mid FROM user_active)
                  GROUP BY bv) w ON w.bv = v.bv
            LEFT JOIN (SELECT bv, COUNT(*) AS cnt FROM user_like_video
                       WHERE mid IN (SELECT mid FROM user_active) GROUP BY bv) l ON l.bv = v.bv
            LEFT JOIN (SELECT bv, COUNT(*) AS cnt FROM user_coin_video
                       WHERE mid IN (SELECT mid FROM user_active) GROUP BY bv) c ON c.bv = v.bv
            LEFT JOIN (SELECT bv, COUNT(*) AS cnt FROM user_fav_video
                       WHERE mid IN (SELECT mid FROM user_active) GROUP BY bv) f ON f.bv = v.bv
            LEFT JOIN (SELECT bv, COUNT(*) AS cnt FROM danmu_active GROUP BY bv) d ON d.bv = v.bv
            WHERE v.duration > 0
            ORDER BY score DESC, v.bv
            LIMIT ? OFFSET ?
            """,
            (page_size, (page_num - 1) * page_size),
        ).fetchall()
        return [row["bv"] for row in rows]

    def recommend_videos_for_user(self, auth: AuthInfo, page_size: int, page_num: int) -> List[str]:
        self._check_page(page_size, page_num)
        conn = self._conn()
        real_mid = self._authenticate(conn, auth)
        rows = conn.execute(
            """
            WITH friends AS (
                SELECT star_mid AS mid FROM user_follow WHERE fan_mid = :me
                INTERSECT
                SELECT fan_mid AS mid FROM user_follow WHERE star_mid = :me
                INTERSECT
                SELECT mid FROM user_active
            ),
            candidates AS (
                SELECT w.bv, COUNT(*) AS cnt FROM user_watch_video w
                WHERE w.mid IN (SELECT mid FROM friends)
                  AND w.bv NOT IN (SELECT bv FROM user_watch_video WHERE mid = :me)
                GROUP BY w.bv
            )
            SELECT c.bv FROM candidates c
            JOIN video_active_super v ON v.bv = c.bv
            LEFT JOIN user_info u ON u.mid = v.owner_mid
            WHERE :is_super OR v.owner_mid = :me OR c.bv IN (SELECT bv FROM video_active)
            ORDER BY c.cnt DESC, u.level DESC, julianday(v.public_time) DESC, c.bv
            """,
            {"me": real_mid, "is_super": 1 if self._is_super(conn, real_mid) else 0},
        ).fetchall()
        if not rows:
            return self.general_recommendations(page_size, page_num)
        return self._page([row["bv"] for row in rows], page_size, page_num)

    def recommend_friends(self, auth: AuthInfo, page_size: int, page_num: int) -> List[int]:
        self._check_page(page_size, page_num)
        conn = self._conn()
        real_mid = self._authenticate(conn, auth)
        rows = conn.execute(
            """
            WITH mine AS (
                SELECT star_mid FROM user_follow
                WHERE fan_mid = :me AND star_mid IN (SELECT mid FROM user_active)
            )
            SELECT u.mid FROM user_follow f
            JOIN user_active u ON u.mid = f.fan_mid
            WHERE f.star_mid IN (SELECT star_mid FROM mine)
              AND f.fan_mid <> :me
              AND f.fan_mid NOT IN (SELECT star_mid FROM mine)
            GROUP BY u.mid, u.level
            ORDER BY COUNT(*) DESC, u.level DESC, u.mid
            LIMIT :limit OFFSET :offset
            """,
            {"me": real_mid, "limit": page_size, "offset": (page_num - 1) * page_size},
        ).fetchall()
        return [row["mid"] for row in rows]
