from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from werkzeug.security import generate_password_hash

from . import schema
from .records import DanmuRecord, UserRecord, VideoRecord, format_timestamp


logger = logging.getLogger(__name__)

DEFAULT_FOLLOW_PARTITIONS = 9
DEFAULT_IMPORT_HASH_METHOD = "pbkdf2:sha256:1000"

Row = Sequence[Any]

INSERT_SQL: Dict[str, str] = {
    "user_info": (
        "INSERT INTO user_info (mid, name, sex, birthday, level, sign, identity, pwd, qqid, wxid, coin, active) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)"
    ),
    "video_info": (
        "INSERT INTO video_info (bv, title, owner_mid, commit_time, reviewer_mid, review_time, public_time, "
        "duration, descr, active) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)"
    ),
    "danmu_info": (
        "INSERT INTO danmu_info (danmu_id, bv, sender_mid, show_time, content, post_time, active) "
        "VALUES (?, ?, ?, ?, ?, ?, 1)"
    ),
    "user_follow": "INSERT INTO user_follow (star_mid, fan_mid) VALUES (?, ?)",
    "user_watch_video": "INSERT INTO user_watch_video (mid, bv, last_pos) VALUES (?, ?, ?)",
    "user_coin_video": "INSERT INTO user_coin_video (mid, bv) VALUES (?, ?)",
    "user_like_video": "INSERT INTO user_like_video (mid, bv) VALUES (?, ?)",
    "user_fav_video": "INSERT INTO user_fav_video (mid, bv) VALUES (?, ?)",
    "user_like_danmu": "INSERT INTO user_like_danmu (danmu_id, mid) VALUES (?, ?)",
}


class BulkImportError(RuntimeError):
    """A strict import had failing load tasks; the store was reset to empty."""

    def __init__(self, failures: Dict[str, str]):
        self.failures = dict(failures)
        super().__init__("批量导入失败：" + "，".join(sorted(self.failures)))


@dataclass(frozen=True)
class ImportConfig:
    follow_partitions: int = DEFAULT_FOLLOW_PARTITIONS
    strict: bool = False
    password_hash_method: str = DEFAULT_IMPORT_HASH_METHOD
    danmu_id_start: int = 1

    def __post_init__(self) -> None:
        if self.follow_partitions < 1:
            raise ValueError("follow_partitions 必须为正整数")
        if self.danmu_id_start < 1:
            raise ValueError("danmu_id_start 必须为正整数")


@dataclass
class ImportReport:
    row_counts: Dict[str, int] = field(default_factory=dict)
    danmu_ids: List[int] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class LoadTask:
    name: str
    sql: str
    rows: Callable[[], Iterable[Row]]


def partition_ranges(total: int, parts: int) -> List[range]:
    """Split ``range(total)`` into *parts* contiguous slices.

    Every slice but the last has ``total // parts`` items; the last one
    absorbs the remainder, so the slices are disjoint and cover every index.
    """
    if parts < 1:
        raise ValueError("分区数必须为正整数")
    if total < 0:
        raise ValueError("记录数不能为负数")
    size = total // parts
    ranges = [range(index * size, (index + 1) * size) for index in range(parts - 1)]
    ranges.append(range((parts - 1) * size, total))
    return ranges


def assign_danmu_ids(count: int, start: int = 1) -> List[int]:
    return list(range(start, start + count))


def _follow_rows(users: Sequence[UserRecord], indexes: range) -> Iterator[Row]:
    for index in indexes:
        user = users[index]
        for star_mid in user.following:
            yield (star_mid, user.mid)


def _video_relation_rows(videos: Sequence[VideoRecord], attribute: str) -> Iterator[Row]:
    for video in videos:
        for mid in getattr(video, attribute):
            yield (mid, video.bv)


class BulkImporter:
    def __init__(self, connect: Callable[[], sqlite3.Connection], config: ImportConfig | None = None):
        self._connect = connect
        self.config = config or ImportConfig()
        self._lock = threading.Lock()
        self._failures: Dict[str, str] = {}

    def _user_rows(self, users: Sequence[UserRecord]) -> Iterator[Row]:
        method = self.config.password_hash_method
        for user in users:
            password_hash = generate_password_hash(user.password, method=method) if user.password else None
            yield (
                user.mid,
                user.name,
                user.sex.value,
                user.birthday,
                user.level,
                user.sign,
                user.identity.value,
                password_hash,
                user.qq,
                user.wechat,
                user.coin,
            )

    @staticmethod
    def _video_rows(videos: Sequence[VideoRecord]) -> Iterator[Row]:
        for video in videos:
            yield (
                video.bv,
                video.title,
                video.owner_mid,
                format_timestamp(video.commit_time),
                video.reviewer,
                format_timestamp(video.review_time),
                format_timestamp(video.public_time),
                video.duration,
                video.description,
            )

    @staticmethod
    def _watch_rows(videos: Sequence[VideoRecord]) -> Iterator[Row]:
        for video in videos:
            for mid, last_pos in video.watches():
                yield (mid, video.bv, last_pos)

    @staticmethod
    def _danmu_rows(danmus: Sequence[DanmuRecord], danmu_ids: Sequence[int]) -> Iterator[Row]:
        for danmu_id, danmu in zip(danmu_ids, danmus):
            yield (danmu_id, danmu.bv, danmu.mid, danmu.time, danmu.content, format_timestamp(danmu.post_time))

    @staticmethod
    def _danmu_like_rows(danmus: Sequence[DanmuRecord], danmu_ids: Sequence[int]) -> Iterator[Row]:
        for danmu_id, danmu in zip(danmu_ids, danmus):
            for mid in danmu.liked_by:
                yield (danmu_id, mid)

    def build_tasks(
        self,
        users: Sequence[UserRecord],
        videos: Sequence[VideoRecord],
        danmus: Sequence[DanmuRecord],
        danmu_ids: Sequence[int],
    ) -> List[LoadTask]:
        tasks: List[LoadTask] = []
        for index, indexes in enumerate(partition_ranges(len(users), self.config.follow_partitions)):
            tasks.append(
                LoadTask(
                    f"user_follow[{index}]",
                    INSERT_SQL["user_follow"],
                    lambda indexes=indexes: _follow_rows(users, indexes),
                )
            )
        tasks.extend(
            [
                LoadTask("user_info", INSERT_SQL["user_info"], lambda: self._user_rows(users)),
                LoadTask("video_info", INSERT_SQL["video_info"], lambda: self._video_rows(videos)),
                LoadTask("danmu_info", INSERT_SQL["danmu_info"], lambda: self._danmu_rows(danmus, danmu_ids)),
                LoadTask("user_watch_video", INSERT_SQL["user_watch_video"], lambda: self._watch_rows(videos)),
                LoadTask(
                    "user_coin_video",
                    INSERT_SQL["user_coin_video"],
                    lambda: _video_relation_rows(videos, "coin"),
                ),
                LoadTask(
                    "user_like_video",
                    INSERT_SQL["user_like_video"],
                    lambda: _video_relation_rows(videos, "like"),
                ),
                LoadTask(
                    "user_fav_video",
                    INSERT_SQL["user_fav_video"],
                    lambda: _video_relation_rows(videos, "favorite"),
                ),
                LoadTask(
                    "user_like_danmu",
                    INSERT_SQL["user_like_danmu"],
                    lambda: self._danmu_like_rows(danmus, danmu_ids),
                ),
            ]
        )
        return tasks

    def _load(self, task: LoadTask) -> None:
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self._connect()
            with conn:
                cursor = conn.executemany(task.sql, task.rows())
            logger.info("%s 导入完成：%d 行", task.name, cursor.rowcount)
        except Exception as exc:  # 单个任务失败只记录，不影响其他任务
            logger.exception("导入 %s 失败", task.name)
            with self._lock:
                self._failures[task.name] = f"{type(exc).__name__}: {exc}"
        finally:
            if conn is not None:
                conn.close()

    def _run_tasks(self, tasks: Sequence[LoadTask]) -> None:
        threads: List[threading.Thread] = []
        for task in tasks:
            thread = threading.Thread(target=self._load, args=(task,), name=f"import-{task.name}")
            threads.append(thread)
            thread.start()

        for thread in threads:
            thread.join()

    def run(
        self,
        users: Sequence[UserRecord],
        videos: Sequence[VideoRecord],
        danmus: Sequence[DanmuRecord],
    ) -> ImportReport:
        start = time.perf_counter()
        with self._lock:
            self._failures = {}
        conn = self._connect()
        try:
            schema.reset_schema(conn)
            danmu_ids = assign_danmu_ids(len(danmus), self.config.danmu_id_start)
            tasks = self.build_tasks(users, videos, danmus, danmu_ids)
            logger.info(
                "开始导入：%d 个用户，%d 个视频，%d 条弹幕，%d 个并发任务",
                len(users),
                len(videos),
                len(danmus),
                len(tasks),
            )
            self._run_tasks(tasks)

            failures = dict(self._failures)
            if failures and self.config.strict:
                logger.warning("严格模式下有 %d 个导入任务失败，清空已导入数据", len(failures))
                schema.reset_schema(conn)
                raise BulkImportError(failures)

            schema.finalize_schema(conn)
            counts = schema.row_counts(conn)
        finally:
            conn.close()

        elapsed = time.perf_counter() - start
        if failures:
            logger.warning("导入完成但有任务失败：%s", "，".join(sorted(failures)))
        logger.info("导入完成，耗时 %.2f 秒", elapsed)
        return ImportReport(row_counts=counts, danmu_ids=danmu_ids, failures=failures, elapsed=elapsed)


def import_records(
    connect: Callable[[], sqlite3.Connection],
    users: Sequence[UserRecord],
    videos: Sequence[VideoRecord],
    danmus: Sequence[DanmuRecord],
    config: ImportConfig | None = None,
) -> ImportReport:
    return BulkImporter(connect, config).run(users, videos, danmus)


def summarize(report: ImportReport) -> List[Tuple[str, int]]:
    return sorted(report.row_counts.items())
