from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional

from .records import MAX_LEVEL


logger = logging.getLogger(__name__)


STATE_KEY = "schema_state"
STATE_LOADING = "loading"
STATE_READY = "ready"

VIEWS = ("danmu_active", "video_active_super", "video_active", "user_active")
RELATION_TABLES = (
    "user_like_danmu",
    "user_fav_video",
    "user_like_video",
    "user_coin_video",
    "user_watch_video",
    "user_follow",
)
ENTITY_TABLES = ("danmu_info", "video_info", "user_info")
DATA_TABLES = RELATION_TABLES + ENTITY_TABLES


class SchemaError(RuntimeError):
    """Resetting or finalizing the schema failed; the store is not usable."""


_METADATA_DDL = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_TABLES_DDL = """
CREATE TABLE user_info (
    mid INTEGER NOT NULL,
    name TEXT NOT NULL,
    sex TEXT,
    birthday TEXT,
    level INTEGER NOT NULL DEFAULT 0,
    sign TEXT,
    identity TEXT NOT NULL DEFAULT 'USER',
    pwd TEXT,
    qqid TEXT,
    wxid TEXT,
    coin INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE video_info (
    bv TEXT NOT NULL,
    title TEXT NOT NULL,
    owner_mid INTEGER NOT NULL,
    commit_time TEXT,
    reviewer_mid INTEGER,
    review_time TEXT,
    public_time TEXT,
    duration REAL,
    descr TEXT,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE danmu_info (
    danmu_id INTEGER NOT NULL,
    bv TEXT NOT NULL,
    sender_mid INTEGER NOT NULL,
    show_time REAL NOT NULL,
    content TEXT,
    post_time TEXT,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE user_follow (
    star_mid INTEGER NOT NULL,
    fan_mid INTEGER NOT NULL
);

CREATE TABLE user_watch_video (
    mid INTEGER NOT NULL,
    bv TEXT NOT NULL,
    last_pos REAL NOT NULL
);

CREATE TABLE user_coin_video (
    mid INTEGER NOT NULL,
    bv TEXT NOT NULL
);

CREATE TABLE user_like_video (
    mid INTEGER NOT NULL,
    bv TEXT NOT NULL
);

CREATE TABLE user_fav_video (
    mid INTEGER NOT NULL,
    bv TEXT NOT NULL
);

CREATE TABLE user_like_danmu (
    danmu_id INTEGER NOT NULL,
    mid INTEGER NOT NULL
);
"""

_KEYS_DDL = """
CREATE UNIQUE INDEX user_info_pk ON user_info (mid);
CREATE UNIQUE INDEX video_info_pk ON video_info (bv);
CREATE UNIQUE INDEX danmu_info_pk ON danmu_info (danmu_id);
CREATE UNIQUE INDEX user_follow_pk ON user_follow (star_mid, fan_mid);
CREATE UNIQUE INDEX user_watch_video_pk ON user_watch_video (mid, bv);
CREATE UNIQUE INDEX user_coin_video_pk ON user_coin_video (mid, bv);
CREATE UNIQUE INDEX user_like_video_pk ON user_like_video (mid, bv);
CREATE UNIQUE INDEX user_fav_video_pk ON user_fav_video (mid, bv);
CREATE UNIQUE INDEX user_like_danmu_pk ON user_like_danmu (danmu_id, mid);
"""

_INDEXES_DDL = """
CREATE INDEX user_info_name_idx ON user_info (name) WHERE active = 1;
CREATE INDEX user_info_qqid_idx ON user_info (qqid) WHERE active = 1;
CREATE INDEX user_info_wxid_idx ON user_info (wxid) WHERE active = 1;
CREATE INDEX video_info_title_idx ON video_info (title) WHERE active = 1;
CREATE INDEX video_info_owner_idx ON video_info (owner_mid) WHERE active = 1;
CREATE INDEX danmu_info_bv_idx ON danmu_info (bv) WHERE active = 1;
CREATE INDEX danmu_info_sender_idx ON danmu_info (sender_mid) WHERE active = 1;
CREATE INDEX danmu_info_show_time_idx ON danmu_info (show_time) WHERE active = 1;
CREATE INDEX user_follow_star_idx ON user_follow (star_mid);
CREATE INDEX user_follow_fan_idx ON user_follow (fan_mid);
CREATE INDEX user_watch_video_mid_idx ON user_watch_video (mid);
CREATE INDEX user_watch_video_bv_idx ON user_watch_video (bv);
CREATE INDEX user_coin_video_mid_idx ON user_coin_video (mid);
CREATE INDEX user_coin_video_bv_idx ON user_coin_video (bv);
CREATE INDEX user_like_video_mid_idx ON user_like_video (mid);
CREATE INDEX user_like_video_bv_idx ON user_like_video (bv);
CREATE INDEX user_fav_video_mid_idx ON user_fav_video (mid);
CREATE INDEX user_fav_video_bv_idx ON user_fav_video (bv);
CREATE INDEX user_like_danmu_mid_idx ON user_like_danmu (mid);
CREATE INDEX user_like_danmu_danmu_id_idx ON user_like_danmu (danmu_id);
"""


def _user_check(row: str = "") -> str:
    return (
        f"{row}level NOT BETWEEN 0 AND {MAX_LEVEL} "
        f"OR {row}coin < 0 "
        f"OR {row}identity NOT IN ('USER', 'SUPER')"
    )


_TRIGGERS_DDL = f"""
CREATE TRIGGER user_info_check_insert BEFORE INSERT ON user_info
WHEN {_user_check("NEW.")}
BEGIN
    SELECT RAISE(ABORT, 'user_info check constraint failed');
END;

CREATE TRIGGER user_info_check_update BEFORE UPDATE ON user_info
WHEN {_user_check("NEW.")}
BEGIN
    SELECT RAISE(ABORT, 'user_info check constraint failed');
END;
"""

_VIEWS_DDL = """
CREATE VIEW user_active AS
    SELECT * FROM user_info WHERE active = 1;

CREATE VIEW video_active AS
    SELECT * FROM video_info
    WHERE active = 1
      AND reviewer_mid IS NOT NULL
      AND (public_time IS NULL OR julianday(public_time) <= julianday('now'));

CREATE VIEW video_active_super AS
    SELECT * FROM video_info WHERE active = 1;

CREATE VIEW danmu_active AS
    SELECT * FROM danmu_info WHERE active = 1;
"""


def ensure_metadata(conn: sqlite3.Connection) -> None:
    with conn:
        conn.executescript(_METADATA_DDL)


def get_state(conn: sqlite3.Connection) -> Optional[str]:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (STATE_KEY,)).fetchone()
    return row[0] if row else None


def _state_sql(state: str) -> str:
    return (
        "INSERT INTO metadata (key, value) VALUES "
        f"('{STATE_KEY}', '{state}') ON CONFLICT(key) DO UPDATE SET value = excluded.value;"
    )


def _run_script(conn: sqlite3.Connection, script: str, action: str) -> None:
    try:
        conn.executescript(f"BEGIN;\n{script}\nCOMMIT;")
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.rollback()
        raise SchemaError(f"{action}失败：{exc}") from exc


def reset_schema(conn: sqlite3.Connection) -> None:
    """Drop every view and table in dependency order and recreate empty tables."""
    ensure_metadata(conn)
    drops = [f"DROP VIEW IF EXISTS {name};" for name in VIEWS]
    drops += [f"DROP TABLE IF EXISTS {name};" for name in DATA_TABLES]
    script = "\n".join(drops) + _TABLES_DDL + _state_sql(STATE_LOADING)
    _run_script(conn, script, "重建数据库结构")
    logger.info("数据库结构已重置")


def _check_violations(conn: sqlite3.Connection) -> List[str]:
    problems: List[str] = []
    bad_users = conn.execute(f"SELECT COUNT(*) FROM user_info WHERE {_user_check()}").fetchone()[0]
    if bad_users:
        problems.append(f"user_info 中有 {bad_users} 行违反检查约束")
    return problems


def finalize_schema(conn: sqlite3.Connection) -> None:
    """Apply keys, indexes, checks and views once the bulk load is complete.

    The store is only considered consistent after this succeeds; until then
    the ``schema_state`` metadata stays ``loading``.
    """
    problems = _check_violations(conn)
    if problems:
        raise SchemaError("；".join(problems))
    script = _KEYS_DDL + _INDEXES_DDL + _TRIGGERS_DDL + _VIEWS_DDL + _state_sql(STATE_READY)
    _run_script(conn, script, "添加约束与索引")
    logger.info("约束、索引与视图已创建")


def truncate(conn: sqlite3.Connection) -> None:
    with conn:
        for table in DATA_TABLES:
            conn.execute(f"DELETE FROM {table}")


def row_counts(conn: sqlite3.Connection) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for table in reversed(DATA_TABLES):
        counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    return counts
