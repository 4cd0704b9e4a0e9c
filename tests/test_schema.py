from __future__ import annotations

import sqlite3

import pytest

from danmuhub import schema
from danmuhub.datastore import SQLiteConnectionManager


USER_SQL = (
    "INSERT INTO user_info (mid, name, level, identity, coin) VALUES (?, ?, ?, ?, ?)"
)


@pytest.fixture
def conn(tmp_path):
    connection = SQLiteConnectionManager(tmp_path / "schema.sqlite3").open_connection()
    yield connection
    connection.close()


def _objects(conn, kind):
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = ? AND name NOT LIKE 'sqlite_%' ORDER BY name",
        (kind,),
    )
    return [row[0] for row in rows]


def test_reset_creates_empty_tables_without_keys(conn):
    schema.reset_schema(conn)
    assert set(schema.DATA_TABLES) <= set(_objects(conn, "table"))
    assert _objects(conn, "index") == []
    assert _objects(conn, "view") == []
    assert schema.get_state(conn) == schema.STATE_LOADING
    assert all(count == 0 for count in schema.row_counts(conn).values())


def test_reset_twice_yields_same_schema(conn):
    schema.reset_schema(conn)
    conn.execute(USER_SQL, (1, "a", 0, "USER", 0))
    conn.commit()
    first = _objects(conn, "table")
    schema.reset_schema(conn)
    assert _objects(conn, "table") == first
    assert schema.row_counts(conn)["user_info"] == 0


def test_finalize_creates_keys_indexes_and_views(conn):
    schema.reset_schema(conn)
    schema.finalize_schema(conn)
    indexes = _objects(conn, "index")
    assert "user_info_pk" in indexes
    assert "user_like_danmu_pk" in indexes
    assert "danmu_info_show_time_idx" in indexes
    assert _objects(conn, "view") == sorted(schema.VIEWS)
    assert schema.get_state(conn) == schema.STATE_READY


def test_reset_after_finalize_drops_views(conn):
    schema.reset_schema(conn)
    schema.finalize_schema(conn)
    schema.reset_schema(conn)
    assert _objects(conn, "view") == []
    assert schema.get_state(conn) == schema.STATE_LOADING


def test_finalize_rejects_duplicate_keys(conn):
    schema.reset_schema(conn)
    conn.executemany(USER_SQL, [(1, "a", 0, "USER", 0), (1, "b", 0, "USER", 0)])
    conn.commit()
    with pytest.raises(schema.SchemaError):
        schema.finalize_schema(conn)
    assert schema.get_state(conn) == schema.STATE_LOADING
    assert _objects(conn, "view") == []


@pytest.mark.parametrize(
    "row",
    [
        (1, "a", 7, "USER", 0),
        (1, "a", -1, "USER", 0),
        (1, "a", 0, "USER", -3),
        (1, "a", 0, "ADMIN", 0),
    ],
)
def test_finalize_rejects_check_violations(conn, row):
    schema.reset_schema(conn)
    conn.execute(USER_SQL, row)
    conn.commit()
    with pytest.raises(schema.SchemaError):
        schema.finalize_schema(conn)


def test_checks_enforced_after_finalize(conn):
    schema.reset_schema(conn)
    schema.finalize_schema(conn)
    with pytest.raises(sqlite3.DatabaseError):
        with conn:
            conn.execute(USER_SQL, (1, "a", 0, "USER", -1))
    with conn:
        conn.execute(USER_SQL, (1, "a", 6, "SUPER", 0))
    with pytest.raises(sqlite3.DatabaseError):
        with conn:
            conn.execute("UPDATE user_info SET level = 8 WHERE mid = 1")


def test_truncate_keeps_schema(conn):
    schema.reset_schema(conn)
    schema.finalize_schema(conn)
    with conn:
        conn.execute(USER_SQL, (1, "a", 0, "USER", 0))
        conn.execute("INSERT INTO user_follow (star_mid, fan_mid) VALUES (1, 2)")
    schema.truncate(conn)
    assert all(count == 0 for count in schema.row_counts(conn).values())
    assert "user_info_pk" in _objects(conn, "index")
    assert schema.get_state(conn) == schema.STATE_READY
