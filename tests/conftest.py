from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

from danmuhub import create_app
from danmuhub.datastore import DataStore
from danmuhub.importer import ImportConfig
from danmuhub.records import AuthInfo, DanmuRecord, Identity, Sex, UserRecord, VideoRecord


FAST_HASH = "pbkdf2:sha256:1"
PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)

FOLLOWING = {
    1: [3],
    2: [5],
    3: [5],
    5: [1, 2, 3],
    6: [2, 3],
    7: [2],
}


def make_auth(mid: int) -> AuthInfo:
    return AuthInfo(mid=mid, password=f"pw{mid}")


def build_users(count: int = 20) -> List[UserRecord]:
    users = []
    for mid in range(1, count + 1):
        users.append(
            UserRecord(
                mid=mid,
                name=f"user{mid}",
                sex=Sex.MALE if mid % 2 else Sex.FEMALE,
                birthday="1月1日",
                level=mid % 7,
                sign=None,
                following=list(FOLLOWING.get(mid, [])),
                identity=Identity.SUPER if mid == 1 else Identity.USER,
                password=f"pw{mid}",
                qq=f"qq{mid}",
                wechat=f"wx{mid}",
                coin=0 if mid == 20 else 5,
            )
        )
    return users


def build_videos() -> List[VideoRecord]:
    return [
        VideoRecord(
            bv="BV1",
            title="Python 入门教程",
            owner_mid=2,
            commit_time=PAST,
            review_time=PAST,
            public_time=PAST,
            duration=100,
            reviewer=1,
            like=[3],
            coin=[5],
            favorite=[1],
            viewer_mids=[1, 3, 5],
            view_time=[50, 100, 10],
        ),
        VideoRecord(
            bv="BV2",
            title="Python 进阶",
            owner_mid=3,
            commit_time=PAST,
            review_time=PAST,
            public_time=PAST,
            duration=200,
            reviewer=1,
            like=[1, 5],
            viewer_mids=[1, 5],
            view_time=[100, 200],
        ),
        VideoRecord(
            bv="BV3",
            title="未审核视频",
            owner_mid=2,
            commit_time=PAST,
            duration=60,
            viewer_mids=[3],
            view_time=[30],
        ),
        VideoRecord(
            bv="BV4",
            title="短视频",
            owner_mid=4,
            commit_time=PAST,
            review_time=PAST,
            public_time=PAST,
            duration=5,
            reviewer=1,
            viewer_mids=[2],
            view_time=[3],
        ),
    ]


def build_danmus() -> List[DanmuRecord]:
    return [
        DanmuRecord(bv="BV1", mid=3, time=5.0, content="hello", post_time=PAST, liked_by=[1, 5]),
        DanmuRecord(bv="BV1", mid=5, time=7.0, content="hello", post_time=PAST + timedelta(seconds=1)),
        DanmuRecord(bv="BV1", mid=1, time=2.0, content="first", post_time=PAST + timedelta(seconds=2), liked_by=[3]),
        DanmuRecord(bv="BV1", mid=1, time=15.0, content="world", post_time=PAST + timedelta(seconds=3)),
        DanmuRecord(bv="BV2", mid=5, time=30.0, content="nice", post_time=PAST, liked_by=[1]),
    ]


def build_dataset() -> Tuple[List[UserRecord], List[VideoRecord], List[DanmuRecord]]:
    return build_users(), build_videos(), build_danmus()


@pytest.fixture
def fast_config() -> ImportConfig:
    return ImportConfig(password_hash_method=FAST_HASH)


@pytest.fixture
def datastore(tmp_path):
    store = DataStore(tmp_path / "data", busy_timeout_ms=10_000)
    yield store
    store.close()


@pytest.fixture
def loaded(datastore, fast_config):
    users, videos, danmus = build_dataset()
    report = datastore.import_data(users, videos, danmus, fast_config)
    assert report.ok, report.failures
    return datastore


@pytest.fixture
def app(tmp_path):
    app = create_app({"TESTING": True, "DATA_DIR": str(tmp_path / "app-data"), "BUSY_TIMEOUT_MS": 10_000})
    users, videos, danmus = build_dataset()
    app.extensions["datastore"].import_data(users, videos, danmus, ImportConfig(password_hash_method=FAST_HASH))
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()
