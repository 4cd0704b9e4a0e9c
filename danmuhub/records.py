from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
MAX_LEVEL = 6
MIN_VIDEO_DURATION = 10
HOTSPOT_CHUNK_SECONDS = 10

USER_FILENAME = "user.json"
VIDEO_FILENAME = "video.json"
DANMU_FILENAME = "danmu.json"


logger = logging.getLogger(__name__)


def utcnow_str() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # 数据集中的时间戳为毫秒
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class Sex(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "Sex":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        aliases = {"男": cls.MALE, "女": cls.FEMALE, "保密": cls.UNKNOWN}
        if text in aliases:
            return aliases[text]
        try:
            return cls(text.upper())
        except ValueError:
            raise ValueError(f"无法识别的性别：{value!r}") from None


class Identity(str, Enum):
    USER = "USER"
    SUPER = "SUPER"

    @classmethod
    def parse(cls, value: Any) -> "Identity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            raise ValueError(f"无法识别的用户身份：{value!r}") from None


@dataclass
class AuthInfo:
    mid: int = 0
    password: Optional[str] = None
    qq: Optional[str] = None
    wechat: Optional[str] = None


@dataclass
class UserRecord:
    mid: int
    name: str
    sex: Sex = Sex.UNKNOWN
    birthday: Optional[str] = None
    level: int = 0
    sign: Optional[str] = None
    following: List[int] = field(default_factory=list)
    identity: Identity = Identity.USER
    password: Optional[str] = None
    qq: Optional[str] = None
    wechat: Optional[str] = None
    coin: int = 0


@dataclass
class VideoRecord:
    bv: str
    title: str
    owner_mid: int
    owner_name: str = ""
    commit_time: Optional[datetime] = None
    review_time: Optional[datetime] = None
    public_time: Optional[datetime] = None
    duration: float = 0.0
    description: Optional[str] = None
    reviewer: Optional[int] = None
    like: List[int] = field(default_factory=list)
    coin: List[int] = field(default_factory=list)
    favorite: List[int] = field(default_factory=list)
    viewer_mids: List[int] = field(default_factory=list)
    view_time: List[float] = field(default_factory=list)

    def watches(self) -> List[Tuple[int, float]]:
        return list(zip(self.viewer_mids, self.view_time))


@dataclass
class DanmuRecord:
    bv: str
    mid: int
    time: float
    content: str
    post_time: Optional[datetime] = None
    liked_by: List[int] = field(default_factory=list)


def _int_list(payload: Dict[str, Any], key: str) -> List[int]:
    return [int(item) for item in payload.get(key) or []]


def user_from_dict(payload: Dict[str, Any]) -> UserRecord:
    return UserRecord(
        mid=int(payload["mid"]),
        name=str(payload["name"]),
        sex=Sex.parse(payload.get("sex")),
        birthday=payload.get("birthday") or None,
        level=int(payload.get("level", 0)),
        sign=payload.get("sign"),
        following=_int_list(payload, "following"),
        identity=Identity.parse(payload.get("identity", "USER")),
        password=payload.get("password"),
        qq=payload.get("qq") or None,
        wechat=payload.get("wechat") or None,
        coin=int(payload.get("coin", 0)),
    )


def video_from_dict(payload: Dict[str, Any]) -> VideoRecord:
    reviewer = payload.get("reviewer")
    return VideoRecord(
        bv=str(payload["bv"]),
        title=str(payload["title"]),
        owner_mid=int(payload["owner_mid"]),
        owner_name=str(payload.get("owner_name", "")),
        commit_time=parse_timestamp(payload.get("commit_time")),
        review_time=parse_timestamp(payload.get("review_time")),
        public_time=parse_timestamp(payload.get("public_time")),
        duration=float(payload.get("duration", 0)),
        description=payload.get("description"),
        reviewer=int(reviewer) if reviewer is not None else None,
        like=_int_list(payload, "like"),
        coin=_int_list(payload, "coin"),
        favorite=_int_list(payload, "favorite"),
        viewer_mids=_int_list(payload, "viewer_mids"),
        view_time=[float(item) for item in payload.get("view_time") or []],
    )


def danmu_from_dict(payload: Dict[str, Any]) -> DanmuRecord:
    return DanmuRecord(
        bv=str(payload["bv"]),
        mid=int(payload["mid"]),
        time=float(payload["time"]),
        content=str(payload.get("content", "")),
        post_time=parse_timestamp(payload.get("post_time")),
        liked_by=_int_list(payload, "liked_by"),
    )


def _load_list(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        logger.warning("数据文件不存在，按空列表处理：%s", path)
        return []
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"数据文件格式错误（应为列表）：{path}")
    return [item for item in raw if isinstance(item, dict)]


def load_dataset(directory: Path) -> Tuple[List[UserRecord], List[VideoRecord], List[DanmuRecord]]:
    """Read ``user.json``, ``video.json`` and ``danmu.json`` from *directory*."""
    directory = Path(directory)
    users = [user_from_dict(item) for item in _load_list(directory / USER_FILENAME)]
    videos = [video_from_dict(item) for item in _load_list(directory / VIDEO_FILENAME)]
    danmus = [danmu_from_dict(item) for item in _load_list(directory / DANMU_FILENAME)]
    return users, videos, danmus
