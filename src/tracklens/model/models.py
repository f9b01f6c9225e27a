"""トラッキングイベントと永続化レコードのデータモデル."""

from __future__ import annotations

import time
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from tracklens.watchers.logger import logger

__all__ = [
    "UNKNOWN_IP",
    "AnyTrackingEvent",
    "AutofillDetectedEvent",
    "AutofillEvent",
    "AutofillKind",
    "AutofillSubmittedEvent",
    "IPRecord",
    "MediaDeniedEvent",
    "MediaEndedEvent",
    "MediaEvent",
    "MediaKind",
    "MediaStartedEvent",
    "PageVisit",
    "PageVisitEvent",
    "RiskAssessment",
    "RiskLevel",
    "SensitiveFieldEvent",
    "SensitiveFieldRecord",
    "TabFocusState",
    "TrackingEvent",
    "TrackingStore",
    "now_ms",
    "parse_event",
]

UNKNOWN_IP = "Unknown"

# content.js はトラック種別 (video/audio) を送ってくることがある
_MEDIA_ALIASES = {
    "camera": "camera",
    "video": "camera",
    "microphone": "microphone",
    "audio": "microphone",
}


def now_ms() -> int:
    """現在時刻 (epoch ミリ秒)."""
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    """拡張機能の camelCase JSON をそのまま受け付ける基底モデル."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- 保存レコード ---


class IPRecord(_CamelModel):
    """ドメインの IP / 位置情報 (解決失敗時は ip="Unknown")."""

    model_config = ConfigDict(frozen=True)

    ip: str = UNKNOWN_IP
    country: str = UNKNOWN_IP
    isp: str = UNKNOWN_IP
    org: str | None = None
    is_vpn: bool = Field(default=False, alias="isVPN")
    is_proxy: bool = False
    is_bogon: bool = False
    is_hosting: bool = False
    is_mobile: bool = False
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.ip != UNKNOWN_IP


class PageVisit(_CamelModel):
    url: str
    domain: str
    timestamp: int
    ip_data: IPRecord | None = None


class MediaKind(str, Enum):
    STARTED = "started"
    ENDED = "ended"
    DENIED = "denied"


class MediaEvent(_CamelModel):
    kind: MediaKind
    media_types: set[Literal["camera", "microphone"]] = Field(default_factory=set)
    duration: int | None = None
    error: str | None = None
    url: str
    domain: str
    timestamp: int


class AutofillKind(str, Enum):
    DETECTED = "detected"
    SUBMITTED = "submitted"


class AutofillEvent(_CamelModel):
    kind: AutofillKind
    field_type: str | None = None
    field_name: str | None = None
    placeholder: str | None = None
    autofilled_field_count: int | None = None
    fields: list[dict[str, Any]] | None = None
    url: str
    domain: str
    timestamp: int


class SensitiveFieldRecord(_CamelModel):
    field_type: Literal["password", "email", "payment"]
    count: int = Field(ge=1)
    url: str
    domain: str
    timestamp: int


class TrackingStore(_CamelModel):
    """4つの追記専用コレクション. 追加順 == 到着順 (コレクション単位)."""

    page_visits: list[PageVisit] = Field(default_factory=list)
    media_access_events: list[MediaEvent] = Field(default_factory=list)
    autofill_events: list[AutofillEvent] = Field(default_factory=list)
    sensitive_field_events: list[SensitiveFieldRecord] = Field(default_factory=list)


class TabFocusState(BaseModel):
    """フォーカス中のタブ. 両フィールドは同時にセット/クリアされる."""

    active_tab_id: int | None = None
    focus_started_at: int | None = None

    @property
    def tracking(self) -> bool:
        return self.active_tab_id is not None


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    score: int = Field(ge=0)
    factors: tuple[str, ...] = ()


# --- 受信イベント (type で判別されるタグ付きユニオン) ---


class _EventBase(_CamelModel):
    url: str = ""
    domain: str = ""
    timestamp: int = Field(default_factory=now_ms)


class PageVisitEvent(_EventBase):
    type: Literal["PAGE_VISIT"] = "PAGE_VISIT"


class _MediaEventBase(_EventBase):
    media_type: set[Literal["camera", "microphone"]] = Field(default_factory=set)

    @field_validator("media_type", mode="before")
    @classmethod
    def normalize_media_type(cls, v: Any) -> set[str]:
        """配列でも単一のトラック種別でも camera/microphone の集合にする."""
        if v is None:
            return set()
        items = [v] if isinstance(v, str) else list(v)
        return {
            _MEDIA_ALIASES[str(item).lower()]
            for item in items
            if str(item).lower() in _MEDIA_ALIASES
        }


class MediaStartedEvent(_MediaEventBase):
    type: Literal["MEDIA_ACCESS_STARTED"] = "MEDIA_ACCESS_STARTED"


class MediaEndedEvent(_MediaEventBase):
    type: Literal["MEDIA_ACCESS_ENDED"] = "MEDIA_ACCESS_ENDED"
    duration: int | None = None


class MediaDeniedEvent(_MediaEventBase):
    type: Literal["MEDIA_ACCESS_DENIED"] = "MEDIA_ACCESS_DENIED"
    error: str | None = None


class AutofillDetectedEvent(_EventBase):
    type: Literal["AUTOFILL_DETECTED"] = "AUTOFILL_DETECTED"
    field_type: str | None = None
    field_name: str | None = None
    placeholder: str | None = None


class AutofillSubmittedEvent(_EventBase):
    type: Literal["AUTOFILL_SUBMITTED"] = "AUTOFILL_SUBMITTED"
    autofilled_field_count: int | None = None
    fields: list[dict[str, Any]] | None = None


class SensitiveFieldEvent(_EventBase):
    type: Literal["SENSITIVE_FIELD_DETECTED"] = "SENSITIVE_FIELD_DETECTED"
    field_type: Literal["password", "email", "payment"]
    count: int = Field(default=1, ge=1)


AnyTrackingEvent = (
    PageVisitEvent
    | MediaStartedEvent
    | MediaEndedEvent
    | MediaDeniedEvent
    | AutofillDetectedEvent
    | AutofillSubmittedEvent
    | SensitiveFieldEvent
)
TrackingEvent = Annotated[AnyTrackingEvent, Field(discriminator="type")]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(TrackingEvent)
_KNOWN_TYPES = {
    "PAGE_VISIT",
    "MEDIA_ACCESS_STARTED",
    "MEDIA_ACCESS_ENDED",
    "MEDIA_ACCESS_DENIED",
    "AUTOFILL_DETECTED",
    "AUTOFILL_SUBMITTED",
    "SENSITIVE_FIELD_DETECTED",
}


def parse_event(payload: Mapping[str, Any]) -> AnyTrackingEvent | None:
    """生のメッセージを TrackingEvent に変換する.

    未知の type と検証エラーは None (無視) になる.
    """
    kind = payload.get("type")
    if kind not in _KNOWN_TYPES:
        logger.debug("Ignoring event of unknown type: %r", kind)
        return None
    try:
        return _EVENT_ADAPTER.validate_python(dict(payload))
    except ValidationError as e:
        logger.warning("Dropping malformed %s event: %s", kind, e.error_count())
        return None
