"""トラッキングイベントの取り込みと集計状態の管理."""

from __future__ import annotations

import asyncio
import math
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from pydantic import ValidationError

from tracklens.api.services.ip_resolver import IPResolver
from tracklens.api.services.storage import (
    ACTIVITY_KEY,
    TRACKING_KEY,
    KeyValueStore,
    StorageError,
)
from tracklens.model.models import (
    AnyTrackingEvent,
    AutofillDetectedEvent,
    AutofillEvent,
    AutofillKind,
    AutofillSubmittedEvent,
    MediaDeniedEvent,
    MediaEndedEvent,
    MediaEvent,
    MediaKind,
    MediaStartedEvent,
    PageVisit,
    PageVisitEvent,
    SensitiveFieldEvent,
    SensitiveFieldRecord,
    TrackingStore,
    parse_event,
)
from tracklens.watchers.logger import logger


def _is_duration(value: Any) -> bool:
    """保存された滞在時間として使える値か (bool と inf/NaN は不可)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


class TrackingAggregator:
    """TrackingStore と滞在時間マップ (DwellTimeMap) の唯一の書き手.

    変更はすべて ``_mutation`` ブロック内で行い、ブロック終了時に
    該当レコードをストアへ書き戻す. 書き戻しの失敗はログに残すだけで
    メモリ上の状態は巻き戻さない.
    """

    def __init__(self, resolver: IPResolver, storage: KeyValueStore) -> None:
        self.resolver = resolver
        self.storage = storage
        self._lock = threading.Lock()
        self._tracking = TrackingStore()
        self._activity: dict[str, int] = {}

    # --- 永続化 ---

    def load(self) -> None:
        """ストアから activity / tracking を復元する."""
        try:
            saved = self.storage.get([ACTIVITY_KEY, TRACKING_KEY])
        except StorageError:
            logger.exception("Could not load persisted state; starting empty")
            return

        with self._lock:
            try:
                self._tracking = TrackingStore.model_validate(
                    saved.get(TRACKING_KEY) or {}
                )
            except ValidationError:
                logger.exception("Persisted tracking data is malformed; discarded")
                self._tracking = TrackingStore()

            activity = saved.get(ACTIVITY_KEY) or {}
            if not isinstance(activity, Mapping):
                logger.error("Persisted activity is not a mapping; discarded")
                activity = {}
            self._activity = {
                str(url): int(ms)
                for url, ms in activity.items()
                if _is_duration(ms)
            }

    def _dump(self, key: str) -> Any:
        if key == TRACKING_KEY:
            return self._tracking.model_dump(mode="json", by_alias=True)
        return dict(self._activity)

    @contextmanager
    def _mutation(self, key: str) -> Iterator[None]:
        """ロックを保持して read-modify-write し、必ず書き戻す."""
        with self._lock:
            try:
                yield
            finally:
                snapshot = self._dump(key)
                try:
                    self.storage.set({key: snapshot})
                except StorageError:
                    logger.exception("Failed to persist %s", key)

    # --- 読み出し ---

    def tracking_snapshot(self) -> TrackingStore:
        with self._lock:
            return self._tracking.model_copy(deep=True)

    def activity_snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._activity)

    # --- 取り込み ---

    def record_dwell_time(self, url: str, duration_ms: int) -> None:
        """URL の累積滞在時間に duration_ms を加算する."""
        duration_ms = max(0, int(duration_ms))
        with self._mutation(ACTIVITY_KEY):
            self._activity[url] = self._activity.get(url, 0) + duration_ms

    async def ingest(self, event: AnyTrackingEvent | Mapping[str, Any]) -> None:
        """イベントを対応するコレクションに追加する.

        ページ訪問は IP 解決 (ワーカースレッド) を待ってから追加するため、
        他のコレクションとの順序は保証されない. 書き戻しはコレクション全体を
        シリアライズするので、イベントループを塞がないようワーカースレッドで行う.
        """
        if isinstance(event, Mapping):
            parsed = parse_event(event)
            if parsed is None:
                return
            event = parsed

        if isinstance(event, PageVisitEvent):
            ip_data = await asyncio.to_thread(self.resolver.resolve, event.domain)
            visit = PageVisit(
                url=event.url,
                domain=event.domain,
                timestamp=event.timestamp,
                ip_data=ip_data,
            )
            await asyncio.to_thread(self._append_visit, visit)
            logger.info("Tracked PAGE_VISIT %s (ip=%s)", event.domain, ip_data.ip)
            return

        await asyncio.to_thread(self._append, event)

    def _append_visit(self, visit: PageVisit) -> None:
        with self._mutation(TRACKING_KEY):
            self._tracking.page_visits.append(visit)

    def _append(self, event: AnyTrackingEvent) -> None:
        common = {"url": event.url, "domain": event.domain, "timestamp": event.timestamp}

        record: MediaEvent | AutofillEvent | SensitiveFieldRecord
        if isinstance(event, MediaStartedEvent):
            record = MediaEvent(
                kind=MediaKind.STARTED, media_types=event.media_type, **common
            )
        elif isinstance(event, MediaEndedEvent):
            record = MediaEvent(
                kind=MediaKind.ENDED,
                media_types=event.media_type,
                duration=event.duration,
                **common,
            )
        elif isinstance(event, MediaDeniedEvent):
            record = MediaEvent(
                kind=MediaKind.DENIED,
                media_types=event.media_type,
                error=event.error,
                **common,
            )
        elif isinstance(event, AutofillDetectedEvent):
            record = AutofillEvent(
                kind=AutofillKind.DETECTED,
                field_type=event.field_type,
                field_name=event.field_name,
                placeholder=event.placeholder,
                **common,
            )
        elif isinstance(event, AutofillSubmittedEvent):
            record = AutofillEvent(
                kind=AutofillKind.SUBMITTED,
                autofilled_field_count=event.autofilled_field_count,
                fields=event.fields,
                **common,
            )
        elif isinstance(event, SensitiveFieldEvent):
            record = SensitiveFieldRecord(
                field_type=event.field_type, count=event.count, **common
            )
        else:
            logger.debug("Ignoring unsupported event %r", event)
            return

        with self._mutation(TRACKING_KEY):
            if isinstance(record, MediaEvent):
                self._tracking.media_access_events.append(record)
            elif isinstance(record, AutofillEvent):
                self._tracking.autofill_events.append(record)
            else:
                self._tracking.sensitive_field_events.append(record)
        logger.info("Tracked %s on %s", event.type, event.domain)
