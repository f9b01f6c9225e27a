"""タブのフォーカス遷移から URL ごとの滞在時間を計測する."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol

from tracklens.model.models import TabFocusState, now_ms
from tracklens.watchers.logger import logger

STATUS_COMPLETE = "complete"


class TabLookupError(LookupError):
    """タブが存在しない (閉じられた) ."""


class TabQuery(Protocol):
    def url_of(self, tab_id: int) -> str | None: ...


class DwellTimeSink(Protocol):
    def record_dwell_time(self, url: str, duration_ms: int) -> None: ...


class TabRegistry:
    """拡張機能から通知されたタブごとの現在URL."""

    def __init__(self) -> None:
        self._urls: dict[int, str | None] = {}
        self._lock = threading.Lock()

    def update(self, tab_id: int, url: str | None) -> None:
        with self._lock:
            if url or tab_id not in self._urls:
                self._urls[tab_id] = url or None

    def remove(self, tab_id: int) -> None:
        with self._lock:
            self._urls.pop(tab_id, None)

    def url_of(self, tab_id: int) -> str | None:
        with self._lock:
            if tab_id not in self._urls:
                msg = f"no such tab: {tab_id}"
                raise TabLookupError(msg)
            return self._urls[tab_id]


class TabFocusTracker:
    """Idle / Tracking(tab, since) の状態機械.

    遷移のたびに開いている区間を締めて sink に加算する. 定期フラッシュは
    しないので、次の遷移前に落ちると最後の区間は失われる.
    """

    def __init__(
        self,
        tabs: TabQuery,
        sink: DwellTimeSink,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.tabs = tabs
        self.sink = sink
        self._clock = clock
        self._state = TabFocusState()
        self._lock = threading.Lock()

    @property
    def state(self) -> TabFocusState:
        with self._lock:
            return self._state.model_copy()

    def on_tab_activated(self, tab_id: int, now: int | None = None) -> None:
        """別のタブ (または同じタブ) がアクティブになった."""
        now = self._clock() if now is None else now
        with self._lock:
            self._flush(now)
            self._state = TabFocusState(active_tab_id=tab_id, focus_started_at=now)

    def on_tab_updated(
        self, tab_id: int, status: str | None, now: int | None = None
    ) -> None:
        """フォーカス中のタブの読み込み完了時のみ区間を締め直す."""
        if status != STATUS_COMPLETE:
            return
        now = self._clock() if now is None else now
        with self._lock:
            if self._state.active_tab_id != tab_id:
                return
            self._flush(now)
            self._state = TabFocusState(active_tab_id=tab_id, focus_started_at=now)

    def _flush(self, now: int) -> None:
        state = self._state
        if state.active_tab_id is None or state.focus_started_at is None:
            return

        duration = max(0, now - state.focus_started_at)
        try:
            url = self.tabs.url_of(state.active_tab_id)
        except TabLookupError:
            logger.debug("Tab %s is gone; dropping %dms", state.active_tab_id, duration)
            return
        if not url:
            return
        self.sink.record_dwell_time(url, duration)
