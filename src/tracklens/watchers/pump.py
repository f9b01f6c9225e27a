"""コンテンツスクリプトからのメッセージを順番に集計器へ流すポンプ."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import Any, Protocol

from tracklens.watchers.logger import logger

DEFAULT_QUEUE_SIZE = 1000


class EventSink(Protocol):
    async def ingest(self, event: Mapping[str, Any]) -> None: ...


class EventPump:
    """有界キューと明示的なコンシューマループ.

    ``submit`` はブロックせず、満杯なら破棄する (高々1回配送).
    メッセージは到着順に1件ずつ独立して処理される.
    """

    def __init__(self, sink: EventSink, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        """初期化

        Args:
            sink: 取り込み先 (TrackingAggregator)
            maxsize: キューの最大長

        """
        self.sink = sink
        self.maxsize = maxsize
        self.running = False
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

        self.stats: dict[str, Any] = {
            "events_received": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "errors_total": 0,
            "start_time": None,
            "last_event_time": None,
        }

    def submit(self, payload: Mapping[str, Any]) -> bool:
        """メッセージをキューに積む. 満杯なら False."""
        try:
            self._queue.put_nowait(dict(payload))
        except asyncio.QueueFull:
            self.stats["events_dropped"] += 1
            logger.warning("Event queue full; dropped %s", payload.get("type"))
            return False
        self.stats["events_received"] += 1
        return True

    async def run_once(self) -> bool:
        """1件取り出して処理する. 成功時 True."""
        payload = await self._queue.get()
        try:
            await self.sink.ingest(payload)
        except Exception:
            self.stats["errors_total"] += 1
            logger.exception("Failed to ingest %s", payload.get("type"))
            return False
        else:
            self.stats["events_processed"] += 1
            self.stats["last_event_time"] = time.time()
            return True
        finally:
            self._queue.task_done()

    async def run(self) -> None:
        """stop() かキャンセルまで処理を続ける."""
        self.running = True
        self.stats["start_time"] = time.time()
        logger.info("Event pump started (queue size: %d)", self.maxsize)
        try:
            while self.running:
                await self.run_once()
        finally:
            self.running = False
            logger.info(
                "Event pump stopped: processed=%d dropped=%d errors=%d",
                self.stats["events_processed"],
                self.stats["events_dropped"],
                self.stats["errors_total"],
            )

    def stop(self) -> None:
        self.running = False

    async def join(self) -> None:
        """キューが空になるまで待つ."""
        await self._queue.join()

    def get_status(self) -> dict[str, Any]:
        """現在の状態を取得."""
        return {
            "running": self.running,
            "pending": self._queue.qsize(),
            "maxsize": self.maxsize,
            "stats": self.stats.copy(),
        }
