"""FastAPI app exposing the TrackLens tracker to the browser extension."""

import asyncio
import contextlib
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tracklens.api.services import runtime as runtime_module
from tracklens.api.services.llm import SummarizerError
from tracklens.api.services.reports import (
    build_tracking_summary,
    domain_activity,
    ip_analysis,
    screen_time_summary,
)
from tracklens.api.services.runtime import TrackerRuntime
from tracklens.api.services.storage import CACHED_ANALYSIS_KEY, StorageError
from tracklens.config import load_settings
from tracklens.watchers.logger import logger

INSIGHTS_UNAVAILABLE = "insights unavailable"
SHUTDOWN_DRAIN_TIMEOUT = 5.0  # 秒. 超えた分のイベントは破棄

# グローバルな状態管理
STATE: dict[str, Any] = {
    "runtime": None,
    "pump_task": None,
    "logs": deque(maxlen=100),  # ログを保存 (最大100件)
}

# --- ロギング ---


def log_message(message: str) -> None:
    """ロガーに出力し、ログキューにも追加する."""
    logger.info(message)
    STATE["logs"].append(message)


def _runtime() -> TrackerRuntime:
    runtime: TrackerRuntime | None = STATE["runtime"]
    if runtime is None:
        raise HTTPException(status_code=503, detail="Tracker not initialised")
    return runtime


# --- アプリケーションのライフサイクル ---


async def _drain_pump(runtime: TrackerRuntime) -> None:
    """キューに残ったイベントを上限時間まで処理する."""
    try:
        await asyncio.wait_for(runtime.pump.join(), timeout=SHUTDOWN_DRAIN_TIMEOUT)
    except asyncio.TimeoutError:
        log_message(
            f"Shutdown: dropped {runtime.pump.get_status()['pending']} queued events"
        )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """起動時にランタイムを組み立ててポンプを回し、終了時に止める."""
    runtime = runtime_module.create_runtime()
    STATE["runtime"] = runtime
    STATE["pump_task"] = asyncio.create_task(runtime.pump.run())
    log_message(f"Tracker started; data file: {runtime.settings.data_path}")
    try:
        yield
    finally:
        await _drain_pump(runtime)
        runtime.pump.stop()
        task: asyncio.Task[None] = STATE["pump_task"]
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        STATE["runtime"] = None
        STATE["pump_task"] = None


app = FastAPI(
    title="TrackLens",
    description="Browser activity tracking, IP risk scoring and summaries",
    lifespan=lifespan,
)


# --- Pydanticモデル定義 ---


class TabMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tab_id: int


class TabActivation(TabMessage):
    url: str | None = None


class TabUpdate(TabMessage):
    status: str | None = None
    url: str | None = None


# --- APIエンドポイント定義 ---


@app.post("/events")
async def receive_event(payload: dict[str, Any]) -> dict[str, Any]:
    """コンテンツスクリプトのメッセージを受け取る (処理は非同期)."""
    queued = _runtime().pump.submit(payload)
    return {"received": True, "queued": queued}


@app.post("/tabs/activated")
async def tab_activated(message: TabActivation) -> dict[str, Any]:
    """直前のタブの区間を締める. url があれば新しいタブの URL として登録する."""
    runtime = _runtime()
    await asyncio.to_thread(runtime.focus.on_tab_activated, message.tab_id)
    if message.url:
        runtime.tabs.update(message.tab_id, message.url)
    return {"ok": True, "active_tab_id": message.tab_id}


@app.post("/tabs/updated")
async def tab_updated(message: TabUpdate) -> dict[str, Any]:
    runtime = _runtime()
    # 区間は更新前の URL に加算する
    await asyncio.to_thread(
        runtime.focus.on_tab_updated, message.tab_id, message.status
    )
    runtime.tabs.update(message.tab_id, message.url)
    return {"ok": True}


@app.post("/tabs/removed")
async def tab_removed(message: TabMessage) -> dict[str, Any]:
    _runtime().tabs.remove(message.tab_id)
    return {"ok": True}


@app.get("/activity")
async def get_activity() -> dict[str, Any]:
    """URLごとの滞在時間とドメイン単位の集計."""
    activity = _runtime().aggregator.activity_snapshot()
    return {"activity": activity, "summary": asdict(screen_time_summary(activity))}


@app.get("/tracking")
async def get_tracking() -> dict[str, Any]:
    tracking = _runtime().aggregator.tracking_snapshot()
    return tracking.model_dump(mode="json", by_alias=True)


@app.get("/ip-analysis")
async def get_ip_analysis() -> list[dict[str, Any]]:
    """ドメインごとの IP 情報とリスク評価 (読み出し時に算出)."""
    runtime = _runtime()
    tracking = runtime.aggregator.tracking_snapshot()
    entries = ip_analysis(tracking.page_visits, runtime.settings.high_risk_countries)
    return [
        {
            "domain": entry.domain,
            "url": entry.url,
            "ipData": (
                entry.ip_data.model_dump(mode="json", by_alias=True)
                if entry.ip_data
                else None
            ),
            "visitCount": entry.visit_count,
            "risk": entry.risk.model_dump(mode="json"),
        }
        for entry in entries
    ]


@app.post("/analyze")
async def analyze() -> dict[str, Any]:
    """LLMで行動要約を生成する. 失敗時は前回の結果とエラーを返す."""
    runtime = _runtime()
    activity = dict(domain_activity(runtime.aggregator.activity_snapshot()))
    summary = build_tracking_summary(runtime.aggregator.tracking_snapshot())

    try:
        analysis = await asyncio.to_thread(
            runtime.summarizer.summarize, activity, summary
        )
    except SummarizerError as e:
        log_message(f"Analysis failed: {e}")
        try:
            cached = runtime.storage.get([CACHED_ANALYSIS_KEY])
        except StorageError:
            logger.exception("Could not read cached analysis")
            cached = {}
        return {
            "analysis": cached.get(CACHED_ANALYSIS_KEY),
            "error": INSIGHTS_UNAVAILABLE,
        }

    try:
        runtime.storage.set({CACHED_ANALYSIS_KEY: analysis})
    except StorageError:
        logger.exception("Could not cache analysis")
    log_message("Analysis generated")
    return {"analysis": analysis, "error": None}


@app.get("/status")
async def get_current_status() -> dict[str, Any]:
    """現在のシステム状態を取得する."""
    runtime = _runtime()
    return {
        "pump": runtime.pump.get_status(),
        "resolver": runtime.resolver.cache_info(),
        "focus": runtime.focus.state.model_dump(),
        "logs": list(STATE["logs"]),
    }


def run() -> None:
    """uvicorn でサーバーを起動する."""
    settings = load_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
