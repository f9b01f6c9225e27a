"""プロセス内で共有する長寿命オブジェクトの組み立て."""

from __future__ import annotations

from dataclasses import dataclass

from tracklens.api.services.aggregator import TrackingAggregator
from tracklens.api.services.ip_resolver import IPResolver
from tracklens.api.services.llm import SummaryService, create_summary_service
from tracklens.api.services.storage import JsonFileStore, KeyValueStore
from tracklens.config import Settings, load_settings
from tracklens.watchers.pump import EventPump
from tracklens.watchers.tab_focus import TabFocusTracker, TabRegistry


@dataclass
class TrackerRuntime:
    settings: Settings
    storage: KeyValueStore
    resolver: IPResolver
    aggregator: TrackingAggregator
    tabs: TabRegistry
    focus: TabFocusTracker
    pump: EventPump
    summarizer: SummaryService

    @classmethod
    def build(
        cls,
        settings: Settings,
        storage: KeyValueStore | None = None,
        resolver: IPResolver | None = None,
        summarizer: SummaryService | None = None,
    ) -> TrackerRuntime:
        storage = storage if storage is not None else JsonFileStore(settings.data_path)
        resolver = resolver or IPResolver(
            geo_url=settings.geo_api_url,
            dns_url=settings.dns_api_url,
            timeout_ms=settings.resolver_timeout_ms,
            failure_cooldown_s=settings.resolver_failure_cooldown_s,
        )
        aggregator = TrackingAggregator(resolver=resolver, storage=storage)
        aggregator.load()
        tabs = TabRegistry()
        return cls(
            settings=settings,
            storage=storage,
            resolver=resolver,
            aggregator=aggregator,
            tabs=tabs,
            focus=TabFocusTracker(tabs=tabs, sink=aggregator),
            pump=EventPump(aggregator, maxsize=settings.event_queue_size),
            summarizer=summarizer
            or create_summary_service(settings.llm_url, settings.llm_model),
        )


def create_runtime() -> TrackerRuntime:
    """環境変数の設定から TrackerRuntime を作る."""
    return TrackerRuntime.build(load_settings())
