"""Runtime settings read from the environment (and ``.env.local``)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_HIGH_RISK_COUNTRIES = ("North Korea", "Iran", "Syria")


def _csv(value: str) -> frozenset[str]:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """TrackLens 全体の設定."""

    data_path: Path = Path("./data/tracklens.json")
    host: str = "127.0.0.1"
    port: int = 5577
    geo_api_url: str = "http://ip-api.com/json"
    dns_api_url: str = "https://dns.google/resolve"
    resolver_timeout_ms: int = 3000
    resolver_failure_cooldown_s: float = 3600.0
    high_risk_countries: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_HIGH_RISK_COUNTRIES)
    )
    llm_url: str = "http://localhost:11434"
    llm_model: str = "llama3.2:3b-instruct-q8_0"
    event_queue_size: int = 1000


def load_settings(env_file: str | Path | None = ".env.local") -> Settings:
    """環境変数から Settings を構築する.

    ``env_file`` が存在すれば先に読み込む (既存の環境変数は上書きしない).
    """
    if env_file is not None and Path(env_file).exists():
        load_dotenv(dotenv_path=env_file, override=False)

    defaults = Settings()
    countries = os.getenv("HIGH_RISK_COUNTRIES")
    return Settings(
        data_path=Path(os.getenv("TRACKLENS_DATA_PATH") or defaults.data_path),
        host=os.getenv("TRACKLENS_HOST") or defaults.host,
        port=int(os.getenv("TRACKLENS_PORT") or defaults.port),
        geo_api_url=os.getenv("GEO_API_URL") or defaults.geo_api_url,
        dns_api_url=os.getenv("DNS_API_URL") or defaults.dns_api_url,
        resolver_timeout_ms=int(
            os.getenv("RESOLVER_TIMEOUT_MS") or defaults.resolver_timeout_ms
        ),
        resolver_failure_cooldown_s=float(
            os.getenv("RESOLVER_FAILURE_COOLDOWN_S")
            or defaults.resolver_failure_cooldown_s
        ),
        high_risk_countries=(
            _csv(countries) if countries else defaults.high_risk_countries
        ),
        llm_url=os.getenv("LLM_URL") or defaults.llm_url,
        llm_model=os.getenv("LLM_MODEL") or defaults.llm_model,
        event_queue_size=int(
            os.getenv("EVENT_QUEUE_SIZE") or defaults.event_queue_size
        ),
    )
