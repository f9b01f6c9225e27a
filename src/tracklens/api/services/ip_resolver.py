"""ドメイン -> IP -> 位置情報 の解決 (正/負キャッシュ付き)."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import requests
from pydantic import ValidationError

from tracklens.model.models import UNKNOWN_IP, IPRecord
from tracklens.watchers.logger import logger

HTTP_OK = 200
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429
DNS_TYPE_A = 1

DEFAULT_TIMEOUT_MS = 3000
DEFAULT_FAILURE_COOLDOWN_S = 3600.0

LOOKUP_FAILED = "lookup_failed"
LOOKUP_CACHED_FAILED = "lookup_cached_failed"

GEO_FIELDS = "status,message,country,isp,org,proxy,hosting,mobile,query"

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})
LOCAL_RECORD = IPRecord(
    ip="127.0.0.1", country="Local", isp="Localhost", is_bogon=True
)


class IPResolver:
    """ip-api.com 互換の位置情報APIと DNS-over-HTTPS を使うリゾルバ.

    ``resolve`` は例外を送出しない. 失敗時は ip="Unknown" のレコードを返す.
    """

    def __init__(
        self,
        geo_url: str = "http://ip-api.com/json",
        dns_url: str = "https://dns.google/resolve",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        failure_cooldown_s: float = DEFAULT_FAILURE_COOLDOWN_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """初期化

        Args:
        geo_url: 位置情報APIのベースURL (末尾に /<ip or host> を付けて呼ぶ)
        dns_url: DNS-over-HTTPS JSON APIのURL
        timeout_ms: 各ネットワーク呼び出しのタイムアウト(ミリ秒)
        failure_cooldown_s: 失敗キャッシュの有効期間(秒)
        clock: 現在時刻(秒)を返す関数

        """
        self.geo_url = geo_url.rstrip("/")
        self.dns_url = dns_url
        self.timeout = timeout_ms / 1000
        self.failure_cooldown_s = failure_cooldown_s
        self._clock = clock

        self._lock = threading.Lock()
        self._cache: dict[str, IPRecord] = {}
        self._failures: dict[str, float] = {}

    # --- キャッシュ ---

    def reset(self) -> None:
        """両方のキャッシュを破棄する."""
        with self._lock:
            self._cache.clear()
            self._failures.clear()

    def cache_info(self) -> dict[str, int]:
        with self._lock:
            return {"cached": len(self._cache), "failed": len(self._failures)}

    def _cached(self, domain: str) -> IPRecord | None:
        with self._lock:
            return self._cache.get(domain)

    def _store(self, domain: str, record: IPRecord) -> IPRecord:
        with self._lock:
            self._cache[domain] = record
            self._failures.pop(domain, None)
        return record

    def _recently_failed(self, domain: str) -> bool:
        with self._lock:
            failed_at = self._failures.get(domain)
            if failed_at is None:
                return False
            if self._clock() - failed_at < self.failure_cooldown_s:
                return True
            del self._failures[domain]
            return False

    def _record_failure(self, domain: str) -> None:
        with self._lock:
            self._failures[domain] = self._clock()

    # --- 公開API ---

    def resolve(self, domain: str) -> IPRecord:
        """ドメインの IP レコードを返す (フォールバックチェーン)."""
        domain = domain.strip().lower().rstrip(".")

        cached = self._cached(domain)
        if cached is not None:
            return cached

        if self._recently_failed(domain):
            return IPRecord(ip=UNKNOWN_IP, error=LOOKUP_CACHED_FAILED)

        if domain in LOCAL_HOSTS:
            return self._store(domain, LOCAL_RECORD)

        if domain:
            record = self._lookup_geo(domain)
            if record is not None:
                return self._store(domain, record)

            ip = self._lookup_dns(domain)
            if ip is not None:
                record = self._lookup_geo(ip)
                if record is None:
                    record = IPRecord(ip=ip)
                return self._store(domain, record)

        logger.info("IP lookup failed for %r; backing off", domain)
        self._record_failure(domain)
        return IPRecord(ip=UNKNOWN_IP, error=LOOKUP_FAILED)

    # --- ネットワーク ---

    def _get_json(self, url: str, params: dict[str, str]) -> Any | None:
        """GETしてJSONを返す. 429/403/その他の失敗は None (ソフト失敗)."""
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.debug("Timeout: %s", url)
            return None
        except requests.RequestException as e:
            logger.debug("Request failed: %s (%s)", url, e)
            return None

        status_code: int = response.status_code
        if status_code in (HTTP_TOO_MANY_REQUESTS, HTTP_FORBIDDEN):
            logger.warning("Lookup rejected with HTTP %d: %s", status_code, url)
            return None
        if status_code != HTTP_OK:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _lookup_geo(self, query: str) -> IPRecord | None:
        data = self._get_json(f"{self.geo_url}/{query}", {"fields": GEO_FIELDS})
        if not isinstance(data, dict) or data.get("status") != "success":
            return None
        proxy = bool(data.get("proxy", False))
        try:
            return IPRecord(
                ip=data.get("query") or query,
                country=data.get("country") or UNKNOWN_IP,
                isp=data.get("isp") or UNKNOWN_IP,
                org=data.get("org") or None,
                is_vpn=proxy,
                is_proxy=proxy,
                is_hosting=bool(data.get("hosting", False)),
                is_mobile=bool(data.get("mobile", False)),
            )
        except ValidationError as e:
            logger.warning("Unexpected geo response for %s: %s", query, e.error_count())
            return None

    def _lookup_dns(self, domain: str) -> str | None:
        data = self._get_json(self.dns_url, {"name": domain, "type": "A"})
        if not isinstance(data, dict):
            return None
        answers = data.get("Answer")
        if not isinstance(answers, list):
            return None
        for answer in answers:
            if not isinstance(answer, dict):
                continue
            if answer.get("type") == DNS_TYPE_A and answer.get("data"):
                return str(answer["data"])
        return None
