import json
import os
import time
from collections.abc import Mapping
from typing import Any

import requests

from tracklens.watchers.logger import logger

HTTP_OK = 200
DEFAULT_LLM_URL = "http://localhost:11434"
DEFAULT_LLM_MODEL = "llama3.2:3b-instruct-q8_0"


class SummarizerError(RuntimeError):
    """要約を生成できなかった (ネットワーク/バックエンドのエラー)."""


class SummaryService:
    """Ollama (/api/generate) を使った行動要約クライアント."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        timeout: float = 120.0,
    ) -> None:
        """初期化

        Args:
        base_url: OllamaのベースURL（例: http://localhost:11434）
        model_name: 使用するモデル名（例: llama3.2:3b-instruct-q8_0）
        timeout: APIタイムアウト(秒)

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.generate_url = f"{self.base_url}/api/generate"

        self.system_prompt = """
You are a productivity and behaviour analysis assistant with expertise in
privacy, security, IP geolocation, and user engagement metrics.
""".strip()

        # 最後のAPI呼び出し時刻（レート制限用）
        self.last_call_time: float = 0.0
        self.min_call_interval = 1.0  # 最小呼び出し間隔（秒）

    def is_available(self) -> bool:
        """LLMサービスが利用可能かチェック."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        except requests.RequestException:
            return False
        else:
            status_code: int = response.status_code
            return status_code == HTTP_OK

    def _rate_limit(self) -> None:
        """レート制限を適用."""
        now = time.time()
        elapsed = now - self.last_call_time
        if elapsed < self.min_call_interval:
            time.sleep(self.min_call_interval - elapsed)
        self.last_call_time = time.time()

    def _build_prompt(self, activity: Mapping[str, Any], tracking_summary: str) -> str:
        """滞在時間とトラッキング要約からプロンプトを構築."""
        return f"""
{self.system_prompt}

USER BROWSING ACTIVITY:
{json.dumps(dict(activity), indent=2, ensure_ascii=False)}

USER INTERACTION TRACKING:
{tracking_summary}

Based on this data, provide analysis on:

1. **Behaviour Summary** - Key patterns in browsing habits
2. **IP & Geographic Analysis** - Analysis of the IP addresses involved
3. **Privacy & Security Assessment** - Camera/microphone access, autofill usage,
   sensitive fields, and potential risks
4. **Gentle Improvement Suggestions** - Privacy-respecting recommendations,
   framed positively

Format your response with clear sections and bullet points.
""".strip()

    def summarize(self, activity: Mapping[str, Any], tracking_summary: str) -> str:
        """行動の自然言語要約を返す.

        Args:
            activity: ドメインごとの滞在時間(ミリ秒)
            tracking_summary: build_tracking_summary() のテキスト

        Returns:
            str: モデルの回答

        Raises:
            SummarizerError: 通信失敗・タイムアウト・不正な応答

        """
        self._rate_limit()

        payload = {
            "model": self.model_name,
            "prompt": self._build_prompt(activity, tracking_summary),
            "stream": False,
        }

        try:
            response = requests.post(
                self.generate_url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.exceptions.Timeout as e:
            msg = "LLM timeout"
            raise SummarizerError(msg) from e
        except requests.RequestException as e:
            msg = f"LLM request failed: {e}"
            raise SummarizerError(msg) from e

        if response.status_code != HTTP_OK:
            msg = f"LLM error: HTTP {response.status_code}"
            raise SummarizerError(msg)

        try:
            text = response.json().get("response")
        except (ValueError, AttributeError) as e:
            msg = "LLM parse error"
            raise SummarizerError(msg) from e

        if not isinstance(text, str) or not text.strip():
            msg = "LLM returned an empty answer"
            raise SummarizerError(msg)

        logger.info("Summary generated (%d chars)", len(text))
        return text.strip()


# 便利関数
def create_summary_service(
    base_url: str | None = None,
    model_name: str | None = None,
) -> SummaryService:
    """要約サービスのファクトリ関数.

    環境変数で上書き可能:
    - LLM_URL: OllamaのベースURL
    - LLM_MODEL: 使用するモデル名
    """
    resolved_base = base_url or os.getenv("LLM_URL") or DEFAULT_LLM_URL
    resolved_model = model_name or os.getenv("LLM_MODEL") or DEFAULT_LLM_MODEL
    return SummaryService(base_url=resolved_base, model_name=resolved_model)
