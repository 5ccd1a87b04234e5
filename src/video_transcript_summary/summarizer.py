from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Mapping, Union

import requests

from .errors import RateLimitError, ServiceUnavailableError, SummarizationError
from .http_client import HttpClient, HttpResponse, RequestsHttpClient

logger = logging.getLogger(__name__)

NO_RESPONSE = "NO_RESPONSE"
EMPTY_SUMMARY = "EMPTY_SUMMARY"
TRANSIENT_RETRY_DELAY = 5.0

PROMPT_TEMPLATES = {
    "ko": (
        "다음은 YouTube 동영상의 자막입니다. 내용이 투자, 경제, 금융 시장과 관련이 없다면 "
        "다른 말 없이 정확히 NO_RESPONSE 라고만 답해주세요. 관련이 있다면 이 내용을 한국어로 "
        "간결하게 요약해주세요. 주요 내용과 핵심 포인트를 3-5문장으로 정리해주세요:\n\n"
    ),
    "en": (
        "This is a YouTube video transcript. If it is not about investing, the economy or "
        "financial markets, reply with exactly NO_RESPONSE and nothing else. Otherwise, "
        "summarize the main content and key points in 3-5 sentences:\n\n"
    ),
}


def build_prompt(transcript_text: str, language: str) -> str:
    """Pick the instruction template for ``language`` and append the transcript verbatim."""

    template = PROMPT_TEMPLATES.get(language) or PROMPT_TEMPLATES["en"]
    return template + transcript_text


@dataclass(frozen=True)
class Summarized:
    text: str


@dataclass(frozen=True)
class Skipped:
    reason: str = NO_RESPONSE


SummaryResult = Union[Summarized, Skipped]


def interpret_summary(text: str) -> SummaryResult:
    """Map provider text to a result; the bare sentinel means an intentional skip."""

    stripped = text.strip()
    if stripped == NO_RESPONSE:
        return Skipped(NO_RESPONSE)
    if not stripped:
        return Skipped(EMPTY_SUMMARY)
    return Summarized(stripped)


def summary_text(result: SummaryResult) -> str:
    """Text form of a result as stored in the summary cache."""

    if isinstance(result, Summarized):
        return result.text
    return NO_RESPONSE if result.reason == NO_RESPONSE else ""


@dataclass(frozen=True)
class RateLimitSignal:
    status: int
    retry_after_header: str | None = None
    retry_after_seconds: float | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    error_details: Any = None


@dataclass
class SummarizerSession:
    """Credential and rate-limit state shared by every call of one batch run."""

    credential_override: str | None = None
    failover_used: bool = False
    last_rate_limit: RateLimitSignal | None = None


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Resolve a ``Retry-After`` header given in seconds or as an HTTP-date."""

    if value is None or not value.strip():
        return None
    raw = value.strip()
    try:
        return max(0.0, float(raw))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max(0.0, (when - reference).total_seconds())


def _duration_seconds(value: Any) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("s"):
            text = text[:-1]
        try:
            return float(text)
        except ValueError:
            return None
    if isinstance(value, Mapping) and "seconds" in value:
        seconds = _duration_seconds(value.get("seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanos") or 0
        return seconds + float(nanos) / 1e9
    return None


def retry_delay_from_details(details: Any) -> float | None:
    """Find a structured retry delay (``retryDelay`` or ``{seconds: n}``) in error details."""

    if isinstance(details, Mapping):
        if "retryDelay" in details:
            delay = _duration_seconds(details["retryDelay"])
            if delay is not None:
                return delay
        if "seconds" in details:
            delay = _duration_seconds(details)
            if delay is not None:
                return delay
        for value in details.values():
            if isinstance(value, (Mapping, list)):
                delay = retry_delay_from_details(value)
                if delay is not None:
                    return delay
    elif isinstance(details, list):
        for item in details:
            delay = retry_delay_from_details(item)
            if delay is not None:
                return delay
    return None


def resolve_retry_after(
    header: str | None,
    details: Any = None,
    *,
    now: datetime | None = None,
) -> float | None:
    seconds = parse_retry_after(header, now=now)
    if seconds is not None:
        return seconds
    return retry_delay_from_details(details)


class GeminiProvider:
    """Google Gemini ``generateContent`` REST endpoint."""

    name = "gemini"
    api_key_env = "GEMINI_API_KEY"
    secondary_api_key_env = "GEMINI_API_KEY_SECONDARY"

    def __init__(
        self,
        *,
        model: str | None = None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        self.model = model or os.getenv("GEMINI_MODEL") or "gemini-1.5-flash"
        self.base_url = base_url.rstrip("/")

    def build_request(self, transcript_text: str, language: str, api_key: str) -> tuple[str, dict[str, Any], dict[str, str]]:
        payload = {"contents": [{"parts": [{"text": build_prompt(transcript_text, language)}]}]}
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        return f"{self.base_url}/models/{self.model}:generateContent", payload, headers

    @staticmethod
    def parse_text(payload: Any) -> str:
        try:
            parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise SummarizationError("Unexpected Gemini response payload") from exc
        texts = [part.get("text") for part in parts if isinstance(part, Mapping)]
        if not texts or not all(isinstance(text, str) for text in texts):
            raise SummarizationError("Gemini response content is not text")
        return "".join(texts)

    @staticmethod
    def error_status(payload: Any) -> str | None:
        if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
            status = payload["error"].get("status")
            return str(status) if status else None
        return None

    @staticmethod
    def error_details(payload: Any) -> Any:
        if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
            return payload["error"].get("details")
        return None


class OpenAIProvider:
    """OpenAI-compatible chat completions endpoint."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    secondary_api_key_env = "OPENAI_API_KEY_SECONDARY"

    def __init__(
        self,
        *,
        model: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.7,
        max_tokens: int | None = 500,
    ) -> None:
        self.model = model or os.getenv("OPENAI_MODEL") or "gpt-3.5-turbo"
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_request(self, transcript_text: str, language: str, api_key: str) -> tuple[str, dict[str, Any], dict[str, str]]:
        template = PROMPT_TEMPLATES.get(language) or PROMPT_TEMPLATES["en"]
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": template.strip().rstrip(":")},
                {"role": "user", "content": transcript_text},
            ],
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return f"{self.base_url}/chat/completions", payload, headers

    @staticmethod
    def parse_text(payload: Any) -> str:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise SummarizationError("Unexpected summarization response payload") from exc

        if not isinstance(content, str):
            raise SummarizationError("Summarization response content is not text")
        return content

    @staticmethod
    def error_status(payload: Any) -> str | None:
        if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
            code = payload["error"].get("code") or payload["error"].get("type")
            return str(code) if code else None
        return None

    @staticmethod
    def error_details(payload: Any) -> Any:
        if isinstance(payload, Mapping):
            return payload.get("error")
        return None


PROVIDERS: dict[str, Callable[..., Any]] = {
    GeminiProvider.name: GeminiProvider,
    OpenAIProvider.name: OpenAIProvider,
}


def create_provider(name: str, **kwargs: Any) -> GeminiProvider | OpenAIProvider:
    try:
        factory = PROVIDERS[name.lower()]
    except KeyError as exc:
        raise ValueError(f"Unsupported AI provider: {name}") from exc
    return factory(**kwargs)


class SummarizationClient:
    """Summarize transcript text with bounded retry and credential failover.

    Each attempt ends in one of four states:

    * success: the text is returned as ``Summarized`` (or ``Skipped`` for the
      ``NO_RESPONSE`` sentinel),
    * service unavailable: sleep ``retry_delay`` and try once more, then raise
      ``ServiceUnavailableError``,
    * rate limited: switch once per session to the secondary credential and
      restart the call, otherwise raise ``RateLimitError`` with the captured
      diagnostics,
    * anything else: raise ``SummarizationError``.
    """

    def __init__(
        self,
        provider: GeminiProvider | OpenAIProvider | str | None = None,
        *,
        api_key: str | None = None,
        secondary_api_key: str | None = None,
        session: SummarizerSession | None = None,
        http_client: HttpClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = TRANSIENT_RETRY_DELAY,
        max_transient_retries: int = 1,
        timeout: int = 120,
    ) -> None:
        if provider is None or isinstance(provider, str):
            provider = create_provider(provider or os.getenv("AI_PROVIDER") or GeminiProvider.name)
        self.provider = provider

        self.api_key = api_key or os.getenv(provider.api_key_env)
        if not self.api_key:
            raise RuntimeError(f"{provider.api_key_env} is not set")
        self.secondary_api_key = secondary_api_key or os.getenv(provider.secondary_api_key_env) or None

        self.session = session if session is not None else SummarizerSession()
        self.http_client = http_client or RequestsHttpClient()
        self.sleep = sleep
        self.retry_delay = retry_delay
        self.max_transient_retries = max_transient_retries
        self.timeout = timeout

    def summarize(self, transcript_text: str, *, language: str = "ko") -> SummaryResult:
        transient_retries = self.max_transient_retries
        while True:
            self.session.last_rate_limit = None
            api_key = self.session.credential_override or self.api_key
            response = self._send(transcript_text, language, api_key)

            if response.ok:
                return interpret_summary(self.provider.parse_text(response.payload))

            if self._is_unavailable(response):
                if transient_retries > 0:
                    transient_retries -= 1
                    logger.warning(
                        "%s unavailable (status %s); retrying in %.0fs",
                        self.provider.name,
                        response.status,
                        self.retry_delay,
                    )
                    self.sleep(self.retry_delay)
                    continue
                raise ServiceUnavailableError(
                    f"{self.provider.name} service unavailable after retry (status {response.status})",
                    status=response.status,
                )

            if self._is_rate_limited(response):
                if self._switch_credential(api_key):
                    transient_retries = self.max_transient_retries
                    continue
                signal = self._capture_rate_limit(response)
                self.session.last_rate_limit = signal
                raise RateLimitError(
                    f"{self.provider.name} rate limit exceeded (status {response.status})",
                    status=signal.status,
                    retry_after_header=signal.retry_after_header,
                    retry_after_seconds=signal.retry_after_seconds,
                    response_headers=signal.response_headers,
                    error_details=signal.error_details,
                )

            raise SummarizationError(
                f"{self.provider.name} summarization failed with status {response.status}: "
                f"{self._error_message(response)}"
            )

    def _send(self, transcript_text: str, language: str, api_key: str) -> HttpResponse:
        url, payload, headers = self.provider.build_request(transcript_text, language, api_key)
        try:
            return self.http_client.post_json(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SummarizationError("Summarization request failed") from exc

    def _is_unavailable(self, response: HttpResponse) -> bool:
        return response.status == 503 or self.provider.error_status(response.payload) == "UNAVAILABLE"

    def _is_rate_limited(self, response: HttpResponse) -> bool:
        status = self.provider.error_status(response.payload)
        return response.status == 429 or status in {"RESOURCE_EXHAUSTED", "rate_limit_exceeded"}

    def _switch_credential(self, used_key: str) -> bool:
        secondary = self.secondary_api_key
        if not secondary or self.session.failover_used or secondary == used_key:
            return False
        self.session.credential_override = secondary
        self.session.failover_used = True
        logger.warning("%s rate limited; switching to the secondary API key", self.provider.name)
        return True

    def _capture_rate_limit(self, response: HttpResponse) -> RateLimitSignal:
        header = response.header("retry-after")
        details = self.provider.error_details(response.payload)
        seconds = resolve_retry_after(header, details)
        logger.warning(
            "%s rate limit captured: retry-after=%s resolved=%s",
            self.provider.name,
            header,
            seconds,
        )
        return RateLimitSignal(
            status=response.status,
            retry_after_header=header,
            retry_after_seconds=seconds,
            response_headers=dict(response.headers),
            error_details=details,
        )

    @staticmethod
    def _error_message(response: HttpResponse) -> str:
        payload = response.payload
        if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
            message = payload["error"].get("message")
            if message:
                return str(message)
        return response.text[:200] or "no response body"
