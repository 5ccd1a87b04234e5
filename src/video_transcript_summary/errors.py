from __future__ import annotations

from typing import Any, Mapping


class NotFoundError(LookupError):
    """Raised when every transcript strategy failed for a video."""

    def __init__(self, video_id: str, attempts: list[str], last_error: BaseException | None = None) -> None:
        self.video_id = video_id
        self.attempts = list(attempts)
        self.last_error = last_error
        reason = ", ".join(self.attempts) if self.attempts else "no attempts"
        if last_error is None:
            last = "None"
        else:
            last = f"{last_error.__class__.__name__}: {last_error}"
        super().__init__(
            f"No transcript found for video {video_id}; tried: {reason}; last error: {last}"
        )


class SummarizationError(RuntimeError):
    """Raised when the summarization provider fails for a single item."""


class ServiceUnavailableError(SummarizationError):
    """The provider stayed unavailable after the transient retry."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitError(SummarizationError):
    """The provider quota is exhausted and no failover credential is left."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 429,
        retry_after_header: str | None = None,
        retry_after_seconds: float | None = None,
        response_headers: Mapping[str, str] | None = None,
        error_details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after_header = retry_after_header
        self.retry_after_seconds = retry_after_seconds
        self.response_headers = dict(response_headers or {})
        self.error_details = error_details


class RecordStoreError(RuntimeError):
    """Raised when a record store cannot be read or written."""
