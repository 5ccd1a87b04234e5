from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from .acquirer import TranscriptAcquirer
from .errors import NotFoundError, RateLimitError, ServiceUnavailableError, SummarizationError
from .merge import merge_records
from .models import SummaryRecord, VideoDetails, VideoInfo, extract_video_id
from .normalizer import normalize_segments, plain_text
from .store import (
    JsonRecordStore,
    ProcessedLedger,
    RecordSink,
    RecordStore,
    TranscriptCache,
    load_existing_records,
    utc_now_iso,
)
from .summarizer import (
    Skipped,
    SummarizationClient,
    SummaryResult,
    interpret_summary,
    summary_text,
)

logger = logging.getLogger(__name__)

SystemicError = Union[RateLimitError, ServiceUnavailableError]


@dataclass(frozen=True)
class Failed:
    kind: str
    message: str


ItemOutcome = Union[SummaryRecord, Skipped, Failed]


@dataclass
class BatchReport:
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    records: list[SummaryRecord] = field(default_factory=list)
    outcomes: dict[str, ItemOutcome] = field(default_factory=dict)
    halted_by: Optional[SystemicError] = None
    saved_count: int | None = None

    @property
    def total(self) -> int:
        return self.succeeded + self.skipped + self.failed

    @property
    def halted(self) -> bool:
        return self.halted_by is not None


def _build_record(video: VideoInfo, details: VideoDetails, summary: str) -> SummaryRecord:
    processed_at = utc_now_iso()
    return SummaryRecord(
        title=video.title or details.title or video.video_id,
        channel_name=video.channel_name or details.channel_name or "unknown",
        published_at=video.published_at or details.published_at or processed_at,
        url=video.url,
        summary=summary,
        processed_at=processed_at,
    )


def process_video(
    video: VideoInfo,
    *,
    acquirer: TranscriptAcquirer,
    summarizer: SummarizationClient,
    language: str = "ko",
    ledger: Optional[ProcessedLedger] = None,
    log_sink: Optional[RecordSink] = None,
    cache: Optional[TranscriptCache] = None,
) -> SummaryRecord | Skipped:
    """Acquire, normalize and summarize one video.

    Cached transcript or summary text is reused when present. Every outcome is
    written to ``ledger``; errors are recorded as failures and re-raised.
    """

    video_id = video.video_id
    try:
        details = VideoDetails()
        cached_summary = cache.read_summary(video_id) if cache is not None else None
        if cached_summary is not None:
            logger.info("Using cached summary for %s", video_id)
            result: SummaryResult = interpret_summary(cached_summary)
        else:
            transcript_text = cache.read_transcript(video_id) if cache is not None else None
            if transcript_text is not None:
                logger.info("Using cached transcript for %s", video_id)
            else:
                transcript = acquirer.acquire(video_id, language)
                segments = normalize_segments(transcript.segments)
                if not segments:
                    raise NotFoundError(
                        video_id,
                        transcript.attempts + [f"{transcript.source}:{language}(empty after normalization)"],
                    )
                details = transcript.details
                transcript_text = plain_text(segments)
                logger.info(
                    "Transcript for %s: %d segments (%d after normalization)",
                    video_id,
                    len(transcript.segments),
                    len(segments),
                )
                if cache is not None:
                    cache.write_transcript(video_id, transcript_text)

            result = summarizer.summarize(transcript_text, language=language)
            if cache is not None:
                cache.write_summary(video_id, summary_text(result))

        if isinstance(result, Skipped):
            logger.info("Skipping %s: %s", video_id, result.reason)
            if ledger is not None:
                ledger.mark(video_id, "success", result.reason)
            return result

        record = _build_record(video, details, result.text)
        if log_sink is not None:
            log_sink.append(record)
        if ledger is not None:
            ledger.mark(video_id, "success")
        return record
    except Exception as exc:
        if ledger is not None:
            ledger.mark(video_id, "failed", str(exc) or exc.__class__.__name__)
        raise


def select_pending(
    videos: Iterable[VideoInfo],
    existing: Sequence[SummaryRecord],
    *,
    ledger: Optional[ProcessedLedger] = None,
    cache: Optional[TranscriptCache] = None,
    retry_failed: bool = False,
) -> list[VideoInfo]:
    """Drop videos that are already published or already in the ledger.

    A ledger entry is ignored when the cache holds a transcript without a
    summary, and failed entries are ignored when ``retry_failed`` is set.
    """

    published: set[str] = set()
    for record in existing:
        try:
            published.add(extract_video_id(record.url))
        except ValueError:
            continue

    pending: list[VideoInfo] = []
    seen: set[str] = set()
    for video in videos:
        if video.video_id in seen:
            continue
        seen.add(video.video_id)
        if video.video_id in published:
            logger.info("Already published: %s", video.video_id)
            continue
        entry = ledger.get(video.video_id) if ledger is not None else None
        if entry is None:
            pending.append(video)
        elif cache is not None and cache.has_pending_summary(video.video_id):
            pending.append(video)
        elif retry_failed and entry.status == "failed":
            pending.append(video)
    return pending


def _process_all(
    videos: Sequence[VideoInfo],
    report: BatchReport,
    *,
    acquirer: TranscriptAcquirer,
    summarizer: SummarizationClient,
    language: str,
    ledger: Optional[ProcessedLedger],
    log_sink: Optional[RecordSink],
    cache: Optional[TranscriptCache],
) -> None:
    for video in videos:
        logger.info("Processing %s (%s)", video.video_id, video.title or video.url)
        try:
            outcome = process_video(
                video,
                acquirer=acquirer,
                summarizer=summarizer,
                language=language,
                ledger=ledger,
                log_sink=log_sink,
                cache=cache,
            )
        except (RateLimitError, ServiceUnavailableError) as exc:
            report.failed += 1
            report.outcomes[video.video_id] = Failed("rate_limit" if isinstance(exc, RateLimitError) else "service_unavailable", str(exc))
            raise
        except NotFoundError as exc:
            logger.error("No transcript for %s: %s", video.video_id, exc)
            report.failed += 1
            report.outcomes[video.video_id] = Failed("not_found", str(exc))
            continue
        except SummarizationError as exc:
            logger.error("Summarization failed for %s: %s", video.video_id, exc)
            report.failed += 1
            report.outcomes[video.video_id] = Failed("summarization", str(exc))
            continue
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while processing %s", video.video_id)
            report.failed += 1
            report.outcomes[video.video_id] = Failed("error", str(exc) or exc.__class__.__name__)
            continue

        report.outcomes[video.video_id] = outcome
        if isinstance(outcome, Skipped):
            report.skipped += 1
        else:
            report.succeeded += 1
            report.records.append(outcome)


def flush_records(
    records: Sequence[SummaryRecord],
    existing: Sequence[SummaryRecord],
    store: RecordStore,
) -> list[SummaryRecord]:
    merged = merge_records(existing, records)
    store.save(merged)
    logger.info("Saved %d records (%d new)", len(merged), len(records))
    return merged


def log_halt(error: SystemicError) -> None:
    if isinstance(error, ServiceUnavailableError):
        logger.error("Provider unavailable (status %s); stopping the batch", error.status)
        return

    logger.error("Provider rate limit (status %s); stopping the batch", error.status)
    if error.retry_after_seconds is not None:
        logger.error(
            "retry-after: %s (%.0fs, ~%.2fh)",
            error.retry_after_header or "none",
            error.retry_after_seconds,
            error.retry_after_seconds / 3600,
        )
    else:
        logger.error("retry-after: %s (unknown delay)", error.retry_after_header or "none")
    if error.response_headers:
        for key, value in sorted(error.response_headers.items()):
            logger.error("  %s: %s", key, value)
    else:
        logger.error("response headers: (empty)")
    if error.error_details is not None:
        logger.error("error details: %s", json.dumps(error.error_details, ensure_ascii=False, default=str))


def run_batch(
    videos: Iterable[VideoInfo],
    *,
    acquirer: Optional[TranscriptAcquirer] = None,
    summarizer: Optional[SummarizationClient] = None,
    store: Optional[RecordStore] = None,
    remote_store: Optional[RecordStore] = None,
    ledger: Optional[ProcessedLedger] = None,
    log_sink: Optional[RecordSink] = None,
    cache: Optional[TranscriptCache] = None,
    language: str = "ko",
    retry_failed: bool = False,
) -> BatchReport:
    """Process ``videos`` sequentially in the given order and publish the results.

    A rate limit or a persistent outage stops the batch; records produced so
    far are still merged into ``store``.
    """

    acquirer = acquirer or TranscriptAcquirer()
    summarizer = summarizer or SummarizationClient()
    store = store or JsonRecordStore()

    existing = load_existing_records(store, remote_store)
    pending = select_pending(videos, existing, ledger=ledger, cache=cache, retry_failed=retry_failed)
    logger.info("%d videos to process", len(pending))

    report = BatchReport()
    try:
        _process_all(
            pending,
            report,
            acquirer=acquirer,
            summarizer=summarizer,
            language=language,
            ledger=ledger,
            log_sink=log_sink,
            cache=cache,
        )
    except (RateLimitError, ServiceUnavailableError) as exc:
        report.halted_by = exc
        log_halt(exc)
    finally:
        if report.records:
            report.saved_count = len(flush_records(report.records, existing, store))

    logger.info(
        "Batch finished: %d succeeded, %d skipped, %d failed, %d total",
        report.succeeded,
        report.skipped,
        report.failed,
        report.total,
    )
    return report
