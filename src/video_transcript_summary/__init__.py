"""YouTube transcript acquisition, summarization and record merging."""

from .acquirer import DownloaderStrategy, TranscriptAcquirer, TranscriptApiStrategy, YtDlpCaptionStrategy, parse_vtt
from .errors import NotFoundError, RateLimitError, RecordStoreError, ServiceUnavailableError, SummarizationError
from .merge import merge_records
from .models import CaptionSegment, SummaryRecord, Transcript, VideoInfo, extract_video_id, watch_url
from .normalizer import normalize_segments, plain_text
from .pipeline import BatchReport, Failed, process_video, run_batch
from .store import CsvLogSink, JsonRecordStore, ProcessedLedger, RemoteRecordStore, TranscriptCache
from .summarizer import NO_RESPONSE, Skipped, SummarizationClient, Summarized, SummarizerSession

__all__ = [
    "BatchReport",
    "CaptionSegment",
    "CsvLogSink",
    "DownloaderStrategy",
    "Failed",
    "JsonRecordStore",
    "NO_RESPONSE",
    "NotFoundError",
    "ProcessedLedger",
    "RateLimitError",
    "RecordStoreError",
    "RemoteRecordStore",
    "ServiceUnavailableError",
    "Skipped",
    "SummarizationClient",
    "SummarizationError",
    "Summarized",
    "SummarizerSession",
    "SummaryRecord",
    "Transcript",
    "TranscriptAcquirer",
    "TranscriptApiStrategy",
    "TranscriptCache",
    "VideoInfo",
    "YtDlpCaptionStrategy",
    "extract_video_id",
    "merge_records",
    "normalize_segments",
    "parse_vtt",
    "plain_text",
    "process_video",
    "run_batch",
    "watch_url",
]
