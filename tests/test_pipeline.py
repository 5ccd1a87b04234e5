from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

VIDEO_ID = "abc12345678"


def _transcript(video_id: str = VIDEO_ID, segments=None):
    from video_transcript_summary.models import CaptionSegment, Transcript, VideoDetails

    if segments is None:
        segments = [
            CaptionSegment("안녕하세요", 0.0, 1.0),
            CaptionSegment("안녕하세요", 1.5, 1.0),
            CaptionSegment("오늘은 투자 이야기", 3.0, 2.0),
        ]
    return Transcript(
        video_id=video_id,
        language="ko",
        source="captions",
        segments=segments,
        details=VideoDetails(title="시장 이야기", channel_name="경제채널", published_at="2024-03-01T00:00:00Z"),
    )


def _stores(tmp_path: Path):
    from video_transcript_summary.store import JsonRecordStore, ProcessedLedger, TranscriptCache

    return (
        JsonRecordStore(tmp_path / "site"),
        ProcessedLedger(tmp_path / "processed-videos.json"),
        TranscriptCache(tmp_path / "cache"),
    )


def test_batch_end_to_end_publishes_one_record(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, cache = _stores(tmp_path)
    acquirer = MagicMock()
    acquirer.acquire.return_value = _transcript()
    summarizer = MagicMock()
    summarizer.summarize.return_value = Summarized("요약 결과")
    sink = MagicMock()

    report = run_batch(
        [VideoInfo.from_id(VIDEO_ID)],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
        log_sink=sink,
        cache=cache,
    )

    assert (report.succeeded, report.skipped, report.failed, report.total) == (1, 0, 0, 1)
    assert not report.halted
    assert report.saved_count == 1
    summarizer.summarize.assert_called_once_with("안녕하세요 오늘은 투자 이야기", language="ko")

    records = store.load()
    assert len(records) == 1
    record = records[0]
    assert record.url == "https://www.youtube.com/watch?v=abc12345678"
    assert record.summary == "요약 결과"
    assert record.title == "시장 이야기"
    assert record.channel_name == "경제채널"
    assert record.published_at == "2024-03-01T00:00:00Z"
    sink.append.assert_called_once_with(record)

    assert ledger.get(VIDEO_ID).status == "success"
    assert cache.read_transcript(VIDEO_ID) == "안녕하세요 오늘은 투자 이야기"
    assert cache.read_summary(VIDEO_ID) == "요약 결과"


def test_no_response_is_recorded_as_skip(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import run_batch
    from video_transcript_summary.summarizer import NO_RESPONSE, Skipped

    store, ledger, cache = _stores(tmp_path)
    acquirer = MagicMock()
    acquirer.acquire.return_value = _transcript()
    summarizer = MagicMock()
    summarizer.summarize.return_value = Skipped(NO_RESPONSE)
    sink = MagicMock()

    report = run_batch(
        [VideoInfo.from_id(VIDEO_ID)],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
        log_sink=sink,
        cache=cache,
    )

    assert (report.succeeded, report.skipped, report.failed) == (0, 1, 0)
    assert report.outcomes[VIDEO_ID] == Skipped(NO_RESPONSE)
    sink.append.assert_not_called()
    assert not store.exists()
    entry = ledger.get(VIDEO_ID)
    assert entry.status == "success"
    assert entry.error == "NO_RESPONSE"
    assert cache.read_summary(VIDEO_ID) == NO_RESPONSE


def test_rate_limit_halts_batch_and_flushes_earlier_records(tmp_path: Path) -> None:
    from video_transcript_summary.errors import RateLimitError
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import Failed, run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, cache = _stores(tmp_path)
    videos = [VideoInfo.from_id(video_id) for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc")]
    acquirer = MagicMock()
    acquirer.acquire.side_effect = lambda video_id, language: _transcript(video_id)
    summarizer = MagicMock()
    summarizer.summarize.side_effect = [
        Summarized("first"),
        RateLimitError("quota exhausted", retry_after_header="3600", retry_after_seconds=3600.0),
    ]

    report = run_batch(
        videos,
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
        cache=cache,
    )

    assert isinstance(report.halted_by, RateLimitError)
    assert (report.succeeded, report.skipped, report.failed) == (1, 0, 1)
    assert report.outcomes["bbbbbbbbbbb"] == Failed("rate_limit", "quota exhausted")
    assert "ccccccccccc" not in report.outcomes
    assert acquirer.acquire.call_count == 2

    records = store.load()
    assert [record.summary for record in records] == ["first"]
    assert ledger.get("bbbbbbbbbbb").status == "failed"
    assert ledger.get("ccccccccccc") is None
    assert cache.has_pending_summary("bbbbbbbbbbb")


def test_service_unavailable_halts_batch(tmp_path: Path) -> None:
    from video_transcript_summary.errors import ServiceUnavailableError
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import run_batch

    store, ledger, _ = _stores(tmp_path)
    acquirer = MagicMock()
    acquirer.acquire.return_value = _transcript()
    summarizer = MagicMock()
    summarizer.summarize.side_effect = ServiceUnavailableError("down", status=503)

    report = run_batch(
        [VideoInfo.from_id(VIDEO_ID), VideoInfo.from_id("zzzzzzzzzzz")],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
    )

    assert isinstance(report.halted_by, ServiceUnavailableError)
    assert report.failed == 1
    assert report.saved_count is None
    assert summarizer.summarize.call_count == 1


def test_item_failures_do_not_stop_the_batch(tmp_path: Path) -> None:
    from video_transcript_summary.errors import NotFoundError, SummarizationError
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import Failed, run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, _ = _stores(tmp_path)

    def acquire(video_id: str, language: str):
        if video_id == "aaaaaaaaaaa":
            raise NotFoundError(video_id, ["captions:ko(empty)"])
        return _transcript(video_id)

    acquirer = MagicMock()
    acquirer.acquire.side_effect = acquire
    summarizer = MagicMock()
    summarizer.summarize.side_effect = [SummarizationError("bad request"), Summarized("ok")]

    report = run_batch(
        [VideoInfo.from_id(video_id) for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc")],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
    )

    assert not report.halted
    assert (report.succeeded, report.skipped, report.failed) == (1, 0, 2)
    assert report.outcomes["aaaaaaaaaaa"].kind == "not_found"
    assert report.outcomes["bbbbbbbbbbb"] == Failed("summarization", "bad request")
    assert ledger.get("aaaaaaaaaaa").status == "failed"
    assert [record.url for record in store.load()] == ["https://www.youtube.com/watch?v=ccccccccccc"]


def test_transcript_empty_after_normalization_is_not_found() -> None:
    from video_transcript_summary.errors import NotFoundError
    from video_transcript_summary.models import CaptionSegment, VideoInfo
    from video_transcript_summary.pipeline import process_video

    acquirer = MagicMock()
    acquirer.acquire.return_value = _transcript(segments=[CaptionSegment("   ", 0.0, 1.0)])
    summarizer = MagicMock()

    with pytest.raises(NotFoundError):
        process_video(VideoInfo.from_id(VIDEO_ID), acquirer=acquirer, summarizer=summarizer)
    summarizer.summarize.assert_not_called()


def test_cached_summary_skips_acquisition(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import process_video
    from video_transcript_summary.store import TranscriptCache

    cache = TranscriptCache(tmp_path)
    cache.write_summary(VIDEO_ID, "캐시된 요약\n")
    acquirer = MagicMock()
    summarizer = MagicMock()
    video = VideoInfo.from_dict(
        {
            "videoId": VIDEO_ID,
            "title": "제목",
            "channelName": "채널",
            "publishedAt": "2024-01-01T00:00:00Z",
        }
    )

    record = process_video(video, acquirer=acquirer, summarizer=summarizer, cache=cache)

    acquirer.acquire.assert_not_called()
    summarizer.summarize.assert_not_called()
    assert record.summary == "캐시된 요약"
    assert record.title == "제목"


def test_cached_transcript_is_summarized_without_acquisition(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import process_video
    from video_transcript_summary.store import TranscriptCache
    from video_transcript_summary.summarizer import Summarized

    cache = TranscriptCache(tmp_path)
    cache.write_transcript(VIDEO_ID, "캐시된 자막")
    acquirer = MagicMock()
    summarizer = MagicMock()
    summarizer.summarize.return_value = Summarized("요약")

    record = process_video(VideoInfo.from_id(VIDEO_ID), acquirer=acquirer, summarizer=summarizer, cache=cache, language="en")

    acquirer.acquire.assert_not_called()
    summarizer.summarize.assert_called_once_with("캐시된 자막", language="en")
    assert record.title == VIDEO_ID
    assert record.channel_name == "unknown"
    assert cache.read_summary(VIDEO_ID) == "요약"


def test_select_pending_filters_published_and_ledger(tmp_path: Path) -> None:
    from video_transcript_summary.models import SummaryRecord, VideoInfo
    from video_transcript_summary.pipeline import select_pending
    from video_transcript_summary.store import ProcessedLedger, TranscriptCache

    ledger = ProcessedLedger(tmp_path / "state.json")
    ledger.mark("bbbbbbbbbbb", "success", "NO_RESPONSE")
    ledger.mark("ccccccccccc", "failed", "boom")
    ledger.mark("ddddddddddd", "failed", "quota")
    cache = TranscriptCache(tmp_path / "cache")
    cache.write_transcript("ddddddddddd", "자막")

    published = SummaryRecord(
        title="t",
        channel_name="c",
        published_at="2024-01-01T00:00:00Z",
        url="https://www.youtube.com/watch?v=aaaaaaaaaaa",
        summary="s",
        processed_at="2024-01-01T00:00:00Z",
    )
    videos = [
        VideoInfo.from_id(video_id)
        for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc", "ddddddddddd", "eeeeeeeeeee", "eeeeeeeeeee")
    ]

    pending = select_pending(videos, [published], ledger=ledger, cache=cache)
    retried = select_pending(videos, [published], ledger=ledger, cache=cache, retry_failed=True)

    assert [video.video_id for video in pending] == ["ddddddddddd", "eeeeeeeeeee"]
    assert [video.video_id for video in retried] == ["ccccccccccc", "ddddddddddd", "eeeeeeeeeee"]


def test_flush_merges_with_existing_snapshot(tmp_path: Path) -> None:
    from video_transcript_summary.models import SummaryRecord
    from video_transcript_summary.pipeline import flush_records
    from video_transcript_summary.store import JsonRecordStore

    def record(video_id: str, processed_at: str) -> SummaryRecord:
        return SummaryRecord(
            title=video_id,
            channel_name="c",
            published_at="2024-01-01T00:00:00Z",
            url=f"https://www.youtube.com/watch?v={video_id}",
            summary=processed_at,
            processed_at=processed_at,
        )

    store = JsonRecordStore(tmp_path)
    existing = [record("aaaaaaaaaaa", "2024-01-01T00:00:00Z"), record("bbbbbbbbbbb", "2024-01-01T00:00:00Z")]
    fresh = [record("bbbbbbbbbbb", "2024-02-01T00:00:00Z")]

    merged = flush_records(fresh, existing, store)

    assert len(merged) == 2
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["count"] == 2
    summaries = {item["url"][-11:]: item["summary"] for item in payload["items"]}
    assert summaries == {"aaaaaaaaaaa": "2024-01-01T00:00:00Z", "bbbbbbbbbbb": "2024-02-01T00:00:00Z"}


def test_unexpected_item_error_does_not_lose_earlier_records(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import Failed, run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, cache = _stores(tmp_path)
    acquirer = MagicMock()
    acquirer.acquire.side_effect = lambda video_id, language: _transcript(video_id)
    summarizer = MagicMock()
    summarizer.summarize.side_effect = [Summarized("first"), Summarized("second"), Summarized("third")]
    sink = MagicMock()
    sink.append.side_effect = [None, OSError("sheet quota"), None]

    report = run_batch(
        [VideoInfo.from_id(video_id) for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc")],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
        log_sink=sink,
        cache=cache,
    )

    assert not report.halted
    assert (report.succeeded, report.skipped, report.failed) == (2, 0, 1)
    assert report.outcomes["bbbbbbbbbbb"] == Failed("error", "sheet quota")
    assert ledger.get("bbbbbbbbbbb").status == "failed"
    assert sorted(record.summary for record in store.load()) == ["first", "third"]


def test_corrupt_cache_file_fails_only_that_item(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, cache = _stores(tmp_path)
    cache.cache_dir.mkdir(parents=True)
    cache.transcript_path("bbbbbbbbbbb").write_bytes(b"\xff\xfe\xfa broken")
    acquirer = MagicMock()
    acquirer.acquire.side_effect = lambda video_id, language: _transcript(video_id)
    summarizer = MagicMock()
    summarizer.summarize.return_value = Summarized("ok")

    report = run_batch(
        [VideoInfo.from_id(video_id) for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc")],
        acquirer=acquirer,
        summarizer=summarizer,
        store=store,
        ledger=ledger,
        cache=cache,
    )

    assert (report.succeeded, report.failed) == (2, 1)
    assert report.outcomes["bbbbbbbbbbb"].kind == "error"
    assert sorted(record.url[-11:] for record in store.load()) == ["aaaaaaaaaaa", "ccccccccccc"]


def test_flush_runs_when_the_batch_is_interrupted(tmp_path: Path) -> None:
    from video_transcript_summary.models import VideoInfo
    from video_transcript_summary.pipeline import run_batch
    from video_transcript_summary.summarizer import Summarized

    store, ledger, _ = _stores(tmp_path)
    acquirer = MagicMock()
    acquirer.acquire.side_effect = lambda video_id, language: _transcript(video_id)
    summarizer = MagicMock()
    summarizer.summarize.side_effect = [Summarized("first"), KeyboardInterrupt()]

    with pytest.raises(KeyboardInterrupt):
        run_batch(
            [VideoInfo.from_id(video_id) for video_id in ("aaaaaaaaaaa", "bbbbbbbbbbb")],
            acquirer=acquirer,
            summarizer=summarizer,
            store=store,
            ledger=ledger,
        )

    assert [record.summary for record in store.load()] == ["first"]
