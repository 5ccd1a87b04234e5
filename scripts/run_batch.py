import argparse
import json
import logging
import sys
from pathlib import Path

from video_transcript_summary import (
	CsvLogSink,
	JsonRecordStore,
	ProcessedLedger,
	RateLimitError,
	RemoteRecordStore,
	SummarizationClient,
	SummarizerSession,
	TranscriptAcquirer,
	TranscriptCache,
	VideoInfo,
	run_batch,
)
from video_transcript_summary.acquirer import DownloaderStrategy, TranscriptApiStrategy, YtDlpCaptionStrategy
from video_transcript_summary.config import Settings, load_settings
from video_transcript_summary.summarizer import create_provider


def parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Fetch transcripts, summarize them and publish the merged archive.")
	parser.add_argument("videos", nargs="*", help="YouTube URLs or video ids to process")
	parser.add_argument(
		"--videos-file",
		dest="videos_file",
		help="JSON list of discovered videos ({videoId, title, channelName, publishedAt, url})",
	)
	parser.add_argument("--language", help="Caption and summary language (defaults to SUBTITLE_LANGUAGE or ko)")
	parser.add_argument("--provider", choices=("gemini", "openai"), help="Summarization provider (defaults to AI_PROVIDER)")
	parser.add_argument("--output-dir", dest="output_dir", help="Directory holding latest.json")
	parser.add_argument("--state-file", dest="state_file", help="Processed-videos ledger path")
	parser.add_argument("--cache-dir", dest="cache_dir", help="Transcript and summary cache directory")
	parser.add_argument("--no-cache", dest="no_cache", action="store_true", help="Do not read or write the cache")
	parser.add_argument("--log-file", dest="log_file", help="CSV file receiving one row per new summary")
	parser.add_argument(
		"--retry-failed",
		dest="retry_failed",
		action="store_true",
		help="Process videos whose previous attempt failed",
	)
	parser.add_argument("--log-level", dest="log_level", default="INFO", help="Logging level")
	return parser.parse_args()


def load_videos(args: argparse.Namespace) -> list[VideoInfo]:
	videos = [VideoInfo.from_id(value) for value in args.videos]
	if args.videos_file:
		data = json.loads(Path(args.videos_file).read_text(encoding="utf-8"))
		videos.extend(VideoInfo.from_dict(item) for item in data)
	return videos


def build_summarizer(settings: Settings, provider_name: str) -> SummarizationClient:
	model = settings.openai_model if provider_name == "openai" else settings.gemini_model
	if provider_name == "openai":
		api_key, secondary = settings.openai_api_key, settings.openai_api_key_secondary
	else:
		api_key, secondary = settings.gemini_api_key, settings.gemini_api_key_secondary
	return SummarizationClient(
		create_provider(provider_name, model=model),
		api_key=api_key,
		secondary_api_key=secondary,
		session=SummarizerSession(),
	)


def build_acquirer(settings: Settings) -> TranscriptAcquirer:
	captions = YtDlpCaptionStrategy()
	downloader = DownloaderStrategy(
		binary=settings.ytdlp_path,
		cookies_path=settings.ytdlp_cookies or "",
		cookies_from_browser=settings.ytdlp_cookies_from_browser or "",
	)
	return TranscriptAcquirer(
		[captions, TranscriptApiStrategy(), downloader],
		details_lookup=captions.details,
		details_source=captions.name,
	)


def main() -> None:
	args = parse_args()
	logging.basicConfig(
		level=getattr(logging, str(args.log_level).upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	settings = load_settings()

	videos = load_videos(args)
	if not videos:
		print("No videos given. Pass URLs/ids or --videos-file.")
		sys.exit(1)

	language = args.language or settings.language
	provider_name = args.provider or settings.ai_provider
	log_file = args.log_file or settings.log_file

	report = run_batch(
		videos,
		acquirer=build_acquirer(settings),
		summarizer=build_summarizer(settings, provider_name),
		store=JsonRecordStore(args.output_dir or settings.output_dir),
		remote_store=RemoteRecordStore(settings.remote_url) if settings.remote_url else None,
		ledger=ProcessedLedger(args.state_file or settings.state_file),
		log_sink=CsvLogSink(log_file) if log_file else None,
		cache=None if args.no_cache else TranscriptCache(args.cache_dir or settings.cache_dir),
		language=language,
		retry_failed=args.retry_failed,
	)

	print("=" * 60)
	print(f"succeeded: {report.succeeded}")
	print(f"skipped (NO_RESPONSE): {report.skipped}")
	print(f"failed: {report.failed}")
	print(f"total: {report.total}")
	if report.saved_count is not None:
		print(f"published records: {report.saved_count}")
	print("=" * 60)

	error = report.halted_by
	if error is None:
		return
	print(f"Batch stopped early: {error}")
	if isinstance(error, RateLimitError):
		print(f"status: {error.status}")
		print(f"retry-after header: {error.retry_after_header or 'none'}")
		if error.retry_after_seconds is not None:
			print(f"retry in: {error.retry_after_seconds:.0f}s (~{error.retry_after_seconds / 3600:.2f}h)")
		else:
			print("retry in: unknown")
		for key, value in sorted(error.response_headers.items()):
			print(f"  {key}: {value}")


if __name__ == "__main__":
	main()
