import argparse
import logging
from pathlib import Path
from urllib.parse import urlparse

from video_transcript_summary import JsonRecordStore, RemoteRecordStore, merge_records
from video_transcript_summary.config import load_settings
from video_transcript_summary.merge import merge_stats


def parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Reconcile the local summary archive with another snapshot.")
	parser.add_argument(
		"source",
		nargs="?",
		help="URL or path of the other snapshot (defaults to SUMMARY_REMOTE_URL)",
	)
	parser.add_argument("--output-dir", dest="output_dir", help="Directory holding the local latest.json")
	parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Report the merge without saving")
	parser.add_argument("--log-level", dest="log_level", default="INFO", help="Logging level")
	return parser.parse_args()


def is_url(value: str) -> bool:
	parsed = urlparse(value)
	return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def open_source(value: str):
	if is_url(value):
		return RemoteRecordStore(value)
	path = Path(value)
	return JsonRecordStore(path.parent, file_name=path.name)


def main() -> None:
	args = parse_args()
	logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
	settings = load_settings()

	source = args.source or settings.remote_url
	if not source:
		raise SystemExit("No snapshot to reconcile: pass a URL/path or set SUMMARY_REMOTE_URL")

	local = JsonRecordStore(args.output_dir or settings.output_dir)
	other_records = open_source(source).load()
	local_records = local.load()

	merged = merge_records(other_records, local_records)
	stats = merge_stats(other_records, local_records, merged)
	print(f"only in {source}: {stats.only_base}")
	print(f"only local: {stats.only_overlay}")
	print(f"common: {stats.common}")
	print(f"total: {stats.total}")

	if args.dry_run:
		print("Dry run: nothing written.")
		return

	local.save(merged)
	print(f"Saved {len(merged)} records to {local.path}")


if __name__ == "__main__":
	main()
