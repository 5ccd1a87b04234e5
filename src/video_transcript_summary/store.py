from __future__ import annotations

import csv
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Literal, Optional, Protocol, Sequence

import requests

from .errors import RecordStoreError
from .merge import merge_records
from .models import SummaryRecord

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "latest.json"
LOG_COLUMNS = ("title", "channelName", "publishedAt", "url", "summary", "processedAt")

Status = Literal["success", "failed"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


class RecordStore(Protocol):
    def load(self) -> list[SummaryRecord]:
        ...

    def save(self, records: Sequence[SummaryRecord]) -> None:
        ...


def _records_from_payload(payload: Any, source: str) -> list[SummaryRecord]:
    if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
        logger.warning("Record payload from %s has no items list", source)
        return []
    records: list[SummaryRecord] = []
    for item in payload["items"]:
        if not isinstance(item, dict):
            continue
        try:
            records.append(SummaryRecord.from_dict(item))
        except ValueError as exc:
            logger.warning("Skipping malformed record from %s: %s", source, exc)
    return records


class JsonRecordStore:
    """Site data file ``{generatedAt, count, items}`` on local disk."""

    def __init__(self, output_dir: Path | str | None = None, file_name: str = DEFAULT_FILE_NAME) -> None:
        base = output_dir or os.getenv("SUMMARY_OUTPUT_DIR") or Path("data") / "site"
        self.path = Path(base) / file_name

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[SummaryRecord]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise RecordStoreError(f"Failed to read {self.path}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RecordStoreError(f"Record file {self.path} is not valid JSON") from exc
        return _records_from_payload(payload, str(self.path))

    def save(self, records: Sequence[SummaryRecord]) -> None:
        payload = {
            "generatedAt": utc_now_iso(),
            "count": len(records),
            "items": [record.to_dict() for record in records],
        }
        try:
            _write_json(self.path, payload)
        except OSError as exc:
            raise RecordStoreError(f"Failed to write {self.path}") from exc


class RemoteRecordStore:
    """Read-only published snapshot fetched over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        session: requests.Session | None = None,
        timeout: int = 30,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_env(cls, file_name: str = DEFAULT_FILE_NAME) -> Optional["RemoteRecordStore"]:
        url = os.getenv("SUMMARY_REMOTE_URL")
        if not url:
            base_url = os.getenv("SUMMARY_REMOTE_BASE_URL")
            if not base_url:
                return None
            url = f"{base_url.rstrip('/')}/{file_name}"
        return cls(url)

    def load(self) -> list[SummaryRecord]:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Remote records unavailable at %s: %s", self.url, exc)
            return []
        if not response.ok:
            logger.warning("Remote records at %s returned status %s", self.url, response.status_code)
            return []
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Remote records at %s are not valid JSON", self.url)
            return []
        return _records_from_payload(payload, self.url)

    def save(self, records: Sequence[SummaryRecord]) -> None:
        raise RecordStoreError(f"Remote record store {self.url} is read-only")


def load_existing_records(
    local: RecordStore,
    remote: RecordStore | None = None,
) -> list[SummaryRecord]:
    """Reconcile the remote snapshot with the local file, newest record per url wins."""

    local_records = local.load()
    if remote is None:
        return local_records
    return merge_records(remote.load(), local_records)


@dataclass(frozen=True)
class LedgerEntry:
    video_id: str
    processed_at: str
    status: Status
    error: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"videoId": self.video_id, "processedAt": self.processed_at, "status": self.status}
        if self.error is not None:
            data["error"] = self.error
        return data


class ProcessedLedger:
    """Per-video processing outcomes, stored as ``{"videos": [...]}``.

    ``error`` carries the failure message, or the skip reason (for example
    ``NO_RESPONSE``) on a success entry.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path or os.getenv("STATE_FILE") or Path("data") / "processed-videos.json")

    def entries(self) -> list[LedgerEntry]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as exc:
            raise RecordStoreError(f"Failed to read ledger {self.path}") from exc

        entries: list[LedgerEntry] = []
        for item in data.get("videos", []):
            if not isinstance(item, dict) or "videoId" not in item:
                continue
            status = "success" if item.get("status") == "success" else "failed"
            entries.append(
                LedgerEntry(
                    video_id=str(item["videoId"]),
                    processed_at=str(item.get("processedAt", "")),
                    status=status,
                    error=item.get("error"),
                )
            )
        return entries

    def get(self, video_id: str) -> LedgerEntry | None:
        for entry in self.entries():
            if entry.video_id == video_id:
                return entry
        return None

    def is_processed(self, video_id: str) -> bool:
        return self.get(video_id) is not None

    def mark(self, video_id: str, status: Status, error: str | None = None) -> LedgerEntry:
        entry = LedgerEntry(video_id=video_id, processed_at=utc_now_iso(), status=status, error=error)
        entries = [existing for existing in self.entries() if existing.video_id != video_id]
        entries.append(entry)
        try:
            _write_json(self.path, {"videos": [item.to_dict() for item in entries]})
        except OSError as exc:
            raise RecordStoreError(f"Failed to write ledger {self.path}") from exc
        return entry

    def filter_unprocessed(self, video_ids: Iterable[str]) -> list[str]:
        succeeded = {entry.video_id for entry in self.entries() if entry.status == "success"}
        return [video_id for video_id in video_ids if video_id not in succeeded]


class RecordSink(Protocol):
    def append(self, record: SummaryRecord) -> None:
        ...


class CsvLogSink:
    """Tabular log, one row per newly produced summary."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def append(self, record: SummaryRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=LOG_COLUMNS)
            if write_header:
                writer.writeheader()
            writer.writerow(record.to_dict())


class TranscriptCache:
    """Transcript and summary text cached per video id."""

    def __init__(self, cache_dir: Path | str | None = None) -> None:
        self.cache_dir = Path(cache_dir or os.getenv("CACHE_DIR") or Path("data") / "cache")

    def transcript_path(self, video_id: str) -> Path:
        return self.cache_dir / f"{video_id}.subtitle.txt"

    def summary_path(self, video_id: str) -> Path:
        return self.cache_dir / f"{video_id}.summary.txt"

    @staticmethod
    def _read(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, path: Path, text: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def read_transcript(self, video_id: str) -> str | None:
        return self._read(self.transcript_path(video_id))

    def write_transcript(self, video_id: str, text: str) -> None:
        self._write(self.transcript_path(video_id), text)

    def read_summary(self, video_id: str) -> str | None:
        return self._read(self.summary_path(video_id))

    def write_summary(self, video_id: str, text: str) -> None:
        self._write(self.summary_path(video_id), text)

    def has_pending_summary(self, video_id: str) -> bool:
        return self.transcript_path(video_id).exists() and not self.summary_path(video_id).exists()
