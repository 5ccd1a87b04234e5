"""Transcript acquisition through an ordered chain of caption sources."""

from __future__ import annotations

import html
import logging
import os
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

import requests
import yt_dlp
from youtube_transcript_api import YouTubeTranscriptApi

from .errors import NotFoundError
from .models import CaptionSegment, Transcript, VideoDetails, extract_video_id, watch_url

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")


class CaptionStrategy(Protocol):
    name: str

    def fetch(self, video_id: str, language: str) -> tuple[list[CaptionSegment], VideoDetails | None]:
        ...


def parse_vtt_timestamp(value: str) -> float:
    """Convert ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` to seconds, 0.0 when malformed."""

    clean = value.strip().split(" ")[0]
    try:
        parts = [float(part) for part in clean.split(":")]
    except ValueError:
        return 0.0

    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    if len(parts) == 2:
        minutes, seconds = parts
        return minutes * 60 + seconds
    if len(parts) == 1:
        return parts[0]
    return 0.0


def parse_vtt(content: str) -> list[CaptionSegment]:
    """Parse WebVTT markup into caption segments.

    Header, identifier and note lines are skipped because only a timing line
    opens a cue. Inline tags are removed, multi-line cues are joined with a
    single space and cues without text are dropped.
    """

    lines = content.splitlines()
    segments: list[CaptionSegment] = []
    index = 0
    while index < len(lines):
        line = lines[index].strip()
        index += 1
        if "-->" not in line:
            continue

        start_raw, _, end_raw = line.partition("-->")
        start = parse_vtt_timestamp(start_raw)
        end = parse_vtt_timestamp(end_raw)

        text_lines: list[str] = []
        while index < len(lines) and lines[index].strip():
            cleaned = html.unescape(_TAG.sub("", lines[index])).strip()
            if cleaned:
                text_lines.append(cleaned)
            index += 1

        text = " ".join(text_lines).strip()
        if text:
            segments.append(CaptionSegment(text=text, start=start, duration=max(0.0, end - start)))
    return segments


def parse_json3(payload: dict[str, Any]) -> list[CaptionSegment]:
    """Parse YouTube's ``json3`` caption payload."""

    segments: list[CaptionSegment] = []
    for event in payload.get("events") or []:
        pieces = event.get("segs")
        if not pieces:
            continue
        text = "".join(str(piece.get("utf8", "")) for piece in pieces).replace("\n", " ").strip()
        if not text:
            continue
        start = float(event.get("tStartMs", 0)) / 1000.0
        duration = float(event.get("dDurationMs", 0)) / 1000.0
        segments.append(CaptionSegment(text=text, start=start, duration=duration))
    return segments


def _published_at(info: dict[str, Any]) -> str | None:
    timestamp = info.get("timestamp") or info.get("release_timestamp")
    if isinstance(timestamp, (int, float)):
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")

    upload_date = info.get("upload_date")
    if isinstance(upload_date, str) and len(upload_date) == 8:
        try:
            parsed = datetime.strptime(upload_date, "%Y%m%d").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
        return parsed.isoformat().replace("+00:00", "Z")
    return None


class YtDlpCaptionStrategy:
    """Read metadata and the caption track list through the yt-dlp API."""

    name = "captions"
    preferred_formats = ("json3", "vtt")

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: int = 30,
        ydl_options: dict[str, Any] | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.ydl_options = {
            "skip_download": True,
            "quiet": True,
            "no_warnings": True,
            **(ydl_options or {}),
        }

    def extract_info(self, video_id: str) -> dict[str, Any]:
        with yt_dlp.YoutubeDL(self.ydl_options) as downloader:
            info = downloader.extract_info(watch_url(video_id), download=False)
        return info or {}

    def details(self, video_id: str) -> VideoDetails:
        return self._details_from_info(self.extract_info(video_id))

    def fetch(self, video_id: str, language: str) -> tuple[list[CaptionSegment], VideoDetails | None]:
        info = self.extract_info(video_id)
        details = self._details_from_info(info)

        track = self._select_track(info, language)
        if track is None:
            return [], details

        response = self.session.get(track["url"], timeout=self.timeout)
        response.raise_for_status()
        if track.get("ext") == "json3":
            return parse_json3(response.json()), details
        return parse_vtt(response.text), details

    def _select_track(self, info: dict[str, Any], language: str) -> dict[str, Any] | None:
        for key in ("subtitles", "automatic_captions"):
            tracks = (info.get(key) or {}).get(language) or []
            by_ext = {track.get("ext"): track for track in tracks if track.get("url")}
            for ext in self.preferred_formats:
                if ext in by_ext:
                    return by_ext[ext]
        return None

    @staticmethod
    def _details_from_info(info: dict[str, Any]) -> VideoDetails:
        return VideoDetails(
            title=info.get("title"),
            channel_name=info.get("channel") or info.get("uploader"),
            published_at=_published_at(info),
        )


class TranscriptApiStrategy:
    """Unofficial transcript endpoint via youtube-transcript-api."""

    name = "transcript_api"

    def __init__(self, api: Any | None = None) -> None:
        self._api = api

    def _ensure_api(self) -> Any:
        if self._api is None:
            self._api = YouTubeTranscriptApi()
        return self._api

    def fetch(self, video_id: str, language: str) -> tuple[list[CaptionSegment], VideoDetails | None]:
        fetched = self._ensure_api().fetch(video_id, languages=[language])
        segments = [
            CaptionSegment(
                text=str(snippet.text),
                start=float(snippet.start),
                duration=float(snippet.duration),
            )
            for snippet in fetched
        ]
        return segments, None


DOWNLOADER_TIMEOUT = 300.0


def run_downloader(command: Sequence[str], timeout: float = DOWNLOADER_TIMEOUT) -> None:
    try:
        subprocess.run(list(command), check=True, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise RuntimeError(f"Subtitle downloader not found: {command[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"Subtitle downloader timed out after {timeout:.0f}s") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip().splitlines()
        detail = stderr[-1] if stderr else f"exit status {exc.returncode}"
        raise RuntimeError(f"Subtitle downloader failed: {detail}") from exc


class DownloaderStrategy:
    """Run the yt-dlp binary in a scratch directory and parse the VTT it writes."""

    name = "ytdlp"

    def __init__(
        self,
        *,
        binary: str | None = None,
        cookies_path: str | None = None,
        cookies_from_browser: str | None = None,
        runner: Callable[[Sequence[str]], None] = run_downloader,
    ) -> None:
        self.binary = binary or os.getenv("YTDLP_PATH") or "yt-dlp"
        self.cookies_path = cookies_path if cookies_path is not None else os.getenv("YTDLP_COOKIES")
        self.cookies_from_browser = (
            cookies_from_browser
            if cookies_from_browser is not None
            else os.getenv("YTDLP_COOKIES_FROM_BROWSER")
        )
        self.runner = runner

    def build_command(self, video_id: str, language: str, output_dir: Path) -> list[str]:
        command = [self.binary]
        if self.cookies_path:
            command.extend(["--cookies", self.cookies_path])
        elif self.cookies_from_browser:
            command.extend(["--cookies-from-browser", self.cookies_from_browser])
        command.extend(
            [
                "--skip-download",
                "--write-sub",
                "--write-auto-sub",
                "--sub-lang",
                language,
                "--sub-format",
                "vtt",
                "-o",
                str(output_dir / "%(id)s.%(ext)s"),
                watch_url(video_id),
            ]
        )
        return command

    def fetch(self, video_id: str, language: str) -> tuple[list[CaptionSegment], VideoDetails | None]:
        with TemporaryDirectory(prefix="yt-sub-") as tmpdir:
            output_dir = Path(tmpdir)
            self.runner(self.build_command(video_id, language, output_dir))
            subtitle_file = self.select_subtitle_file(sorted(output_dir.glob("*.vtt")), language)
            if subtitle_file is None:
                return [], None
            content = subtitle_file.read_text(encoding="utf-8")
        return parse_vtt(content), None

    @staticmethod
    def select_subtitle_file(files: Iterable[Path], language: str) -> Path | None:
        candidates = list(files)
        if not candidates:
            return None
        manual = [
            path
            for path in candidates
            if path.name.endswith(f".{language}.vtt") and f".a.{language}." not in path.name
        ]
        if manual:
            return manual[0]
        auto = [path for path in candidates if path.name.endswith(f".a.{language}.vtt")]
        if auto:
            return auto[0]
        return candidates[0]


class TranscriptAcquirer:
    """Try each caption strategy once, in order, for the requested language."""

    def __init__(
        self,
        strategies: Optional[Sequence[CaptionStrategy]] = None,
        *,
        details_lookup: Callable[[str], VideoDetails] | None = None,
        details_source: str | None = None,
    ) -> None:
        if strategies is None:
            captions = YtDlpCaptionStrategy()
            strategies = [captions, TranscriptApiStrategy(), DownloaderStrategy()]
            if details_lookup is None:
                details_lookup = captions.details
                details_source = captions.name
        self.strategies = list(strategies)
        self.details_lookup = details_lookup
        # Name of the strategy that backs details_lookup; its failure skips the lookup.
        self.details_source = details_source

    def acquire(self, url_or_id: str, language: str = "ko") -> Transcript:
        video_id = extract_video_id(url_or_id)
        attempts: list[str] = []
        failed: set[str] = set()
        last_error: BaseException | None = None
        details: VideoDetails | None = None

        for strategy in self.strategies:
            tag = f"{strategy.name}:{language}"
            try:
                segments, found_details = strategy.fetch(video_id, language)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                failed.add(strategy.name)
                attempts.append(f"{strategy.name}:{language}(error:{exc})")
                logger.warning("Transcript strategy %s failed for %s: %s", tag, video_id, exc)
                continue

            if details is None and found_details is not None:
                details = found_details

            if not segments:
                attempts.append(f"{strategy.name}:{language}(empty)")
                logger.info("Transcript strategy %s returned no segments for %s", tag, video_id)
                continue

            logger.info("Transcript for %s fetched via %s: %d segments", video_id, tag, len(segments))
            return Transcript(
                video_id=video_id,
                language=language,
                source=strategy.name,
                segments=list(segments),
                details=details or self._lookup_details(video_id, failed),
                attempts=attempts,
            )

        raise NotFoundError(video_id, attempts, last_error)

    def _lookup_details(self, video_id: str, failed: set[str]) -> VideoDetails:
        if self.details_lookup is None:
            return VideoDetails()
        if self.details_source in failed:
            logger.info("Skipping video details lookup for %s: %s already failed", video_id, self.details_source)
            return VideoDetails()
        try:
            return self.details_lookup(video_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Video details lookup failed for %s: %s", video_id, exc)
            return VideoDetails()
