from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")

_URL_PATTERNS = (
    re.compile(r"youtube\.com/watch\?(?:.*&)?v=([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/embed/([A-Za-z0-9_-]{11})"),
    re.compile(r"youtu\.be/([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/v/([A-Za-z0-9_-]{11})"),
)


def extract_video_id(url_or_id: str) -> str:
    """Return the 11 character video id from a bare id or a YouTube URL."""

    candidate = url_or_id.strip()
    if VIDEO_ID_PATTERN.match(candidate):
        return candidate

    for pattern in _URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1)

    raise ValueError(f"Invalid YouTube URL or video id: {url_or_id}")


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


@dataclass(frozen=True)
class CaptionSegment:
    """One timed caption cue."""

    text: str
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class VideoDetails:
    title: str | None = None
    channel_name: str | None = None
    published_at: str | None = None


@dataclass
class Transcript:
    """Segments produced by a single acquisition call."""

    video_id: str
    language: str
    source: str
    segments: list[CaptionSegment] = field(default_factory=list)
    details: VideoDetails = field(default_factory=VideoDetails)
    attempts: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class VideoInfo:
    """A discovered video as handed over by the channel monitor."""

    video_id: str
    title: str
    channel_name: str
    published_at: str
    url: str

    @classmethod
    def from_id(cls, url_or_id: str) -> "VideoInfo":
        """Bare video; title, channel and publish date are filled in from the captions source."""

        video_id = extract_video_id(url_or_id)
        return cls(video_id=video_id, title="", channel_name="", published_at="", url=watch_url(video_id))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VideoInfo":
        video_id = extract_video_id(str(data.get("videoId") or data.get("url") or ""))
        return cls(
            video_id=video_id,
            title=str(data.get("title") or ""),
            channel_name=str(data.get("channelName") or ""),
            published_at=str(data.get("publishedAt") or ""),
            url=str(data.get("url") or watch_url(video_id)),
        )


@dataclass(frozen=True)
class SummaryRecord:
    """Published summary of one video; ``url`` is the identity key."""

    title: str
    channel_name: str
    published_at: str
    url: str
    summary: str
    processed_at: str

    @property
    def key(self) -> str:
        return self.url

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "channelName": self.channel_name,
            "publishedAt": self.published_at,
            "url": self.url,
            "summary": self.summary,
            "processedAt": self.processed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SummaryRecord":
        try:
            url = data["url"]
        except KeyError as exc:
            raise ValueError("Summary record is missing its url") from exc
        return cls(
            title=str(data.get("title") or ""),
            channel_name=str(data.get("channelName") or ""),
            published_at=str(data.get("publishedAt") or ""),
            url=str(url),
            summary=str(data.get("summary") or ""),
            processed_at=str(data.get("processedAt") or ""),
        )
