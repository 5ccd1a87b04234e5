"""Clean up rolling auto-caption cues before summarization."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from .models import CaptionSegment

MERGE_GAP_SECONDS = 2.0

_WHITESPACE = re.compile(r"\s+")
# Latin letters, digits and the Hangul blocks (jamo, compatibility jamo, syllables).
_NON_COMPARABLE = re.compile(
    r"[^A-Za-z0-9\u1100-\u11ff\u3130-\u318f\ua960-\ua97f\uac00-\ud7a3\ud7b0-\ud7ff]+"
)


def normalize_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def comparable_text(text: str) -> str:
    """Form of ``text`` used only for duplicate detection."""

    return _NON_COMPARABLE.sub("", normalize_text(text)).lower()


def _relation(accepted: CaptionSegment, candidate: CaptionSegment) -> str | None:
    """Return ``"drop"``, ``"extend"`` or ``None`` for ``candidate`` following ``accepted``."""

    current = comparable_text(candidate.text)
    previous = comparable_text(accepted.text)
    if not current or not previous:
        return None
    if candidate.start - accepted.end > MERGE_GAP_SECONDS:
        return None
    if current == previous or current in previous:
        return "drop"
    if previous in current:
        return "extend"
    return None


def _extend(accepted: CaptionSegment, candidate: CaptionSegment) -> CaptionSegment:
    return CaptionSegment(
        text=candidate.text,
        start=accepted.start,
        duration=max(0.0, candidate.end - accepted.start),
    )


def normalize_segments(segments: Iterable[CaptionSegment]) -> list[CaptionSegment]:
    """Collapse repeated and growing caption cues into an ordered sequence.

    Each cue is compared with the last accepted one. Within
    ``MERGE_GAP_SECONDS`` of the accepted cue's end:

    * an identical cue is dropped,
    * a cue that is a fragment of the accepted text is dropped,
    * a cue that extends the accepted text replaces it, keeping the accepted
      start and stretching the duration to the new end.

    An extended cue is checked again against the cue accepted before it, so
    no two neighbours in the output satisfy any of these rules. Anything else
    is accepted as is. Cues with no text are dropped.
    """

    normalized: list[CaptionSegment] = []
    for segment in segments:
        text = normalize_text(segment.text)
        if not text:
            continue
        candidate = CaptionSegment(text=text, start=segment.start, duration=segment.duration)

        relation = _relation(normalized[-1], candidate) if normalized else None
        if relation == "drop":
            continue
        if relation != "extend":
            normalized.append(candidate)
            continue

        normalized[-1] = _extend(normalized[-1], candidate)
        while len(normalized) > 1:
            relation = _relation(normalized[-2], normalized[-1])
            if relation == "drop":
                normalized.pop()
            elif relation == "extend":
                normalized[-2:] = [_extend(normalized[-2], normalized[-1])]
                continue
            break
    return normalized


def plain_text(segments: Sequence[CaptionSegment]) -> str:
    return " ".join(segment.text for segment in segments)


def format_timestamp(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_timestamped(segments: Sequence[CaptionSegment]) -> str:
    blocks = [
        f"[{index}] {format_timestamp(segment.start)}\n{segment.text}\n"
        for index, segment in enumerate(segments, start=1)
    ]
    return "\n".join(blocks)
