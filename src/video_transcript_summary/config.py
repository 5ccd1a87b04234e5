"""Environment-driven settings for batch runs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    ai_provider: str = "gemini"
    language: str = "ko"
    gemini_api_key: str | None = None
    gemini_api_key_secondary: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    openai_api_key: str | None = None
    openai_api_key_secondary: str | None = None
    openai_model: str = "gpt-3.5-turbo"
    ytdlp_path: str = "yt-dlp"
    ytdlp_cookies: str | None = None
    ytdlp_cookies_from_browser: str | None = None
    output_dir: Path = Path("data") / "site"
    remote_url: str | None = None
    state_file: Path = Path("data") / "processed-videos.json"
    cache_dir: Path = Path("data") / "cache"
    log_file: Path | None = None

    @property
    def api_key(self) -> str | None:
        return self.openai_api_key if self.ai_provider == "openai" else self.gemini_api_key

    @property
    def secondary_api_key(self) -> str | None:
        if self.ai_provider == "openai":
            return self.openai_api_key_secondary
        return self.gemini_api_key_secondary

    @property
    def model(self) -> str:
        return self.openai_model if self.ai_provider == "openai" else self.gemini_model


def load_settings(env: Mapping[str, str] | None = None, *, dotenv: bool = True) -> Settings:
    """Build ``Settings`` from ``env`` (the process environment by default).

    A ``.env`` file is loaded first when ``dotenv`` is true; it never
    overrides variables that are already set.
    """

    if env is None:
        if dotenv:
            load_dotenv(override=False)
        env = os.environ

    def get(name: str) -> str | None:
        value = env.get(name)
        return value.strip() if value and value.strip() else None

    remote_url = get("SUMMARY_REMOTE_URL")
    if remote_url is None and get("SUMMARY_REMOTE_BASE_URL"):
        remote_url = f"{get('SUMMARY_REMOTE_BASE_URL').rstrip('/')}/latest.json"

    log_file = get("SUMMARY_LOG_FILE")
    return Settings(
        ai_provider=(get("AI_PROVIDER") or "gemini").lower(),
        language=get("SUBTITLE_LANGUAGE") or "ko",
        gemini_api_key=get("GEMINI_API_KEY"),
        gemini_api_key_secondary=get("GEMINI_API_KEY_SECONDARY"),
        gemini_model=get("GEMINI_MODEL") or "gemini-1.5-flash",
        openai_api_key=get("OPENAI_API_KEY"),
        openai_api_key_secondary=get("OPENAI_API_KEY_SECONDARY"),
        openai_model=get("OPENAI_MODEL") or "gpt-3.5-turbo",
        ytdlp_path=get("YTDLP_PATH") or "yt-dlp",
        ytdlp_cookies=get("YTDLP_COOKIES"),
        ytdlp_cookies_from_browser=get("YTDLP_COOKIES_FROM_BROWSER"),
        output_dir=Path(get("SUMMARY_OUTPUT_DIR") or Path("data") / "site"),
        remote_url=remote_url,
        state_file=Path(get("STATE_FILE") or Path("data") / "processed-videos.json"),
        cache_dir=Path(get("CACHE_DIR") or Path("data") / "cache"),
        log_file=Path(log_file) if log_file else None,
    )
