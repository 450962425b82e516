"""Application settings management for the receipt OCR proxy."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

DEFAULT_OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_TIMEOUT = 60


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_api_url: str = DEFAULT_OPENAI_API_URL
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_timeout: int = DEFAULT_OPENAI_TIMEOUT
    timezone: Optional[str] = None

    @staticmethod
    def _optional_env(name: str) -> Optional[str]:
        value = os.getenv(name)
        if value is None or not value.strip():
            return None
        return value.strip()

    @classmethod
    def load(cls) -> "Settings":
        _ensure_env_file_loaded()

        api_url = cls._optional_env("OPENAI_API_URL") or DEFAULT_OPENAI_API_URL
        if not api_url.startswith("https://"):
            raise RuntimeError("OPENAI_API_URL must start with https://")

        raw_timeout = cls._optional_env("OPENAI_TIMEOUT")
        timeout = DEFAULT_OPENAI_TIMEOUT
        if raw_timeout is not None:
            try:
                timeout = int(raw_timeout)
            except ValueError as exc:
                raise RuntimeError("OPENAI_TIMEOUT must be an integer") from exc
            if timeout <= 0:
                raise RuntimeError("OPENAI_TIMEOUT must be positive")

        timezone = cls._optional_env("TZ")
        if timezone is not None:
            try:
                ZoneInfo(timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise RuntimeError(f"TZ is not a known timezone: {timezone}") from exc

        return cls(
            # Checked per request by the handler.
            openai_api_key=cls._optional_env("OPENAI_API_KEY"),
            openai_api_url=api_url,
            openai_model=cls._optional_env("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            openai_timeout=timeout,
            timezone=timezone,
        )

    def now(self) -> datetime:
        """Current wall-clock time in the configured timezone."""
        if self.timezone:
            return datetime.now(ZoneInfo(self.timezone))
        return datetime.now()


@lru_cache()
def get_settings() -> Settings:
    return Settings.load()


_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_env_files_read = False


def reset_settings_state() -> None:
    """Forget the cached ``Settings`` and re-read ``.env`` files on next load."""
    global _env_files_read
    _env_files_read = False
    get_settings.cache_clear()


def _ensure_env_file_loaded() -> None:
    """Read ``.env`` from the working directory, then the project root.

    Real environment variables always win over file values.
    """
    global _env_files_read
    if _env_files_read:
        return
    for env_path in (Path.cwd() / ".env", _PROJECT_ROOT / ".env"):
        if env_path.is_file():
            load_dotenv(dotenv_path=env_path, override=False)
    _env_files_read = True


__all__ = ["Settings", "get_settings", "reset_settings_state"]
