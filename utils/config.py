"""Environment-driven application settings."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from services.backend.catalog import DEFAULT_FALLBACK_MODELS
from services.backend.stream_decoder import DEFAULT_BUFFER_LIMIT
from services.backend.transport import trim_trailing_slashes
from services.chat.context_builder import DEFAULT_WINDOW

DEFAULT_BASE_URL = "http://localhost:1234/v1"
DEFAULT_API_KEY = "lmstudio"


def _int_setting(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} is not an integer") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class AppConfig:
    """Settings resolved once at startup.

    Attributes:
        base_url: OpenAI-compatible base URL, trailing slashes removed.
        api_key: Bearer key for the backend.
        database_dir: Directory holding chat.db (may be None for in-memory runs).
        context_window: System entry plus window-1 history entries per request.
        stream_buffer_limit: Max bytes the stream decoder may hold for an incomplete event.
        default_models: Known-good fallback ids tried after the persisted choice.
        log_level: Root logging level name.
    """

    base_url: str = DEFAULT_BASE_URL
    api_key: str = DEFAULT_API_KEY
    database_dir: Optional[str] = None
    context_window: int = DEFAULT_WINDOW
    stream_buffer_limit: int = DEFAULT_BUFFER_LIMIT
    default_models: Tuple[str, ...] = DEFAULT_FALLBACK_MODELS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if env is None else env

        base_url = trim_trailing_slashes((env.get("LLM_BASE_URL") or "").strip() or DEFAULT_BASE_URL)
        api_key = (env.get("LLM_API_KEY") or "").strip() or DEFAULT_API_KEY

        database_dir = (env.get("DATABASE_DIR") or "").strip()
        if not database_dir:
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )

        raw_models = env.get("DEFAULT_MODELS")
        if raw_models is None:
            default_models = DEFAULT_FALLBACK_MODELS
        else:
            default_models = tuple(m.strip() for m in raw_models.split(",") if m.strip())

        return cls(
            base_url=base_url,
            api_key=api_key,
            database_dir=database_dir,
            context_window=_int_setting(env, "CONTEXT_WINDOW", DEFAULT_WINDOW, 1),
            stream_buffer_limit=_int_setting(env, "STREAM_BUFFER_LIMIT", DEFAULT_BUFFER_LIMIT, 1),
            default_models=default_models,
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
