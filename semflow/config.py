"""Runtime configuration read from the environment (and a local .env file)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# load environment variables
load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Process-wide settings.

    Components take explicit constructor arguments; these values are only
    consulted for defaults (agent budgets, tokenizer encoding, trace sinks).
    """

    openai_api_key: str | None = None
    log_level: str = "WARNING"
    tokenizer_encoding: str = "cl100k_base"
    trace_dir: str | None = None
    trace_url: str | None = None
    prompt_sets_url: str = "http://localhost:8000"
    agent_max_iterations: int = 6
    agent_max_execution_time: float = 30.0  # seconds
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            log_level=os.getenv("SEMFLOW_LOG_LEVEL", "WARNING").upper(),
            tokenizer_encoding=os.getenv("SEMFLOW_TOKENIZER_ENCODING", "cl100k_base"),
            trace_dir=os.getenv("SEMFLOW_TRACE_DIR") or None,
            trace_url=os.getenv("SEMFLOW_TRACE_URL") or None,
            prompt_sets_url=os.getenv("SEMFLOW_PROMPT_SETS_URL", "http://localhost:8000"),
            agent_max_iterations=_int_env("SEMFLOW_AGENT_MAX_ITERATIONS", 6),
            agent_max_execution_time=_float_env("SEMFLOW_AGENT_MAX_EXECUTION_TIME", 30.0),
            http_timeout=_float_env("SEMFLOW_HTTP_TIMEOUT", 10.0),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None


def configure_logging(level: str | int | None = None) -> None:
    """Attach a stream handler to the ``semflow`` logger hierarchy."""
    logger = logging.getLogger("semflow")
    logger.setLevel(level or get_settings().log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)
