"""Runtime configuration and logging setup."""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 4
DEFAULT_LLM_TIMEOUT = 30.0
DEFAULT_TOOL_TIMEOUT = 10.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid value %r for %s", raw, name)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid value %r for %s", raw, name)
        return default


@dataclass
class Settings:
    """
    Tunables for the orchestrator and its collaborators.

    Attributes
    ----------
    standard_model :
        Model used for the ``standard`` tier.
    advanced_model :
        Model used for the ``advanced`` tier.
    max_steps :
        Step ceiling of the planning loop.
    llm_timeout :
        Seconds allowed for a single LLM call.
    tool_timeout :
        Seconds allowed for a single tool handler call.
    database_path :
        Location of the SQLite conversation store.
    log_level :
        Level name passed to :func:`configure_logging`.
    """

    standard_model: str = "gpt-4o-mini"
    advanced_model: str = "gpt-4o"
    max_steps: int = DEFAULT_MAX_STEPS
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    temperature: float = 0.7
    database_path: str = "advisorbot.db"
    log_level: str = "INFO"

    def model_for_tier(self, tier: Optional[str]) -> str:
        if tier == "advanced":
            return self.advanced_model
        return self.standard_model


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from the environment, reading ``.env`` first."""
    load_dotenv(env_file, override=False)
    return Settings(
        standard_model=os.getenv("ADVISORBOT_STANDARD_MODEL", Settings.standard_model),
        advanced_model=os.getenv("ADVISORBOT_ADVANCED_MODEL", Settings.advanced_model),
        max_steps=max(1, _env_int("ADVISORBOT_MAX_STEPS", DEFAULT_MAX_STEPS)),
        llm_timeout=_env_float("ADVISORBOT_LLM_TIMEOUT", DEFAULT_LLM_TIMEOUT),
        tool_timeout=_env_float("ADVISORBOT_TOOL_TIMEOUT", DEFAULT_TOOL_TIMEOUT),
        temperature=_env_float("ADVISORBOT_TEMPERATURE", Settings.temperature),
        database_path=os.getenv("ADVISORBOT_DATABASE_PATH", Settings.database_path),
        log_level=os.getenv("ADVISORBOT_LOG_LEVEL", Settings.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for entry points (CLI, scripts)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def log_event(log: logging.Logger, event: str, **fields: Any) -> None:
    """Emit one structured JSON log line for a request-level event."""
    payload = {"event": event, "timestamp": datetime.now().isoformat(), **fields}
    log.info(json.dumps(payload, default=str))
