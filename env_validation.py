"""Environment variable validation and management."""

import logging
import os
from dataclasses import dataclass
from typing import Dict

logger = logging.getLogger(__name__)


class ConfigurationError(EnvironmentError):
    """Raised when required environment variables are missing or invalid."""


_DEFAULTS: Dict[str, str] = {
    "DB_PATH": "data.db",
    "CONTENT_CORPUS_PATH": "content_items.json",
}

_OPTIONAL_VARS = {
    "LLM_URL": "Completion endpoint used for practice feedback",
    "LLM_MODEL": "Model identifier sent to the completion endpoint",
}

_POSITIVE_NUMBERS = (
    "DB_TIMEOUT_SECONDS",
    "DB_WRITE_TIMEOUT_SECONDS",
    "HEALTH_TIMEOUT_SECONDS",
    "LLM_TIMEOUT",
)
_POSITIVE_INTS = ("DB_MAX_CONNECTIONS", "DB_MAX_RETRIES", "DB_WRITE_MAX_RETRIES")


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def validate_environment() -> None:
    """Apply defaults and validate the environment.

    Raises ConfigurationError if validation fails.
    """
    for var, value in _DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    problems = []
    for var in _POSITIVE_NUMBERS:
        raw = os.getenv(var)
        if not raw:
            continue
        try:
            if float(raw) <= 0:
                problems.append(f"{var} must be positive (got {raw})")
        except ValueError:
            problems.append(f"{var} must be numeric (got {raw})")

    for var in _POSITIVE_INTS:
        raw = os.getenv(var)
        if not raw:
            continue
        try:
            if int(raw) < 1:
                problems.append(f"{var} must be >= 1 (got {raw})")
        except ValueError:
            problems.append(f"{var} must be an integer (got {raw})")

    backoff = os.getenv("BACKOFF_BASE_SECONDS")
    if backoff:
        try:
            if float(backoff) < 0:
                problems.append(f"BACKOFF_BASE_SECONDS cannot be negative (got {backoff})")
        except ValueError:
            problems.append(f"BACKOFF_BASE_SECONDS must be numeric (got {backoff})")

    llm_url = os.getenv("LLM_URL")
    if llm_url and not (llm_url.startswith("http://") or llm_url.startswith("https://")):
        problems.append(f"Invalid URL format for LLM_URL: {llm_url}")

    if problems:
        raise ConfigurationError("; ".join(problems))

    for var, description in _OPTIONAL_VARS.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


@dataclass(frozen=True)
class Settings:
    db_path: str = "data.db"
    db_max_connections: int = 5
    read_max_retries: int = 2
    read_timeout: float = 10.0
    write_max_retries: int = 3
    write_timeout: float = 12.0
    health_timeout: float = 5.0
    backoff_base: float = 1.0
    content_corpus_path: str = "content_items.json"
    seed_demo_courses: bool = True
    llm_url: str = "http://localhost:4891/v1/chat/completions"
    llm_model: str = "gpt-4o-mini"
    llm_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("DB_PATH") or cls.db_path,
            db_max_connections=get_env_int("DB_MAX_CONNECTIONS", cls.db_max_connections),
            read_max_retries=get_env_int("DB_MAX_RETRIES", cls.read_max_retries),
            read_timeout=get_env_float("DB_TIMEOUT_SECONDS", cls.read_timeout),
            write_max_retries=get_env_int("DB_WRITE_MAX_RETRIES", cls.write_max_retries),
            write_timeout=get_env_float("DB_WRITE_TIMEOUT_SECONDS", cls.write_timeout),
            health_timeout=get_env_float("HEALTH_TIMEOUT_SECONDS", cls.health_timeout),
            backoff_base=get_env_float("BACKOFF_BASE_SECONDS", cls.backoff_base),
            content_corpus_path=os.getenv("CONTENT_CORPUS_PATH") or cls.content_corpus_path,
            seed_demo_courses=get_env_bool("SEED_DEMO_COURSES", cls.seed_demo_courses),
            llm_url=os.getenv("LLM_URL") or cls.llm_url,
            llm_model=os.getenv("LLM_MODEL") or cls.llm_model,
            llm_timeout=get_env_float("LLM_TIMEOUT", cls.llm_timeout),
        )
