"""Environment variable validation and engine settings."""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate the tutoring engine environment variables.

    Raises ConfigurationError if validation fails.
    """
    # Nothing is strictly required; every setting has a usable default.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "tutor.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "PREDICTOR_URL": "Auxiliary performance predictor endpoint",
        "CURRICULUM_PATH": "Curriculum definition (JSON or YAML)",
        "SKILL_CATALOG_PATH": "Skill catalog definition (JSON or YAML)",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    value = os.getenv("PREDICTOR_URL")
    if value and not (value.startswith("http://") or value.startswith("https://")):
        raise ConfigurationError(f"Invalid URL format for PREDICTOR_URL: {value}")

    get_env_float("PREDICTOR_TIMEOUT_SECONDS", 2.0, minimum=0.01)
    get_env_float("SESSION_TIME_MINUTES", 60.0, minimum=1.0)
    get_env_int("SESSIONS_PER_WEEK", 5, minimum=1)
    get_env_int("MODEL_CACHE_SIZE", 1024, minimum=1)

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    """Get a float from the environment, rejecting malformed or too-small values."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def get_env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class EngineSettings:
    """Resolved configuration for a :class:`tutor_engine.TutoringEngine`."""

    db_path: str = "tutor.db"
    predictor_url: Optional[str] = None
    predictor_timeout_seconds: float = 2.0
    curriculum_path: Optional[str] = None
    skill_catalog_path: Optional[str] = None
    session_time_minutes: float = 60.0
    sessions_per_week: int = 5
    structured_logs: bool = True
    model_cache_size: int = 1024

    @classmethod
    def from_env(cls) -> "EngineSettings":
        validate_environment()
        return cls(
            db_path=os.getenv("DB_PATH", "tutor.db"),
            predictor_url=os.getenv("PREDICTOR_URL") or None,
            predictor_timeout_seconds=get_env_float("PREDICTOR_TIMEOUT_SECONDS", 2.0, minimum=0.01),
            curriculum_path=os.getenv("CURRICULUM_PATH") or None,
            skill_catalog_path=os.getenv("SKILL_CATALOG_PATH") or None,
            session_time_minutes=get_env_float("SESSION_TIME_MINUTES", 60.0, minimum=1.0),
            sessions_per_week=get_env_int("SESSIONS_PER_WEEK", 5, minimum=1),
            structured_logs=get_env_bool("TUTOR_STRUCTURED_LOGS", True),
            model_cache_size=get_env_int("MODEL_CACHE_SIZE", 1024, minimum=1),
        )
