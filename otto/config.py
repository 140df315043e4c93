"""
Centralized configuration with environment variable overrides.

Matching thresholds, sandbox limits, and external-action settings are
configurable here. Nothing is hardcoded in matcher, controller, or
engine logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from otto.logging_context import build_log_handler

load_dotenv()

logger = logging.getLogger(__name__)

AUTH_TYPES = ("none", "bearer", "api-key")
START_METHODS = ("spawn", "fork", "forkserver")
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(turn_id)s]: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _csv(env_var: str, default: str) -> tuple[str, ...]:
    """Parse a comma-separated env var into a tuple of lowercase items."""
    raw = os.getenv(env_var, default)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class MatcherConfig:
    """Scoring weights and decision thresholds for intent matching."""

    score_floor: float = _safe_float("MATCH_SCORE_FLOOR", "0.3")
    auto_execute_threshold: float = _safe_float("AUTO_EXECUTE_THRESHOLD", "0.7")
    disambiguation_gap: float = _safe_float("DISAMBIGUATION_GAP", "0.1")
    description_weight: float = _safe_float("DESCRIPTION_WEIGHT", "0.8")
    tag_boost: float = _safe_float("TAG_BOOST", "0.2")
    action_verb_weight: float = _safe_float("ACTION_VERB_WEIGHT", "0.6")
    action_floor: float = _safe_float("ACTION_FLOOR", "0.5")
    action_verbs: tuple[str, ...] = _csv(
        "ACTION_VERBS", "fetch,query,submit,get,post,retrieve"
    )
    max_disambiguation_options: int = _safe_int("MAX_DISAMBIGUATION_OPTIONS", "3")


@dataclass(frozen=True)
class ExecutionConfig:
    """Sandbox limits for local script execution."""

    timeout_ms: int = _safe_int("EXECUTION_TIMEOUT_MS", "5000")
    start_method: str = os.getenv("SANDBOX_START_METHOD", "spawn")
    # 0 derives the CPU rlimit from the timeout
    cpu_limit_sec: int = _safe_int("SANDBOX_CPU_LIMIT_SEC", "0")
    # address-space cap for the sandbox process; 0 disables it
    memory_limit_mb: int = _safe_int("SANDBOX_MEMORY_LIMIT_MB", "1024")


@dataclass(frozen=True)
class ActionConfig:
    """External-action endpoint, credentials, and request timeout."""

    base_url: str = os.getenv("ACTION_BASE_URL", "")
    auth_type: str = os.getenv("ACTION_AUTH_TYPE", "none")
    auth_token: str = os.getenv("ACTION_AUTH_TOKEN", "")
    timeout_ms: int = _safe_int("ACTION_TIMEOUT_MS", "10000")


@dataclass(frozen=True)
class DialogueConfig:
    """Phrases and limits governing the multi-turn dialogue."""

    reset_phrases: tuple[str, ...] = _csv(
        "RESET_PHRASES", "cancel,reset,start over,never mind"
    )


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    action: ActionConfig = field(default_factory=ActionConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    assistant_name: str = os.getenv("ASSISTANT_NAME", "Otto")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    for name, value in [
        ("MATCH_SCORE_FLOOR", config.matcher.score_floor),
        ("AUTO_EXECUTE_THRESHOLD", config.matcher.auto_execute_threshold),
        ("DISAMBIGUATION_GAP", config.matcher.disambiguation_gap),
        ("DESCRIPTION_WEIGHT", config.matcher.description_weight),
        ("TAG_BOOST", config.matcher.tag_boost),
        ("ACTION_VERB_WEIGHT", config.matcher.action_verb_weight),
        ("ACTION_FLOOR", config.matcher.action_floor),
    ]:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")

    if config.matcher.auto_execute_threshold < config.matcher.score_floor:
        raise ValueError(
            "AUTO_EXECUTE_THRESHOLD must be >= MATCH_SCORE_FLOOR, "
            f"got {config.matcher.auto_execute_threshold} < {config.matcher.score_floor}"
        )
    if not config.matcher.action_verbs:
        raise ValueError("ACTION_VERBS must name at least one verb")
    if config.matcher.max_disambiguation_options < 2:
        raise ValueError(
            "MAX_DISAMBIGUATION_OPTIONS must be >= 2, "
            f"got {config.matcher.max_disambiguation_options}"
        )

    if config.execution.timeout_ms < 1:
        raise ValueError(
            f"EXECUTION_TIMEOUT_MS must be >= 1, got {config.execution.timeout_ms}"
        )
    if config.execution.start_method not in START_METHODS:
        raise ValueError(
            f"SANDBOX_START_METHOD must be one of {START_METHODS}, "
            f"got {config.execution.start_method!r}"
        )
    if config.execution.cpu_limit_sec < 0:
        raise ValueError(
            f"SANDBOX_CPU_LIMIT_SEC must be >= 0, got {config.execution.cpu_limit_sec}"
        )
    if config.execution.memory_limit_mb < 0:
        raise ValueError(
            f"SANDBOX_MEMORY_LIMIT_MB must be >= 0, got {config.execution.memory_limit_mb}"
        )

    if config.action.auth_type not in AUTH_TYPES:
        raise ValueError(
            f"ACTION_AUTH_TYPE must be one of {AUTH_TYPES}, got {config.action.auth_type!r}"
        )
    if config.action.timeout_ms < 1:
        raise ValueError(
            f"ACTION_TIMEOUT_MS must be >= 1, got {config.action.timeout_ms}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        handlers=[build_log_handler(LOG_FORMAT, LOG_DATEFMT)],
    )
    logger.info("Configuration loaded for '%s'", config.assistant_name)
    return config


# Singleton instance
settings = load_config()
