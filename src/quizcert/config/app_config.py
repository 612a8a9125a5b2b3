"""Application configuration loader.

Loads centralized configuration from data/config/quizcert_v1.yaml
(or the file named by QUIZCERT_CONFIG) with built-in defaults.

Usage:
    from quizcert.config.app_config import load_app_config

    config = load_app_config()
    threshold = config.quiz.default_passing_grade_percent
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/quizcert_v1.yaml")
CONFIG_ENV = "QUIZCERT_CONFIG"
DB_PATH_ENV = "QUIZCERT_DB_PATH"


@dataclass
class DatabaseConfig:
    """SQLite connection settings."""

    path: str = "db/quizcert.db"
    busy_timeout_seconds: float = 5.0


@dataclass
class QuizConfig:
    """Defaults and clamps applied when normalizing quiz payloads."""

    default_passing_grade_percent: int = 80
    max_points_per_question: int = 999
    max_attempts_allowed: int = 999


@dataclass
class CertificateConfig:
    """Configuration for automatic certificate issuance."""

    auto_issue: bool = True


@dataclass
class AppConfig:
    """Application-wide configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    quiz: QuizConfig = field(default_factory=QuizConfig)
    certificates: CertificateConfig = field(default_factory=CertificateConfig)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "database": {
            "path": "db/quizcert.db",
            "busy_timeout_seconds": 5.0,
        },
        "quiz": {
            "default_passing_grade_percent": 80,
            "max_points_per_question": 999,
            "max_attempts_allowed": 999,
        },
        "certificates": {
            "auto_issue": True,
        },
    }


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge user sections over defaults, one level deep."""
    result = {key: dict(value) for key, value in defaults.items()}
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and section in result:
            result[section].update(values)
    return result


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    db_data = data.get("database", {})
    database = DatabaseConfig(
        path=os.environ.get(DB_PATH_ENV) or str(db_data.get("path", "db/quizcert.db")),
        busy_timeout_seconds=float(db_data.get("busy_timeout_seconds", 5.0)),
    )

    quiz_data = data.get("quiz", {})
    quiz = QuizConfig(
        default_passing_grade_percent=int(quiz_data.get("default_passing_grade_percent", 80)),
        max_points_per_question=int(quiz_data.get("max_points_per_question", 999)),
        max_attempts_allowed=int(quiz_data.get("max_attempts_allowed", 999)),
    )

    cert_data = data.get("certificates", {})
    certificates = CertificateConfig(auto_issue=bool(cert_data.get("auto_issue", True)))

    return AppConfig(database=database, quiz=quiz, certificates=certificates)


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    config_file = Path(os.environ.get(CONFIG_ENV, str(CONFIG_FILE)))

    if config_file.exists():
        logger.debug("loading_app_config", source=str(config_file))
        loaded = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            logger.warning("app_config_not_a_mapping", source=str(config_file), type=type(loaded).__name__)
            loaded = {}
        data = _merge(_get_defaults(), loaded)
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
