"""Configuration package for the quiz engine."""

from quizcert.config.app_config import (
    AppConfig,
    CertificateConfig,
    DatabaseConfig,
    QuizConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "CertificateConfig",
    "DatabaseConfig",
    "QuizConfig",
    "clear_config_cache",
    "load_app_config",
]
