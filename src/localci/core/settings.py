"""Shared base settings for localci.

Ambient process state (environment variables, ``.env`` files) is read in
exactly one place: a ``pydantic-settings`` model instantiated at start-up.
Everything downstream receives explicit values, so the engine can be
exercised in tests without mutating ``os.environ``.

Examples:
    >>> from localci.core.settings import LocalCISettings
    >>> class MySettings(LocalCISettings):
    ...     model_config = {"env_prefix": "MY_"}
    ...     extra_flag: bool = False

Tags:
    settings, configuration, pydantic, environment, localci
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from localci.core.logging import configure_logging


class LocalCISettings(BaseSettings):
    """Common settings shared across localci entry points.

    Fields
    ──────
    log_level    : structlog log level
    json_logs    : JSON output (None = auto-detect from tty)
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCALCI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    def configure_logging(self) -> None:
        """Apply the logging fields of these settings."""
        configure_logging(level=self.log_level, json_format=self.json_logs)
