"""Runner configuration.

``RunnerConfig`` is every per-run input the job engine reads. It is a
plain pydantic model built explicitly by the caller; the engine never
consults process environment variables itself.

``RunnerSettings`` is the one place ambient state is read: it loads
``LOCALCI_*`` variables (and ``GITHUB_TOKEN`` / ``GITHUB_ACTOR``) plus an
optional ``.env`` file, and turns them into a ``RunnerConfig``.

Example::

    settings = RunnerSettings()
    settings.configure_logging()
    config = settings.to_config(
        workdir="/src/project",
        event_name="push",
        platforms={"ubuntu-latest": "node:16-buster-slim"},
    )
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from pydantic_settings import SettingsConfigDict

from localci.core.errors import ConfigError
from localci.core.settings import LocalCISettings

DEFAULT_ACTOR = "nektos/act"


class RunnerConfig(BaseModel):
    """Configuration for running jobs locally.

    Example::

        config = RunnerConfig(
            workdir="/src/project",
            platforms={"ubuntu-latest": "node:16-buster-slim"},
            reuse_containers=True,
        )
    """

    # Source tree
    workdir: str = Field(default=".", description="Host working directory of the repository")
    bind_workdir: bool = Field(
        default=False,
        description="Bind-mount the working directory instead of copying it",
    )

    # Container policy
    reuse_containers: bool = Field(
        default=False,
        description="Leave containers running between runs and reuse them",
    )
    force_pull: bool = Field(default=False, description="Always pull the job image")
    log_output: bool = Field(
        default=False,
        description="Log container output at INFO instead of DEBUG",
    )
    platforms: dict[str, str] = Field(
        default_factory=dict,
        description="runs-on label -> container image",
    )
    tool_name: str = Field(
        default="localci",
        description="Prefix used in container and volume names",
    )

    # Inputs exposed to jobs
    env: dict[str, str] = Field(default_factory=dict, description="Global environment")
    secrets: dict[str, str] = Field(default_factory=dict)
    actor: str = Field(default="", description="User that triggered the event")
    event_name: str = Field(default="", description="Name of the triggering event")
    github_token: str = Field(
        default="",
        description="Token used when secrets carry no GITHUB_TOKEN",
    )

    @field_validator("platforms")
    @classmethod
    def _lower_platform_labels(cls, value: dict[str, str]) -> dict[str, str]:
        return {label.lower(): image for label, image in value.items()}


class RunnerSettings(LocalCISettings):
    """Environment-driven defaults for ``RunnerConfig``."""

    model_config = SettingsConfigDict(populate_by_name=True)

    github_token: str = Field(
        default="",
        validation_alias=AliasChoices("LOCALCI_GITHUB_TOKEN", "GITHUB_TOKEN"),
    )
    actor: str = Field(
        default="",
        validation_alias=AliasChoices("LOCALCI_ACTOR", "GITHUB_ACTOR"),
    )
    reuse_containers: bool = False
    force_pull: bool = False
    bind_workdir: bool = False
    log_output: bool = False

    def to_config(self, **overrides: Any) -> RunnerConfig:
        """Build a ``RunnerConfig`` from these settings plus explicit overrides.

        Raises:
            ConfigError: when the combined values do not validate.
        """
        values: dict[str, Any] = {
            "github_token": self.github_token,
            "actor": self.actor,
            "reuse_containers": self.reuse_containers,
            "force_pull": self.force_pull,
            "bind_workdir": self.bind_workdir,
            "log_output": self.log_output,
        }
        values.update(overrides)
        try:
            return RunnerConfig(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid runner configuration: {exc}", cause=exc) from exc
