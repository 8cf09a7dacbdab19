"""Unified configuration schema for timsync.

Defines Pydantic models for the project config structure with dedicated
sections for sync targets, sync behaviour and logging.

Usage:
    from timsync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config(project_root)
    unified = build_config(raw)
    target = unified.targets["default"]
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TargetConfig(BaseModel):
    """Connection settings for one TIM sync target.

    All fields are optional so that env vars and CLI args can supply them
    at runtime instead.
    """

    host: str | None = Field(default=None, description="TIM server URL")
    folder_root: str | None = Field(
        default=None,
        description="Remote folder that receives the compiled tree",
    )
    username: str | None = Field(default=None, description="TIM username")
    password: str | None = Field(default=None, description="TIM password")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Sync behaviour shared by all targets."""

    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the TIM server (1-100)",
    )
    prune: bool = Field(
        default=False,
        description="Delete managed remote documents missing locally",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    targets: dict[str, TargetConfig] = Field(default_factory=dict)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def target(self, name: str | None = None) -> TargetConfig:
        """Return the named target.

        With no name, the ``default`` target is used; a config holding a
        single target also resolves that one. A missing target yields an
        empty ``TargetConfig`` so that env vars can fill it in.
        """
        if name:
            if name not in self.targets:
                raise ConfigError(
                    f"Unknown target '{name}'. Known targets: "
                    + (", ".join(sorted(self.targets)) or "(none)")
                )
            return self.targets[name]
        if "default" in self.targets:
            return self.targets["default"]
        if len(self.targets) == 1:
            return next(iter(self.targets.values()))
        return TargetConfig()


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults. Validation failures are reported as
    ``ConfigError``.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    # YAML `targets:` with no entries parses as None
    data = dict(raw_data)
    if data.get("targets") is None:
        data.pop("targets", None)

    try:
        return UnifiedConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
