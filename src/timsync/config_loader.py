"""
Configuration file loading for timsync projects.

A project keeps its settings in ``.timsync/config.yml``. Settings shared by
all projects of a user may live in ``~/.config/timsync/config.yml``, and
``TIMSYNC_CONFIG`` can point at one more file that overrides both. Top-level
sections of a more specific file replace those of a more general one, and
``${VAR}`` / ``${VAR:-default}`` references are expanded from the
environment afterwards, so credentials need not be written to disk.

Usage:
    from timsync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(project_root)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FOLDER = ".timsync"
CONFIG_FILE_NAME = "config.yml"
CONFIG_ENV_VAR = "TIMSYNC_CONFIG"

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in ``value``.

    An unset or empty variable expands to its default, or to ``""``.
    """
    return _ENV_REFERENCE.sub(
        lambda m: os.environ.get(m["name"]) or m["default"] or "", value
    )


def _expand(data: Any) -> Any:
    if isinstance(data, str):
        return interpolate_env_vars(data)
    if isinstance(data, dict):
        return {key: _expand(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand(item) for item in data]
    return data


# ---------------------------------------------------------------------------
# Locating config files
# ---------------------------------------------------------------------------


def project_config_path(project_root: Path) -> Path:
    """Where the project config file lives (it may not exist yet)."""
    return project_root / CONFIG_FOLDER / CONFIG_FILE_NAME


def discover_config_files(project_root: Path) -> list[Path]:
    """Existing config files for ``project_root``, most specific first.

    Candidates are the ``TIMSYNC_CONFIG`` file, the project's
    ``config.yml`` (or ``config.yaml``) and the user-wide config.
    """
    candidates = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates += [
        project_config_path(project_root),
        project_root / CONFIG_FOLDER / "config.yaml",
        Path.home() / ".config" / "timsync" / CONFIG_FILE_NAME,
    ]
    return [path for path in candidates if path.is_file()]


def _read(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring config file %s: top level is a %s, not a mapping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config(project_root: Path) -> dict[str, Any]:
    """Merged raw configuration of the project at ``project_root``.

    Returns an empty dict when there is no config file at all.

    Raises:
        ConfigError: A config file exists but is not valid YAML.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files(project_root)):
        logger.debug("Loading config: %s", path)
        merged.update(_read(path))
    return _expand(merged)


# ---------------------------------------------------------------------------
# Starter config
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# timsync configuration
#
# Target credentials can also be set via environment variables:
#   TIMSYNC_HOST, TIMSYNC_FOLDER_ROOT, TIMSYNC_USERNAME, TIMSYNC_PASSWORD
#
# Do not use your personal TIM account here. Create a separate account
# for syncing, since credentials are stored in plain text.
#
targets:
  default:
    host: https://tim.jyu.fi
    folder_root: ${TIMSYNC_FOLDER_ROOT:-}
    username: ${TIMSYNC_USERNAME:-}
    password: ${TIMSYNC_PASSWORD:-}
#
# sync:
#   max_parallel_requests: 5
#   prune: false
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(project_root: Path, force: bool = False) -> Path:
    """Write the starter config unless one exists (or ``force`` is set)."""
    path = project_config_path(project_root)
    if path.exists() and not force:
        logger.debug("Config file already exists: %s", path)
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path
