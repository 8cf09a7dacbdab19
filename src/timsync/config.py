"""Sync target configuration.

Reads TIM connection settings from CLI args, environment variables, .env
files, and the project YAML config.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    TIMSYNC_HOST: TIM server URL
    TIMSYNC_FOLDER_ROOT: Remote root folder of the compiled tree
    TIMSYNC_USERNAME: TIM username
    TIMSYNC_PASSWORD: TIM password
    TIMSYNC_INSECURE: Skip SSL verification (optional, default: false)
    TIMSYNC_MAX_PARALLEL_REQUESTS: Max parallel requests (optional, default: 5)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .config_schema import SyncSettings, TargetConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class Target:
    name: str
    host: str
    folder_root: str
    username: str
    password: str
    insecure: bool = False
    max_parallel_requests: int = 5


def validate_target(target: Target) -> None:
    """Validate target values and raise ConfigError if invalid.

    Normalizes the host (no trailing slash) in place.
    """
    target.host = target.host.strip()

    if not target.host.startswith(("http://", "https://")):
        raise ConfigError(
            f"Invalid host '{target.host}': must start with http:// or https://"
        )

    parsed = urlparse(target.host)
    if not parsed.hostname:
        raise ConfigError(
            f"Invalid host '{target.host}': URL must include a hostname"
        )

    target.host = target.host.removesuffix("/")

    if not target.folder_root:
        raise ConfigError("folder_root cannot be empty")
    if target.folder_root.startswith("/") or target.folder_root.endswith("/"):
        raise ConfigError(
            f"Invalid folder_root '{target.folder_root}': "
            "must not start or end with '/'"
        )

    if not target.username.strip():
        raise ConfigError(
            "Username cannot be empty. Set TIMSYNC_USERNAME environment variable."
        )

    if not target.password:
        raise ConfigError(
            "Password cannot be empty. Set TIMSYNC_PASSWORD environment variable."
        )

    if target.insecure:
        logger.warning(
            "SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_target(
    name: str = "default",
    *,
    host: str | None = None,
    folder_root: str | None = None,
    username: str | None = None,
    password: str | None = None,
    insecure: bool = False,
    yaml_target: TargetConfig | None = None,
    sync_settings: SyncSettings | None = None,
) -> Target:
    """Resolve a sync target with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML target > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Raises:
        ConfigError: If a required value is missing after checking all
            sources, or a value is invalid.
    """
    fb = yaml_target or TargetConfig()
    settings = sync_settings or SyncSettings()

    def _required(cli: str | None, env_key: str, yaml_value: str | None, label: str) -> str:
        value = cli or os.getenv(env_key) or yaml_value
        if not value:
            raise ConfigError(
                f"{label} not found for target '{name}'. Set {env_key}, "
                f"pass it on the command line, or add it to .timsync/config.yml."
            )
        return value

    final_host = _required(host, "TIMSYNC_HOST", fb.host, "Host")
    final_root = _required(
        folder_root, "TIMSYNC_FOLDER_ROOT", fb.folder_root, "folder_root"
    ).strip()
    final_user = _required(
        username, "TIMSYNC_USERNAME", fb.username, "Username"
    ).strip()
    final_password = _required(
        password, "TIMSYNC_PASSWORD", fb.password, "Password"
    )

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("TIMSYNC_INSECURE")
        final_insecure = (
            env_insecure if env_insecure is not None else fb.insecure
        )

    max_parallel_raw = os.getenv("TIMSYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ConfigError(
                f"Invalid TIMSYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': "
                "must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ConfigError(
                f"Invalid TIMSYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': "
                "must be a number between 1 and 100"
            )
    else:
        final_max_parallel = settings.max_parallel_requests

    target = Target(
        name=name,
        host=final_host,
        folder_root=final_root,
        username=final_user,
        password=final_password,
        insecure=final_insecure,
        max_parallel_requests=final_max_parallel,
    )

    validate_target(target)

    return target
