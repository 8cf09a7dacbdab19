"""Tests for timsync.config -- sync target resolution and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests load_target()
precedence and validate_target().
"""

import logging

import pytest

from timsync.config import Target, load_target, validate_target
from timsync.config_schema import SyncSettings, TargetConfig
from timsync.errors import ConfigError


def _target(**overrides):
    values = dict(
        name="default",
        host="https://tim.example.com",
        folder_root="kurssit/demo",
        username="user",
        password="pass",
    )
    values.update(overrides)
    return Target(**values)


# -------------------------------------------------------------------------
# validate_target()
# -------------------------------------------------------------------------


class TestValidateTarget:
    """Tests for validate_target() -- URL format, root and credential checks."""

    def test_valid_target(self):
        validate_target(_target())

    def test_http_url_valid(self):
        validate_target(_target(host="http://localhost:5000"))

    def test_trailing_slash_removed(self):
        target = _target(host="https://tim.example.com/ ")
        validate_target(target)
        assert target.host == "https://tim.example.com"

    @pytest.mark.parametrize("host", ["tim.example.com", "ftp://tim.example.com"])
    def test_invalid_scheme(self, host):
        with pytest.raises(ConfigError, match="must start with http:// or https://"):
            validate_target(_target(host=host))

    def test_empty_hostname(self):
        with pytest.raises(ConfigError, match="must include a hostname"):
            validate_target(_target(host="https://"))

    @pytest.mark.parametrize("root", ["/kurssit", "kurssit/", ""])
    def test_invalid_folder_root(self, root):
        with pytest.raises(ConfigError):
            validate_target(_target(folder_root=root))

    def test_empty_username(self):
        with pytest.raises(ConfigError, match="Username cannot be empty"):
            validate_target(_target(username="  "))

    def test_empty_password(self):
        with pytest.raises(ConfigError, match="Password cannot be empty"):
            validate_target(_target(password=""))

    def test_insecure_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="timsync.config"):
            validate_target(_target(insecure=True))
        assert "SSL verification disabled" in caplog.text


# -------------------------------------------------------------------------
# load_target()
# -------------------------------------------------------------------------

YAML_TARGET = TargetConfig(
    host="https://yaml.example.com",
    folder_root="kurssit/yaml",
    username="yamluser",
    password="yamlpass",
)


class TestLoadTarget:
    """Tests for load_target() precedence: CLI > env > YAML > defaults."""

    def test_yaml_only(self):
        target = load_target(yaml_target=YAML_TARGET)
        assert target.name == "default"
        assert target.host == "https://yaml.example.com"
        assert target.folder_root == "kurssit/yaml"
        assert target.username == "yamluser"
        assert target.max_parallel_requests == 5

    def test_env_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("TIMSYNC_HOST", "https://env.example.com")
        monkeypatch.setenv("TIMSYNC_FOLDER_ROOT", "kurssit/env")
        target = load_target(yaml_target=YAML_TARGET)
        assert target.host == "https://env.example.com"
        assert target.folder_root == "kurssit/env"
        assert target.password == "yamlpass"

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("TIMSYNC_USERNAME", "envuser")
        target = load_target(
            "staging",
            username="cliuser",
            folder_root="kurssit/cli",
            yaml_target=YAML_TARGET,
        )
        assert target.name == "staging"
        assert target.username == "cliuser"
        assert target.folder_root == "kurssit/cli"

    def test_env_only(self, monkeypatch):
        monkeypatch.setenv("TIMSYNC_HOST", "https://env.example.com")
        monkeypatch.setenv("TIMSYNC_FOLDER_ROOT", "kurssit/env")
        monkeypatch.setenv("TIMSYNC_USERNAME", "envuser")
        monkeypatch.setenv("TIMSYNC_PASSWORD", "envpass")
        assert load_target().username == "envuser"

    def test_missing_value(self):
        with pytest.raises(ConfigError, match="TIMSYNC_PASSWORD"):
            load_target(yaml_target=YAML_TARGET.model_copy(update={"password": None}))

    @pytest.mark.parametrize(
        ("env", "yaml_value", "cli", "expected"),
        [
            (None, False, False, False),
            (None, True, False, True),
            ("false", True, False, False),
            ("yes", False, False, True),
            ("false", False, True, True),
        ],
    )
    def test_insecure_precedence(self, monkeypatch, env, yaml_value, cli, expected):
        if env is not None:
            monkeypatch.setenv("TIMSYNC_INSECURE", env)
        yaml_target = YAML_TARGET.model_copy(update={"insecure": yaml_value})
        assert load_target(insecure=cli, yaml_target=yaml_target).insecure is expected

    def test_max_parallel_from_settings(self):
        target = load_target(
            yaml_target=YAML_TARGET,
            sync_settings=SyncSettings(max_parallel_requests=9),
        )
        assert target.max_parallel_requests == 9

    def test_max_parallel_env_beats_settings(self, monkeypatch):
        monkeypatch.setenv("TIMSYNC_MAX_PARALLEL_REQUESTS", "3")
        target = load_target(
            yaml_target=YAML_TARGET,
            sync_settings=SyncSettings(max_parallel_requests=9),
        )
        assert target.max_parallel_requests == 3

    @pytest.mark.parametrize("value", ["abc", "0", "101"])
    def test_max_parallel_env_invalid(self, monkeypatch, value):
        monkeypatch.setenv("TIMSYNC_MAX_PARALLEL_REQUESTS", value)
        with pytest.raises(ConfigError, match="TIMSYNC_MAX_PARALLEL_REQUESTS"):
            load_target(yaml_target=YAML_TARGET)

    def test_result_is_validated(self):
        with pytest.raises(ConfigError, match="http"):
            load_target(host="tim.example.com", yaml_target=YAML_TARGET)
