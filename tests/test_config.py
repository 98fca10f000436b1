"""Config module tests.

FIDDLE_* environment variable parsing.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from fiddle_runner.config import (
    Config,
    SigintMode,
    get_config,
    load_config,
    reload_config,
)

FIDDLE_VARS = (
    "FIDDLE_BINARY_DIR",
    "FIDDLE_APP_DATA",
    "FIDDLE_PACKAGE_MANAGER",
    "FIDDLE_STOP_TIMEOUT",
    "FIDDLE_FORGE_OUT",
    "FIDDLE_LOG_DEBUG",
    "FIDDLE_SIGINT_MODE",
)


def _clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k not in FIDDLE_VARS}


class TestDefaults:
    """Defaults with no FIDDLE_* variables."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config()

        assert config.binary_dir == Path.home() / ".fiddle-runner" / "bin"
        assert config.package_manager == "npm"
        assert config.stop_timeout == 1.0
        assert config.forge_output_dir is None
        assert config.log_debug is False
        assert config.log_file is None
        assert config.sigint_mode == SigintMode.STOP


class TestPaths:
    """Path variables."""

    def test_binary_dir(self, tmp_path: Path):
        with mock.patch.dict(os.environ, {"FIDDLE_BINARY_DIR": str(tmp_path)}, clear=False):
            assert load_config().binary_dir == tmp_path

    def test_app_data(self, tmp_path: Path):
        with mock.patch.dict(os.environ, {"FIDDLE_APP_DATA": f" {tmp_path} "}, clear=False):
            assert load_config().app_data_dir == tmp_path

    def test_forge_out(self, tmp_path: Path):
        with mock.patch.dict(os.environ, {"FIDDLE_FORGE_OUT": str(tmp_path)}, clear=False):
            assert load_config().forge_output_dir == tmp_path

    def test_blank_forge_out_means_none(self):
        with mock.patch.dict(os.environ, {"FIDDLE_FORGE_OUT": "  "}, clear=False):
            assert load_config().forge_output_dir is None


class TestPackageManager:
    """FIDDLE_PACKAGE_MANAGER."""

    @pytest.mark.parametrize("value,expected", [
        ("npm", "npm"),
        ("YARN", "yarn"),
        (" yarn ", "yarn"),
        ("pnpm", "npm"),
        ("", "npm"),
    ])
    def test_values(self, value: str, expected: str):
        with mock.patch.dict(os.environ, {"FIDDLE_PACKAGE_MANAGER": value}, clear=False):
            assert load_config().package_manager == expected


class TestStopTimeout:
    """FIDDLE_STOP_TIMEOUT."""

    @pytest.mark.parametrize("value,expected", [
        ("2.5", 2.5),
        ("0", 0.1),
        ("100", 30.0),
        ("soon", 1.0),
    ])
    def test_values(self, value: str, expected: float):
        with mock.patch.dict(os.environ, {"FIDDLE_STOP_TIMEOUT": value}, clear=False):
            assert load_config().stop_timeout == expected


class TestLogDebug:
    """FIDDLE_LOG_DEBUG."""

    @pytest.mark.parametrize("value", ["true", "True", "1", "yes", "on"])
    def test_truthy_values(self, value: str):
        with mock.patch.dict(os.environ, {"FIDDLE_LOG_DEBUG": value}, clear=False):
            config = load_config()
        assert config.log_debug is True
        assert config.log_file is not None
        assert config.log_file.endswith(".log")

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, value: str):
        with mock.patch.dict(os.environ, {"FIDDLE_LOG_DEBUG": value}, clear=False):
            config = load_config()
        assert config.log_debug is False
        assert config.log_file is None


class TestSigintMode:
    """FIDDLE_SIGINT_MODE."""

    def test_from_string(self):
        assert SigintMode.from_string("stop") == SigintMode.STOP
        assert SigintMode.from_string("EXIT") == SigintMode.EXIT
        assert SigintMode.from_string("invalid") == SigintMode.STOP

    def test_env(self):
        with mock.patch.dict(os.environ, {"FIDDLE_SIGINT_MODE": "exit"}, clear=False):
            assert load_config().sigint_mode == SigintMode.EXIT


class TestGlobalConfig:
    """get_config()/reload_config()."""

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reload_config_picks_up_changes(self):
        with mock.patch.dict(os.environ, {"FIDDLE_PACKAGE_MANAGER": "yarn"}, clear=False):
            assert reload_config().package_manager == "yarn"
            assert get_config().package_manager == "yarn"
        reload_config()

    def test_repr(self):
        config = Config(package_manager="yarn")
        assert "package_manager=yarn" in repr(config)
        assert "sigint_mode=stop" in repr(config)
