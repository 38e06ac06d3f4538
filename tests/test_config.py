"""Tests for configuration loading and logging setup."""

import logging
from pathlib import Path

import pytest

from tidytop.config import (
    GIB,
    Config,
    MonitorConfig,
    ScanConfig,
    config_file_path,
    default_package_caches,
    load_config,
)
from tidytop.logging_setup import logger, setup_logging


def write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_monitor_defaults(self):
        """Test MonitorConfig default values."""
        monitor = MonitorConfig()

        assert monitor.poll_rate == 2.0
        assert monitor.history_size == 30
        assert monitor.process_limit == 10

    def test_scan_defaults(self):
        """Test ScanConfig default values."""
        scan = ScanConfig()

        assert scan.roots == (Path.home(),)
        assert scan.max_depth == 6
        assert "node_modules" in scan.dependency_dir_names
        assert scan.min_dependency_bytes == 100_000_000
        assert scan.max_findings_per_category == 10
        assert scan.heavy_process_bytes == GIB
        assert scan.container_runtime == "docker"

    def test_package_caches_follow_environment(self, monkeypatch, tmp_path):
        """Test cache locations honour HOMEBREW_CACHE and PIP_CACHE_DIR."""
        monkeypatch.setenv("HOMEBREW_CACHE", str(tmp_path / "brew"))
        monkeypatch.setenv("PIP_CACHE_DIR", str(tmp_path / "pip"))

        caches = dict(default_package_caches())

        assert caches["Homebrew"] == tmp_path / "brew"
        assert caches["pip"] == tmp_path / "pip"
        assert caches["npm"] == Path.home() / ".npm" / "_cacache"

    def test_config_is_frozen(self):
        """Test config objects cannot be mutated."""
        with pytest.raises(AttributeError):
            MonitorConfig().poll_rate = 1.0  # type: ignore[misc]


class TestLoadConfig:
    def test_config_file_path_uses_xdg(self, no_user_config):
        """Test the config file lives under XDG_CONFIG_HOME."""
        assert config_file_path() == no_user_config / "tidytop" / "config.toml"

    def test_missing_file_gives_defaults(self, no_user_config):
        """Test a missing config file yields the defaults."""
        assert load_config() == Config()

    def test_overrides(self, tmp_path, monkeypatch):
        """Test TOML values override the defaults."""
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        path = write_config(
            tmp_path / "config.toml",
            """
[monitor]
poll_rate = 1
process_limit = 5

[scan]
roots = ["~/code", "/srv/projects"]
max_depth = 3
min_dependency_bytes = 5000
container_runtime = "podman"

[scan.caches]
yarn = "~/.cache/yarn"
""",
        )

        config = load_config(path)

        assert config.monitor.poll_rate == 1.0
        assert config.monitor.process_limit == 5
        assert config.monitor.history_size == 30
        assert config.scan.roots == (tmp_path / "home" / "code", Path("/srv/projects"))
        assert config.scan.max_depth == 3
        assert config.scan.min_dependency_bytes == 5000
        assert config.scan.container_runtime == "podman"
        assert config.scan.package_caches == (("yarn", tmp_path / "home" / ".cache" / "yarn"),)

    def test_invalid_toml_falls_back_to_defaults(self, tmp_path):
        """Test a malformed config file yields the defaults."""
        path = write_config(tmp_path / "config.toml", "[monitor\npoll_rate = ")

        assert load_config(path) == Config()

    def test_bad_value_falls_back_to_defaults(self, tmp_path):
        """Test a mistyped value yields the defaults."""
        path = write_config(tmp_path / "config.toml", '[scan]\nmax_depth = "deep"\n')

        assert load_config(path) == Config()


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level, own_level = root.handlers[:], root.level, logger.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logger.setLevel(own_level)


class TestSetupLogging:
    def test_writes_to_log_file(self, tmp_path, restore_logging):
        """Test records go to the requested log file."""
        log_file = tmp_path / "tidytop.log"

        setup_logging(verbose=True, log_file=str(log_file))
        logger.info("scan finished")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = log_file.read_text(encoding="utf-8")
        assert "[INFO] - tidytop - scan finished" in text
        assert logger.level == logging.DEBUG

    def test_without_log_file_nothing_reaches_the_terminal(self, restore_logging):
        """Test logging stays off the terminal without a log file."""
        setup_logging()

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.NullHandler)
        assert logger.level == logging.INFO
