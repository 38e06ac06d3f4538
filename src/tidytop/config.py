"""Configuration values for tidytop."""

import os
import sys
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from tidytop.logging_setup import logger

GIB = 1024**3


def default_package_caches() -> tuple[tuple[str, Path], ...]:
    """Resolve the well-known package-manager cache directories."""
    home = Path.home()
    brew = os.environ.get("HOMEBREW_CACHE")
    if brew:
        brew_cache = Path(brew)
    elif sys.platform == "darwin":
        brew_cache = home / "Library" / "Caches" / "Homebrew"
    else:
        brew_cache = home / ".cache" / "Homebrew"

    xdg_cache = Path(os.environ.get("XDG_CACHE_HOME") or home / ".cache")
    pip_cache = Path(os.environ["PIP_CACHE_DIR"]) if os.environ.get("PIP_CACHE_DIR") else xdg_cache / "pip"

    return (
        ("Homebrew", brew_cache),
        ("pip", pip_cache),
        ("npm", home / ".npm" / "_cacache"),
    )


@dataclass(frozen=True)
class MonitorConfig:
    """Metric sampling settings."""

    poll_rate: float = 2.0  # seconds between samples
    sample_timeout: float = 2.0  # a slower sample is treated as degraded
    history_size: int = 30  # recent snapshots kept in the ring
    process_limit: int = 10  # rows in the top-process view


@dataclass(frozen=True)
class ScanConfig:
    """Issue scanner settings."""

    roots: tuple[Path, ...] = field(default_factory=lambda: (Path.home(),))
    max_depth: int = 6
    dependency_dir_names: tuple[str, ...] = ("node_modules", "bower_components", ".venv", "venv")
    skip_dir_names: tuple[str, ...] = ("Library", "System", "Applications")
    min_dependency_bytes: int = 100_000_000
    max_findings_per_category: int = 10
    heavy_process_bytes: int = GIB
    container_runtime: str = "docker"
    runtime_timeout: float = 15.0
    package_caches: tuple[tuple[str, Path], ...] = field(default_factory=default_package_caches)


@dataclass(frozen=True)
class Config:
    """Top-level configuration."""

    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)


def config_file_path() -> Path:
    """Location of the user config file."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "tidytop" / "config.toml"


def _monitor_from(section: dict[str, Any]) -> MonitorConfig:
    monitor = MonitorConfig()
    for key in ("poll_rate", "sample_timeout"):
        if key in section:
            monitor = replace(monitor, **{key: float(section[key])})
    for key in ("history_size", "process_limit"):
        if key in section:
            monitor = replace(monitor, **{key: int(section[key])})
    return monitor


def _scan_from(section: dict[str, Any]) -> ScanConfig:
    scan = ScanConfig()
    if "roots" in section:
        roots = tuple(Path(os.path.expanduser(str(r))) for r in section["roots"])
        scan = replace(scan, roots=roots)
    for key in ("dependency_dir_names", "skip_dir_names"):
        if key in section:
            scan = replace(scan, **{key: tuple(str(n) for n in section[key])})
    for key in ("max_depth", "min_dependency_bytes", "max_findings_per_category", "heavy_process_bytes"):
        if key in section:
            scan = replace(scan, **{key: int(section[key])})
    if "container_runtime" in section:
        scan = replace(scan, container_runtime=str(section["container_runtime"]))
    if "runtime_timeout" in section:
        scan = replace(scan, runtime_timeout=float(section["runtime_timeout"]))
    caches = section.get("caches")
    if isinstance(caches, dict):
        scan = replace(
            scan,
            package_caches=tuple(
                (str(label), Path(os.path.expanduser(str(path)))) for label, path in caches.items()
            ),
        )
    return scan


def load_config(path: Path | None = None) -> Config:
    """Load configuration from config.toml or return defaults."""
    config_path = path or config_file_path()

    if not config_path.exists():
        logger.debug("Config file not found, using defaults")
        return Config()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        config = Config(
            monitor=_monitor_from(data.get("monitor", {})),
            scan=_scan_from(data.get("scan", {})),
        )
    except (OSError, tomllib.TOMLDecodeError, TypeError, ValueError) as e:
        logger.error(f"Error loading config {config_path}: {e}")
        return Config()

    logger.debug(f"Loaded config from {config_path}")
    return config
