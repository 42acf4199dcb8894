"""TOML-based driver configuration.

Loads ~/.machinekit/defaults.toml (global) and machinekit.toml (project),
merges them, and resolves named drivers into configuration objects.
Environment variables (VIRSH_DISK_DIR, VIRSH_OS, PRESERVE_TEST_MACHINE)
fill in anything the files leave unset.

Example machinekit.toml::

    [drivers.local]
    type = "virsh"
    disk_dir = "/e2e"
    memory_mb = 4096
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from machinekit.exceptions import ConfigurationError

if TYPE_CHECKING:
    from machinekit.providers.registry import DriverConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".machinekit" / "defaults.toml"
PROJECT_CONFIG_NAME = "machinekit.toml"


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("drivers", {})
    return merged


def _get_driver_map() -> dict[str, type]:
    from machinekit.providers.virsh.config import Virsh

    return {
        "virsh": Virsh,
    }


def resolve_driver_config(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DriverConfig:
    """Build the configuration of the driver named ``name``.

    Raises:
        ConfigurationError: If the driver is unknown or its table is invalid.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)

    drivers = config["drivers"]
    if name not in drivers:
        raise ConfigurationError(
            f"Driver '{name}' not found. Available: {', '.join(drivers) or 'none'}"
        )

    raw = dict(drivers[name])
    driver_type = raw.pop("type", None)
    if driver_type is None:
        raise ConfigurationError(f"Driver '{name}' missing 'type' field")

    driver_map = _get_driver_map()
    cls = driver_map.get(driver_type)
    if cls is None:
        raise ConfigurationError(
            f"Unknown driver type '{driver_type}'. "
            f"Valid: {', '.join(driver_map)}"
        )

    try:
        return cls.from_env(os.environ if environ is None else environ, **raw)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid settings for driver '{name}': {exc}") from exc
