"""Composer configuration loader.

Values come from, in increasing precedence: built-in defaults, an optional
``.envcomposer.yaml`` in the project root, ``ENVCOMPOSER_*`` environment
variables, and explicit overrides (CLI flags).
"""

from __future__ import annotations

import os
import platform as _platform
import sys
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .cache import default_cache_root
from .descriptor import DEFAULT_DESCRIPTOR_PATH
from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path(".envcomposer.yaml")
REGISTRY_KINDS = ("host", "catalog")

_ENV_PREFIX = "ENVCOMPOSER_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class ComposerConfig:
    """Resolved composer configuration."""

    descriptor: Path = DEFAULT_DESCRIPTOR_PATH
    registry: str = "host"
    catalog: Path | None = None
    cache_dir: Path | None = None
    offline: bool = False
    allow_unfree_all: bool = False
    unfree_names: frozenset[str] = frozenset()
    platform: str | None = None

    def resolved_platform(self) -> str:
        return self.platform or current_platform()

    def resolved_cache_dir(self) -> Path:
        return self.cache_dir or default_cache_root()


def current_platform() -> str:
    """Return the platform identifier for this host, e.g. ``x86_64-linux``."""
    machine = _platform.machine().lower()
    machine = {"amd64": "x86_64", "arm64": "aarch64"}.get(machine, machine)
    kernel = "darwin" if sys.platform == "darwin" else sys.platform.rstrip("0123456789")
    return f"{machine}-{kernel}"


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ComposerConfig:
    """Load composer configuration.

    Args:
        config_path: Path to the YAML config file. Defaults to
            ``.envcomposer.yaml`` under ``project_root``; a missing default
            file is not an error.
        project_root: Project root directory. Defaults to the current
            working directory.
        environ: Environment to read ``ENVCOMPOSER_*`` variables from.
            Defaults to ``os.environ``.
        overrides: Explicit values; ``None`` entries are ignored.

    Raises:
        ConfigError: If the config file or any value is invalid.
    """
    if project_root is None:
        project_root = Path.cwd()
    if environ is None:
        environ = os.environ

    explicit = config_path is not None
    if config_path is None:
        config_path = project_root / DEFAULT_CONFIG_PATH

    values: dict[str, Any] = {}
    if config_path.exists():
        values.update(_load_yaml(config_path))
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")

    values.update(_from_environ(environ))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    return _build_config(values, project_root)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping, got {type(data).__name__}")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _from_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_ in fields(ComposerConfig):
        key = _ENV_PREFIX + field_.name.upper()
        if key in environ:
            values[field_.name] = environ[key]
    # ENVCOMPOSER_ALLOW_UNFREE mirrors NIXPKGS_ALLOW_UNFREE
    if _ENV_PREFIX + "ALLOW_UNFREE" in environ:
        values["allow_unfree_all"] = environ[_ENV_PREFIX + "ALLOW_UNFREE"]
    return values


def _build_config(values: Mapping[str, Any], project_root: Path) -> ComposerConfig:
    known = {f.name for f in fields(ComposerConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {unknown}")

    config = ComposerConfig()
    updates: dict[str, Any] = {}
    if "descriptor" in values:
        updates["descriptor"] = _as_path(values["descriptor"], project_root)
    if "registry" in values:
        registry = str(values["registry"])
        if registry not in REGISTRY_KINDS:
            raise ConfigError(f"registry must be one of {list(REGISTRY_KINDS)}, got {registry!r}")
        updates["registry"] = registry
    if "catalog" in values:
        updates["catalog"] = _as_path(values["catalog"], project_root)
    if "cache_dir" in values:
        updates["cache_dir"] = _as_path(values["cache_dir"], project_root)
    if "offline" in values:
        updates["offline"] = _as_bool(values["offline"], "offline")
    if "allow_unfree_all" in values:
        updates["allow_unfree_all"] = _as_bool(values["allow_unfree_all"], "allow_unfree_all")
    if "unfree_names" in values:
        updates["unfree_names"] = _as_names(values["unfree_names"])
    if "platform" in values:
        platform_id = str(values["platform"]).strip()
        if not platform_id:
            raise ConfigError("platform must be a non-empty identifier")
        updates["platform"] = platform_id

    config = replace(config, **updates)
    if config.registry == "catalog" and config.catalog is None:
        raise ConfigError("registry 'catalog' requires a catalog path")
    return config


def _as_path(value: Any, project_root: Path) -> Path:
    path = Path(os.path.expanduser(str(value)))
    return path if path.is_absolute() else project_root / path


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_names(value: Any) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset(name.strip() for name in value.split(",") if name.strip())
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(name) for name in value)
    raise ConfigError(f"unfree_names must be a list or comma-separated string, got {value!r}")
