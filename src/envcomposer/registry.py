"""Capability registries: where declared capabilities come from.

A registry is an external collaborator. It locates an already-built
capability for the target platform and reports where its executables live;
it never builds anything. Two registries ship with the composer:

- :class:`CatalogRegistry` reads a YAML package catalog (name -> version,
  platforms, bin dir, license flag).
- :class:`HostRegistry` locates executables already installed on the host
  search path.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .descriptor import CapabilityRef
from .errors import ConfigError, UnresolvableCapability

logger = logging.getLogger(__name__)

# Distribution name -> import name, where they differ.
DEFAULT_IMPORT_NAMES: dict[str, str] = {
    "pyserial": "serial",
    "pyyaml": "yaml",
    "pyusb": "usb",
}

_IMPORT_CHECK_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class ResolvedCapability:
    """A capability located for the target platform.

    Attributes:
        name: Attribute path from the descriptor.
        version: Version reported by the registry, if known.
        bin_dir: Directory holding the capability's executables.
        executables: Executables verified to exist in ``bin_dir``.
        extensions: Extension packages verified to be available.
        unfree: True if the package carries a license-restricted license.
        source: Registry that resolved it ("catalog" or "host").
    """

    name: str
    version: str | None
    bin_dir: Path
    executables: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()
    unfree: bool = False
    source: str = ""

    def to_manifest_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "bin_dir": str(self.bin_dir),
            "executables": list(self.executables),
            "extensions": list(self.extensions),
            "unfree": self.unfree,
            "source": self.source,
        }


@runtime_checkable
class CapabilityRegistry(Protocol):
    """Protocol for capability lookups."""

    def resolve(self, ref: CapabilityRef, platform: str) -> ResolvedCapability:
        """Locate ``ref`` for ``platform`` or raise UnresolvableCapability."""
        ...


def required_executables(ref: CapabilityRef) -> tuple[str, ...]:
    """Executables a capability must provide; defaults to its attribute leaf."""
    return ref.executables or (ref.attr_leaf,)


class _CatalogBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CatalogEntry(_CatalogBase):
    version: str | None = None
    platforms: tuple[str, ...] = Field(..., min_length=1)
    bin_dir: str = Field(..., min_length=1)
    executables: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()
    unfree: bool = False


class Catalog(_CatalogBase):
    packages: dict[str, CatalogEntry] = Field(default_factory=dict)


@dataclass
class CatalogRegistry:
    """Resolve capabilities from a package catalog.

    Relative ``bin_dir`` values are taken relative to ``root``.
    """

    catalog: Catalog
    root: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_file(cls, path: Path) -> CatalogRegistry:
        if not path.exists():
            raise ConfigError(f"Capability catalog not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in capability catalog {path}: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Failed to read capability catalog {path}: {exc}") from exc
        try:
            catalog = Catalog.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid capability catalog {path}: {exc}") from exc
        return cls(catalog=catalog, root=path.resolve().parent)

    def resolve(self, ref: CapabilityRef, platform: str) -> ResolvedCapability:
        entry = self.catalog.packages.get(ref.name)
        if entry is None:
            raise UnresolvableCapability(ref.name, platform, "not found in catalog")
        if platform not in entry.platforms:
            raise UnresolvableCapability(
                ref.name, platform, f"no build for this platform (available: {', '.join(entry.platforms)})"
            )

        missing_ext = [ext for ext in ref.extensions if ext not in entry.extensions]
        if missing_ext:
            raise UnresolvableCapability(ref.name, platform, f"extensions not available: {', '.join(missing_ext)}")

        bin_dir = Path(entry.bin_dir)
        if not bin_dir.is_absolute():
            bin_dir = self.root / bin_dir

        wanted = ref.executables or entry.executables or (ref.attr_leaf,)
        missing = [exe for exe in wanted if not _is_executable(bin_dir / exe)]
        if missing:
            raise UnresolvableCapability(ref.name, platform, f"missing executables in {bin_dir}: {', '.join(missing)}")

        logger.debug("Resolved %s from catalog: %s", ref.name, bin_dir)
        return ResolvedCapability(
            name=ref.name,
            version=entry.version,
            bin_dir=bin_dir,
            executables=tuple(wanted),
            extensions=tuple(ref.extensions),
            unfree=entry.unfree,
            source="catalog",
        )


@dataclass
class HostRegistry:
    """Resolve capabilities against executables installed on the host.

    ``search_path`` is the PATH string searched; it defaults to the PATH of
    the current process at construction time. License information is not
    discoverable on the host, so ``unfree_names`` lists which capability
    names count as unfree.
    """

    search_path: str | None = None
    unfree_names: frozenset[str] = frozenset()
    import_names: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_IMPORT_NAMES))

    def __post_init__(self) -> None:
        if self.search_path is None:
            self.search_path = os.environ.get("PATH", "")

    def resolve(self, ref: CapabilityRef, platform: str) -> ResolvedCapability:
        wanted = required_executables(ref)
        located: dict[str, Path] = {}
        for exe in wanted:
            found = shutil.which(exe, path=self.search_path)
            if found is None:
                raise UnresolvableCapability(ref.name, platform, f"executable {exe!r} not found on host PATH")
            located[exe] = Path(found)

        bin_dirs = {path.parent for path in located.values()}
        if len(bin_dirs) > 1:
            logger.warning(
                "Executables for %s live in several directories; using %s", ref.name, located[wanted[0]].parent
            )
        bin_dir = located[wanted[0]].parent

        if ref.extensions:
            self._check_extensions(ref, platform, located[wanted[0]])

        logger.debug("Resolved %s on host: %s", ref.name, bin_dir)
        return ResolvedCapability(
            name=ref.name,
            version=None,
            bin_dir=bin_dir,
            executables=tuple(wanted),
            extensions=tuple(ref.extensions),
            unfree=ref.name in self.unfree_names or ref.attr_leaf in self.unfree_names,
            source="host",
        )

    def _check_extensions(self, ref: CapabilityRef, platform: str, interpreter: Path) -> None:
        modules = [self.import_names.get(ext, ext) for ext in ref.extensions]
        missing = find_missing_modules(interpreter, modules)
        if missing:
            names = [ext for ext, module in zip(ref.extensions, modules) if module in missing]
            raise UnresolvableCapability(ref.name, platform, f"extensions not importable: {', '.join(names)}")


def find_missing_modules(interpreter: Path, modules: Iterable[str]) -> set[str]:
    """Return the subset of ``modules`` the interpreter cannot import."""
    modules = list(modules)
    script = (
        "import importlib.util, sys\n"
        "missing = [m for m in sys.argv[1:] if importlib.util.find_spec(m) is None]\n"
        "print('\\n'.join(missing))\n"
    )
    try:
        proc = subprocess.run(
            [str(interpreter), "-c", script, *modules],
            text=True,
            capture_output=True,
            check=False,
            timeout=_IMPORT_CHECK_TIMEOUT_S,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Extension import check failed for %s: %s", interpreter, exc)
        return set(modules)
    if proc.returncode != 0:
        logger.debug("Extension import check exited %d: %s", proc.returncode, proc.stderr.strip())
        return set(modules)
    return {line.strip() for line in proc.stdout.splitlines() if line.strip()}


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)
