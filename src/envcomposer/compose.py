"""Environment Composer.

Composition is a pure, all-or-nothing function of a shell declaration and
its collaborators::

    (capabilities, overrides, pinned toolchains?) -> Environment | error

Every capability must resolve, every pinned toolchain must hash-match and
every unfree capability must be allowed, otherwise the first error
propagates and no environment is produced.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .descriptor import DEFAULT_VARIANT, Descriptor, ShellSpec
from .hashing import canonical_json_dumps, sha256_bytes
from .hook import PathPrefixHook
from .pinning import ResolvedToolchain, ToolchainFetcher, resolve_pinned_toolchain
from .policy import UnfreePolicy
from .registry import CapabilityRegistry, ResolvedCapability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Environment:
    """A composed, activatable environment.

    Attributes:
        platform: Target platform identifier (e.g. ``x86_64-linux``).
        variant: Shell variant name the environment was composed from.
        variables: Environment overrides, verbatim from the descriptor.
        capability_paths: Executable directories in declaration order,
            capabilities first, then pinned toolchains, without duplicates.
        path_prefix: Activation hook, if declared.
        capabilities: Resolved capabilities.
        toolchains: Resolved pinned toolchains.
    """

    platform: str
    variant: str
    variables: dict[str, str]
    capability_paths: tuple[str, ...]
    path_prefix: PathPrefixHook | None
    capabilities: tuple[ResolvedCapability, ...]
    toolchains: tuple[ResolvedToolchain, ...]

    def search_path(self, base_path: str | None = None) -> str:
        """Return PATH before activation: capability dirs, then ``base_path``."""
        entries = list(self.capability_paths)
        if base_path:
            entries.append(base_path)
        return os.pathsep.join(entries)

    def materialize(self, base_environ: Mapping[str, str], cwd: Path) -> dict[str, str]:
        """Return the full process environment for an activated shell.

        The local tool directory, when declared, ends up ahead of every
        capability directory.
        """
        environ = dict(base_environ)
        environ.update(self.variables)
        environ["PATH"] = self.search_path(base_environ.get("PATH"))
        if self.path_prefix is not None:
            environ = self.path_prefix.apply(environ, cwd)
        return environ

    def delta(self, base_environ: Mapping[str, str], cwd: Path) -> dict[str, str]:
        """Return only the variables activation sets or changes."""
        materialized = self.materialize(base_environ, cwd)
        return {key: value for key, value in materialized.items() if base_environ.get(key) != value}

    def to_manifest_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "variant": self.variant,
            "variables": dict(self.variables),
            "capability_paths": list(self.capability_paths),
            "path_prefix": self.path_prefix.directory if self.path_prefix is not None else None,
            "capabilities": [c.to_manifest_dict() for c in self.capabilities],
            "toolchains": [t.to_manifest_dict() for t in self.toolchains],
        }

    def fingerprint(self) -> str:
        """SHA256 of the canonical manifest; equal inputs give equal fingerprints."""
        return sha256_bytes(canonical_json_dumps(self.to_manifest_dict()).encode("utf-8"))


def compose(
    shell: ShellSpec,
    *,
    platform: str,
    registry: CapabilityRegistry,
    fetcher: ToolchainFetcher,
    base_dir: Path,
    policy: UnfreePolicy | None = None,
    variant: str = DEFAULT_VARIANT,
) -> Environment:
    """Compose one environment from a shell declaration.

    Args:
        shell: Shell declaration selected from a descriptor.
        platform: Target platform identifier.
        registry: Capability registry.
        fetcher: Fetch collaborator for pinned toolchains.
        base_dir: Directory pinned toolchain files are relative to.
        policy: Unfree policy. Defaults to the shell's ``allow_unfree`` list.
        variant: Variant name recorded on the environment.

    Raises:
        UnresolvableCapability: A capability or pinned toolchain cannot be
            located.
        IntegrityMismatch: A pinned toolchain's content hash disagrees with
            the recorded hash.
        PolicyViolation: An unfree capability is not allowed.
    """
    if policy is None:
        policy = UnfreePolicy.from_names(shell.allow_unfree)

    capabilities: list[ResolvedCapability] = []
    for ref in shell.unique_capabilities():
        resolved = registry.resolve(ref, platform)
        policy.check(resolved)
        capabilities.append(resolved)

    toolchains = [
        resolve_pinned_toolchain(ref, base_dir=base_dir, platform=platform, fetcher=fetcher)
        for ref in shell.pinned_toolchains
    ]

    paths: list[str] = []
    for bin_dir in [c.bin_dir for c in capabilities] + [t.bin_dir for t in toolchains if t.bin_dir is not None]:
        entry = str(bin_dir)
        if entry not in paths:
            paths.append(entry)

    environment = Environment(
        platform=platform,
        variant=variant,
        variables=dict(shell.env),
        capability_paths=tuple(paths),
        path_prefix=PathPrefixHook(shell.path_prefix) if shell.path_prefix is not None else None,
        capabilities=tuple(capabilities),
        toolchains=tuple(toolchains),
    )
    logger.info(
        "Composed %s/%s: %d capabilities, %d pinned toolchains",
        platform,
        variant,
        len(capabilities),
        len(toolchains),
    )
    return environment


def compose_descriptor(
    descriptor: Descriptor,
    *,
    platform: str,
    registry: CapabilityRegistry,
    fetcher: ToolchainFetcher,
    base_dir: Path,
    variant: str = DEFAULT_VARIANT,
    allow_all_unfree: bool = False,
) -> Environment:
    """Select a shell from ``descriptor`` and compose it."""
    shell = descriptor.select(platform, variant)
    policy = UnfreePolicy.from_names(shell.allow_unfree, allow_all=allow_all_unfree)
    return compose(
        shell,
        platform=platform,
        registry=registry,
        fetcher=fetcher,
        base_dir=base_dir,
        policy=policy,
        variant=variant,
    )
