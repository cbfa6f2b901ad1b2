"""envcomposer: reproducible development shell environments.

A static descriptor declares the capabilities a development shell needs
(toolchains, an interpreter with extensions, serial and flashing utilities),
a few environment overrides, toolchains pinned by content hash, and an
optional hook that puts a local tool directory first on PATH. The composer
turns one declared variant into an activatable environment, or fails as a
whole.

Public API
----------
- :func:`load_descriptor_from_file` - Load a Descriptor from YAML/JSON
- :func:`compose` - Compose an Environment from a ShellSpec
- :func:`compose_descriptor` - Select a platform/variant and compose it
- :func:`activate` - Enter a composed Environment

Example
-------
>>> descriptor = load_descriptor_from_file(Path("devenv.yaml"))
>>> env = compose_descriptor(descriptor, platform="x86_64-linux",
...                          registry=HostRegistry(), fetcher=ChannelManifestFetcher(),
...                          base_dir=Path("."))
>>> activate(env, cwd=Path.cwd())
"""

from __future__ import annotations

from .activate import activate, render_exports
from .cache import ArtifactCache
from .cli_main import __version__
from .compose import Environment, compose, compose_descriptor
from .config import ComposerConfig, load_config
from .descriptor import (
    CapabilityRef,
    Descriptor,
    InputRef,
    PinnedToolchainRef,
    ShellSpec,
    load_descriptor,
    load_descriptor_from_file,
    validate_strict,
)
from .errors import (
    CompositionError,
    ConfigError,
    DescriptorError,
    DescriptorValidationError,
    EnvComposerError,
    IntegrityMismatch,
    PolicyViolation,
    UnresolvableCapability,
)
from .hook import PathPrefixHook
from .pinning import ChannelManifestFetcher, ResolvedToolchain, ToolchainFetcher, resolve_pinned_toolchain
from .policy import UnfreePolicy
from .registry import CapabilityRegistry, CatalogRegistry, HostRegistry, ResolvedCapability

__all__ = [
    "ArtifactCache",
    "CapabilityRef",
    "CapabilityRegistry",
    "CatalogRegistry",
    "ChannelManifestFetcher",
    "ComposerConfig",
    "CompositionError",
    "ConfigError",
    "Descriptor",
    "DescriptorError",
    "DescriptorValidationError",
    "EnvComposerError",
    "Environment",
    "HostRegistry",
    "InputRef",
    "IntegrityMismatch",
    "PathPrefixHook",
    "PinnedToolchainRef",
    "PolicyViolation",
    "ResolvedCapability",
    "ResolvedToolchain",
    "ShellSpec",
    "ToolchainFetcher",
    "UnfreePolicy",
    "UnresolvableCapability",
    "activate",
    "compose",
    "compose_descriptor",
    "load_config",
    "load_descriptor",
    "load_descriptor_from_file",
    "render_exports",
    "resolve_pinned_toolchain",
    "validate_strict",
    "__version__",
]
