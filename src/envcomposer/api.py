"""High-level entry points wiring configuration to the composer."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .cache import ArtifactCache
from .compose import Environment, compose_descriptor
from .config import ComposerConfig
from .descriptor import DEFAULT_VARIANT, Descriptor, load_descriptor_from_file, read_descriptor_data, validate_strict
from .errors import ConfigError
from .pinning import ChannelManifestFetcher, ToolchainFetcher, prefetch_hash
from .registry import CapabilityRegistry, CatalogRegistry, HostRegistry

logger = logging.getLogger(__name__)


def make_registry(config: ComposerConfig, *, allow_unfree: Iterable[str] = ()) -> CapabilityRegistry:
    """Build the configured registry.

    The host cannot report licenses, so the host registry counts the shell's
    ``allow_unfree`` names as unfree along with the configured
    ``unfree_names``.
    """
    if config.registry == "catalog":
        if config.catalog is None:
            raise ConfigError("registry 'catalog' requires a catalog path")
        return CatalogRegistry.from_file(config.catalog)

    unfree_names = config.unfree_names | frozenset(allow_unfree)
    if not unfree_names:
        logger.info("Host registry cannot read package licenses; set unfree_names to enforce the unfree policy")
    return HostRegistry(unfree_names=unfree_names)


def make_fetcher(config: ComposerConfig) -> ToolchainFetcher:
    return ChannelManifestFetcher(
        cache=ArtifactCache(config.resolved_cache_dir()),
        offline=config.offline,
    )


def load_config_descriptor(config: ComposerConfig, *, strict: bool = False) -> Descriptor:
    """Load the configured descriptor, optionally with JSON Schema validation."""
    if strict:
        return validate_strict(read_descriptor_data(config.descriptor))
    return load_descriptor_from_file(config.descriptor)


def compose_from_config(
    config: ComposerConfig,
    *,
    variant: str = DEFAULT_VARIANT,
    strict: bool = False,
    registry: CapabilityRegistry | None = None,
    fetcher: ToolchainFetcher | None = None,
) -> Environment:
    """Load the configured descriptor and compose one variant.

    Raises:
        DescriptorError: The descriptor cannot be loaded or is invalid.
        CompositionError: Composition failed; nothing was produced.
    """
    descriptor = load_config_descriptor(config, strict=strict)
    platform = config.resolved_platform()
    if registry is None:
        registry = make_registry(config, allow_unfree=descriptor.select(platform, variant).allow_unfree)
    return compose_descriptor(
        descriptor,
        platform=platform,
        registry=registry,
        fetcher=fetcher if fetcher is not None else make_fetcher(config),
        base_dir=descriptor_dir(config),
        variant=variant,
        allow_all_unfree=config.allow_unfree_all,
    )


def prefetch_from_config(
    config: ComposerConfig,
    *,
    variant: str = DEFAULT_VARIANT,
    fetcher: ToolchainFetcher | None = None,
) -> dict[str, str]:
    """Return ``{toolchain file: SRI hash}`` for each pinned toolchain of a variant."""
    descriptor = load_config_descriptor(config)
    platform = config.resolved_platform()
    shell = descriptor.select(platform, variant)
    fetcher = fetcher if fetcher is not None else make_fetcher(config)
    return {
        ref.file: prefetch_hash(ref, base_dir=descriptor_dir(config), platform=platform, fetcher=fetcher)
        for ref in shell.pinned_toolchains
    }


def descriptor_dir(config: ComposerConfig) -> Path:
    return config.descriptor.resolve().parent
