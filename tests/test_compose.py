"""Tests for environment composition."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from envcomposer.compose import Environment, compose, compose_descriptor
from envcomposer.descriptor import Descriptor, load_descriptor
from envcomposer.errors import IntegrityMismatch, PolicyViolation, UnresolvableCapability
from envcomposer.policy import UnfreePolicy

PLATFORM = "x86_64-linux"

DataFactory = Callable[..., dict[str, Any]]


@pytest.fixture
def descriptor(descriptor_data: DataFactory) -> Descriptor:
    return load_descriptor(descriptor_data())


def _compose(descriptor: Descriptor, registry: Any, fetcher: Any, base_dir: Path, **kwargs: Any) -> Environment:
    return compose_descriptor(
        descriptor, platform=PLATFORM, registry=registry, fetcher=fetcher, base_dir=base_dir, **kwargs
    )


def test_composes_default_variant(descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path) -> None:
    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    store = fake_registry.root
    assert env.platform == PLATFORM
    assert env.variant == "default"
    assert env.capability_paths == (
        str(store / "gcc" / "bin"),
        str(store / "python3" / "bin"),
        str(store / "minicom" / "bin"),
        str(store / "ravedude" / "bin"),
        str(store / "vscode" / "bin"),
        str(toolchain_dir / "rust" / "bin"),
    )
    assert [t.channel for t in env.toolchains] == ["nightly-2025-04-27"]
    assert env.path_prefix is not None
    assert env.path_prefix.directory == "devtools/bin"


def test_overrides_applied_verbatim(descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path) -> None:
    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    assert env.variables == {"RAVEDUDE_PORT": "/dev/ttyACM0", "AVR_HAL_BUILD_TARGETS": "arduino-micro"}
    materialized = env.materialize({"PATH": "/usr/bin", "RAVEDUDE_PORT": "/dev/ttyUSB0"}, toolchain_dir)
    assert materialized["RAVEDUDE_PORT"] == "/dev/ttyACM0"
    assert materialized["AVR_HAL_BUILD_TARGETS"] == "arduino-micro"


def test_composition_is_deterministic(
    descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path
) -> None:
    first = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    second = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    assert first == second
    assert first.fingerprint() == second.fingerprint()
    assert first.materialize({"PATH": "/usr/bin"}, toolchain_dir) == second.materialize(
        {"PATH": "/usr/bin"}, toolchain_dir
    )


def test_variants_compose_independently(
    descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path
) -> None:
    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir, variant="all-targets")
    assert env.variant == "all-targets"
    assert env.variables["AVR_HAL_BUILD_TARGETS"] == "all"
    assert env.toolchains == ()
    assert fake_fetcher.fetches == []


def test_tool_directory_comes_first(descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path) -> None:
    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    entries = env.materialize({"PATH": "/usr/bin"}, toolchain_dir)["PATH"].split(os.pathsep)
    assert entries[0] == os.path.realpath(toolchain_dir / "devtools" / "bin")
    assert entries[1:-1] == list(env.capability_paths)
    assert entries[-1] == "/usr/bin"


def test_without_hook_path_is_capabilities_only(
    descriptor_data: DataFactory, fake_registry, fake_fetcher, toolchain_dir: Path
) -> None:
    data = descriptor_data()
    del data["shells"][PLATFORM]["default"]["path_prefix"]
    env = _compose(load_descriptor(data), fake_registry, fake_fetcher, toolchain_dir)
    assert env.path_prefix is None
    assert env.materialize({}, toolchain_dir)["PATH"] == os.pathsep.join(env.capability_paths)
    assert env.materialize({"PATH": "/usr/bin"}, toolchain_dir)["PATH"] == env.search_path("/usr/bin")


def test_integrity_mismatch_fails_whole_composition(
    descriptor: Descriptor, fake_registry, make_fetcher, toolchain_dir: Path
) -> None:
    with pytest.raises(IntegrityMismatch) as exc_info:
        _compose(descriptor, fake_registry, make_fetcher(b"a newer manifest"), toolchain_dir)
    assert exc_info.value.file == "rust-toolchain.toml"


def test_unresolvable_capability_fails_whole_composition(
    descriptor: Descriptor, make_registry, fake_fetcher, tmp_path: Path, toolchain_dir: Path
) -> None:
    registry = make_registry(tmp_path / "store", missing={"ravedude"})
    with pytest.raises(UnresolvableCapability) as exc_info:
        _compose(descriptor, registry, fake_fetcher, toolchain_dir)
    assert exc_info.value.name == "ravedude"
    assert "vscode" not in registry.calls
    assert fake_fetcher.fetches == []


def test_unfree_capability_needs_allowance(
    descriptor_data: DataFactory, fake_registry, fake_fetcher, toolchain_dir: Path
) -> None:
    descriptor = load_descriptor(descriptor_data(allow_unfree=[]))
    with pytest.raises(PolicyViolation) as exc_info:
        _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    assert exc_info.value.name == "vscode"

    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir, allow_all_unfree=True)
    assert any(c.unfree for c in env.capabilities)


def test_policy_does_not_change_variables(
    descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path
) -> None:
    narrow = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    broad = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir, allow_all_unfree=True)
    assert narrow.variables == broad.variables
    assert narrow.materialize({"PATH": "/usr/bin"}, toolchain_dir) == broad.materialize(
        {"PATH": "/usr/bin"}, toolchain_dir
    )


def test_duplicate_capabilities_resolved_once(fake_registry, fake_fetcher, tmp_path: Path) -> None:
    descriptor = load_descriptor(
        {
            "shells": {
                PLATFORM: {
                    "default": {
                        "capabilities": [{"name": "minicom"}, {"name": "ravedude"}, {"name": "minicom"}],
                    }
                }
            }
        }
    )
    env = compose(
        descriptor.select(PLATFORM),
        platform=PLATFORM,
        registry=fake_registry,
        fetcher=fake_fetcher,
        base_dir=tmp_path,
        policy=UnfreePolicy(),
    )
    assert fake_registry.calls == ["minicom", "ravedude"]
    assert [c.name for c in env.capabilities] == ["minicom", "ravedude"]


def test_shared_bin_dirs_appear_once(make_registry, fake_fetcher, tmp_path: Path) -> None:
    descriptor = load_descriptor(
        {
            "shells": {
                PLATFORM: {
                    "default": {
                        "capabilities": [
                            {"name": "pkgsCross.avr.buildPackages.gcc"},
                            {"name": "gcc"},
                        ],
                    }
                }
            }
        }
    )
    env = compose(
        descriptor.select(PLATFORM),
        platform=PLATFORM,
        registry=make_registry(tmp_path / "store"),
        fetcher=fake_fetcher,
        base_dir=tmp_path,
    )
    assert env.capability_paths == (str(tmp_path / "store" / "gcc" / "bin"),)


def test_delta_and_manifest(descriptor: Descriptor, fake_registry, fake_fetcher, toolchain_dir: Path) -> None:
    env = _compose(descriptor, fake_registry, fake_fetcher, toolchain_dir)
    base = {"PATH": "/usr/bin", "HOME": "/home/dev", "RAVEDUDE_PORT": "/dev/ttyACM0"}
    delta = env.delta(base, toolchain_dir)
    assert set(delta) == {"PATH", "AVR_HAL_BUILD_TARGETS"}

    manifest = env.to_manifest_dict()
    assert manifest["variables"] == env.variables
    assert manifest["toolchains"][0]["sha256"] == env.toolchains[0].digest
    assert manifest["path_prefix"] == "devtools/bin"
