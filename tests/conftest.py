# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures for test suite.

This module provides:
- Deterministic test environment setup
- Descriptor data factories
- Fake capability registries and toolchain fetchers (no host tools, no network)
"""
from __future__ import annotations

import copy
import hashlib
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from envcomposer.descriptor import CapabilityRef
from envcomposer.errors import UnresolvableCapability
from envcomposer.hashing import to_sri
from envcomposer.pinning import ToolchainFile
from envcomposer.registry import ResolvedCapability


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TESTS_DIR = Path(__file__).resolve().parent
ROOT_DIR = TESTS_DIR.parent

PLATFORM = "x86_64-linux"
MANIFEST_BYTES = b'manifest-version = "2"\ndate = "2025-04-27"\n'
MANIFEST_SRI = to_sri(hashlib.sha256(MANIFEST_BYTES).digest())

TOOLCHAIN_TOML = """\
[toolchain]
channel = "nightly-2025-04-27"
components = ["rust-src"]
profile = "minimal"
"""


# ---------------------------------------------------------------------------
# Environment Setup
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest environment for determinism.

    Sets environment variables to ensure reproducible test execution.
    """
    deterministic_env = {
        "LC_ALL": "C",
        "LANG": "C",
        "TZ": "UTC",
        "PYTHONHASHSEED": "0",
    }
    for key, value in deterministic_env.items():
        os.environ.setdefault(key, value)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRegistry:
    """Registry resolving names to ``<root>/<leaf>/bin``.

    Names listed in ``unfree`` resolve as unfree; names in ``missing`` fail.
    """

    def __init__(self, root: Path, *, unfree: set[str] | None = None, missing: set[str] | None = None) -> None:
        self.root = root
        self.unfree = unfree or set()
        self.missing = missing or set()
        self.calls: list[str] = []

    def resolve(self, ref: CapabilityRef, platform: str) -> ResolvedCapability:
        self.calls.append(ref.name)
        if ref.name in self.missing:
            raise UnresolvableCapability(ref.name, platform, "not in fake registry")
        return ResolvedCapability(
            name=ref.name,
            version="1.0",
            bin_dir=self.root / ref.attr_leaf / "bin",
            executables=ref.executables or (ref.attr_leaf,),
            extensions=tuple(ref.extensions),
            unfree=ref.name in self.unfree,
            source="fake",
        )


class FakeFetcher:
    """Fetcher returning fixed content and an optional toolchain bin dir."""

    def __init__(self, content: bytes = MANIFEST_BYTES, bin_dir: Path | None = None) -> None:
        self.content = content
        self.bin_dir = bin_dir
        self.fetches: list[tuple[str, str | None]] = []

    def fetch(self, toolchain: ToolchainFile, platform: str, digest_hex: str | None = None) -> bytes:
        self.fetches.append((toolchain.channel, digest_hex))
        return self.content

    def locate(self, toolchain: ToolchainFile, platform: str) -> Path | None:
        return self.bin_dir


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Path to the project root directory."""
    return ROOT_DIR


@pytest.fixture
def fake_registry(tmp_path: Path) -> FakeRegistry:
    return FakeRegistry(tmp_path / "store", unfree={"vscode"})


@pytest.fixture
def fake_fetcher(tmp_path: Path) -> FakeFetcher:
    return FakeFetcher(bin_dir=tmp_path / "rust" / "bin")


@pytest.fixture
def toolchain_dir(tmp_path: Path) -> Path:
    """Directory holding a rust-toolchain.toml."""
    (tmp_path / "rust-toolchain.toml").write_text(TOOLCHAIN_TOML, encoding="utf-8")
    return tmp_path


@pytest.fixture
def descriptor_data() -> Callable[..., dict[str, Any]]:
    """Factory for a descriptor mirroring the AVR HAL development shell."""

    base: dict[str, Any] = {
        "schema_version": 1,
        "description": "AVR HAL development environment",
        "inputs": {
            "nixpkgs": {"url": "nixpkgs/nixos-25.11-small"},
            "fenix": {"url": "github:nix-community/fenix", "follows": {"nixpkgs": "nixpkgs"}},
        },
        "shells": {
            PLATFORM: {
                "default": {
                    "capabilities": [
                        {"name": "pkgsCross.avr.buildPackages.gcc", "input": "nixpkgs", "executables": ["avr-gcc"]},
                        {"name": "python3", "input": "nixpkgs", "extensions": ["pyserial"]},
                        {"name": "minicom", "input": "nixpkgs"},
                        {"name": "ravedude", "input": "nixpkgs"},
                        {"name": "vscode", "input": "nixpkgs", "executables": ["code"]},
                    ],
                    "pinned_toolchains": [
                        {"input": "fenix", "file": "rust-toolchain.toml", "sha256": MANIFEST_SRI},
                    ],
                    "env": {
                        "RAVEDUDE_PORT": "/dev/ttyACM0",
                        "AVR_HAL_BUILD_TARGETS": "arduino-micro",
                    },
                    "allow_unfree": ["vscode"],
                    "path_prefix": "devtools/bin",
                },
                "all-targets": {
                    "capabilities": [
                        {"name": "pkgsCross.avr.buildPackages.gcc", "executables": ["avr-gcc"]},
                        {"name": "minicom"},
                        {"name": "ravedude"},
                    ],
                    "env": {
                        "RAVEDUDE_PORT": "/dev/ttyACM0",
                        "AVR_HAL_BUILD_TARGETS": "all",
                    },
                    "path_prefix": "devtools/bin",
                },
            }
        },
    }

    def _make(**shell_overrides: Any) -> dict[str, Any]:
        data = copy.deepcopy(base)
        data["shells"][PLATFORM]["default"].update(shell_overrides)
        return data

    return _make


@pytest.fixture
def make_registry() -> type[FakeRegistry]:
    return FakeRegistry


@pytest.fixture
def make_fetcher() -> type[FakeFetcher]:
    return FakeFetcher
