"""Tests for the config-driven entry points."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from envcomposer.api import compose_from_config, make_registry
from envcomposer.config import ComposerConfig
from envcomposer.errors import ConfigError, PolicyViolation
from envcomposer.registry import HostRegistry

PLATFORM = "x86_64-linux"


class TestMakeRegistry:
    def test_host_counts_allowed_names_as_unfree(self) -> None:
        registry = make_registry(ComposerConfig(), allow_unfree=("vscode",))
        assert isinstance(registry, HostRegistry)
        assert registry.unfree_names == frozenset({"vscode"})

    def test_host_merges_configured_unfree_names(self) -> None:
        config = ComposerConfig(unfree_names=frozenset({"code-cursor"}))
        registry = make_registry(config, allow_unfree=["vscode"])
        assert isinstance(registry, HostRegistry)
        assert registry.unfree_names == frozenset({"code-cursor", "vscode"})

    def test_host_without_unfree_names_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("INFO", logger="envcomposer.api")
        registry = make_registry(ComposerConfig())
        assert isinstance(registry, HostRegistry)
        assert registry.unfree_names == frozenset()
        assert "unfree_names" in caplog.text

    def test_catalog_requires_path(self) -> None:
        with pytest.raises(ConfigError, match="catalog path"):
            make_registry(ComposerConfig(registry="catalog"))


class TestComposeFromConfigOnHost:
    @pytest.fixture
    def host_bin(self, tmp_path: Path) -> Path:
        bin_dir = tmp_path / "host" / "bin"
        bin_dir.mkdir(parents=True)
        code = bin_dir / "code"
        code.write_text("#!/bin/sh\n", encoding="utf-8")
        code.chmod(0o755)
        return bin_dir

    def _write_descriptor(self, root: Path, allow_unfree: list[str]) -> Path:
        shell = {
            "capabilities": [{"name": "vscode", "executables": ["code"]}],
            "allow_unfree": allow_unfree,
        }
        path = root / "devenv.yaml"
        path.write_text(yaml.safe_dump({"shells": {PLATFORM: {"default": shell}}}), encoding="utf-8")
        return path

    def test_allowed_unfree_capability_marked_unfree(
        self, tmp_path: Path, host_bin: Path, monkeypatch: pytest.MonkeyPatch, make_fetcher: type
    ) -> None:
        monkeypatch.setenv("PATH", str(host_bin))
        config = ComposerConfig(descriptor=self._write_descriptor(tmp_path, ["vscode"]), platform=PLATFORM)

        env = compose_from_config(config, fetcher=make_fetcher())

        (capability,) = env.capabilities
        assert capability.unfree
        assert capability.bin_dir == host_bin

    def test_configured_unfree_name_without_allowance_fails(
        self, tmp_path: Path, host_bin: Path, monkeypatch: pytest.MonkeyPatch, make_fetcher: type
    ) -> None:
        monkeypatch.setenv("PATH", str(host_bin))
        config = ComposerConfig(
            descriptor=self._write_descriptor(tmp_path, []),
            platform=PLATFORM,
            unfree_names=frozenset({"vscode"}),
        )
        with pytest.raises(PolicyViolation, match="vscode"):
            compose_from_config(config, fetcher=make_fetcher())
