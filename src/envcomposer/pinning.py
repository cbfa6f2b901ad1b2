"""Pinned toolchain resolution.

A pinned toolchain is selected by a toolchain descriptor file (a
``rust-toolchain.toml``) and locked by a content hash recorded in the main
descriptor. Resolution fetches the channel manifest the file points at and
compares its sha256 against the recorded hash; any disagreement fails the
whole composition. Changing the toolchain file therefore requires updating
the recorded hash (``envcomposer prefetch`` prints the new value).
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import tomllib
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, cast, runtime_checkable

from .cache import ArtifactCache
from .descriptor import PinnedToolchainRef
from .errors import IntegrityMismatch, UnresolvableCapability
from .hashing import is_placeholder_digest, parse_digest, to_sri

logger = logging.getLogger(__name__)

DIST_SERVER = "https://static.rust-lang.org/dist"
DEFAULT_FETCH_TIMEOUT_S = 60.0

_DATED_CHANNEL = re.compile(r"^(stable|beta|nightly)-(\d{4}-\d{2}-\d{2})$")

HOST_TRIPLES: dict[str, str] = {
    "x86_64-linux": "x86_64-unknown-linux-gnu",
    "aarch64-linux": "aarch64-unknown-linux-gnu",
    "i686-linux": "i686-unknown-linux-gnu",
    "x86_64-darwin": "x86_64-apple-darwin",
    "aarch64-darwin": "aarch64-apple-darwin",
}


@dataclass(frozen=True)
class ToolchainFile:
    """Parsed ``[toolchain]`` table of a toolchain descriptor file."""

    path: Path
    channel: str
    components: tuple[str, ...] = ()
    targets: tuple[str, ...] = ()
    profile: str | None = None


@dataclass(frozen=True)
class ResolvedToolchain:
    """A pinned toolchain whose content hash matched the recorded hash."""

    file: str
    channel: str
    components: tuple[str, ...]
    targets: tuple[str, ...]
    profile: str | None
    digest: str
    bin_dir: Path | None

    def to_manifest_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "channel": self.channel,
            "components": list(self.components),
            "targets": list(self.targets),
            "profile": self.profile,
            "sha256": self.digest,
            "bin_dir": str(self.bin_dir) if self.bin_dir is not None else None,
        }


@runtime_checkable
class ToolchainFetcher(Protocol):
    """Hash-addressed fetch collaborator for pinned toolchains."""

    def fetch(self, toolchain: ToolchainFile, platform: str, digest_hex: str | None = None) -> bytes:
        """Return the content the recorded hash is computed over.

        ``digest_hex`` is the recorded digest, when known, so content-addressed
        caches can be consulted before the network.
        """
        ...

    def locate(self, toolchain: ToolchainFile, platform: str) -> Path | None:
        """Return the directory holding the toolchain's executables, if any."""
        ...


def load_toolchain_file(path: Path) -> ToolchainFile:
    """Parse a ``rust-toolchain.toml`` file.

    Raises:
        UnresolvableCapability: If the file is missing or unreadable, has no
            ``[toolchain] channel``, or has mistyped fields.
    """
    name = path.name
    if not path.is_file():
        raise UnresolvableCapability(name, "-", f"toolchain file not found: {path}")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise UnresolvableCapability(name, "-", f"unreadable toolchain file {path}: {exc}") from exc

    table = data.get("toolchain")
    if not isinstance(table, dict):
        raise UnresolvableCapability(name, "-", "toolchain file has no [toolchain] table")
    channel = table.get("channel")
    if not isinstance(channel, str) or not channel:
        raise UnresolvableCapability(name, "-", "toolchain file must set [toolchain] channel")

    lists: dict[str, tuple[str, ...]] = {}
    for key in ("components", "targets"):
        value = table.get(key, [])
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise UnresolvableCapability(name, "-", f"[toolchain] {key} must be a list of strings")
        lists[key] = tuple(value)
    profile = table.get("profile")
    if profile is not None and not isinstance(profile, str):
        raise UnresolvableCapability(name, "-", "[toolchain] profile must be a string")

    return ToolchainFile(
        path=path,
        channel=channel,
        components=lists["components"],
        targets=lists["targets"],
        profile=profile,
    )


def channel_manifest_url(channel: str, *, dist_server: str = DIST_SERVER) -> str:
    """Return the channel manifest URL for a toolchain channel.

    Dated channels (``nightly-2025-04-27``) live under the date directory;
    everything else (``stable``, ``1.86.0``) is at the top of the dist tree.
    """
    match = _DATED_CHANNEL.match(channel)
    if match:
        release, date = match.groups()
        return f"{dist_server}/{date}/channel-rust-{release}.toml"
    return f"{dist_server}/channel-rust-{channel}.toml"


def host_triple(platform: str) -> str:
    try:
        return HOST_TRIPLES[platform]
    except KeyError:
        raise UnresolvableCapability("toolchain", platform, "no known host triple for this platform") from None


def manifest_channel_mismatch(content: bytes, channel: str) -> str | None:
    """Return why ``content`` is not the channel manifest for ``channel``.

    Dated channels must match the manifest ``date``; the release (``stable``,
    ``beta``, ``nightly`` or a version number) must match ``pkg.rust.version``
    when the manifest carries one. Returns None when the manifest belongs to
    the channel.
    """
    try:
        manifest = tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError):
        return "content is not a channel manifest"

    release = channel
    match = _DATED_CHANNEL.match(channel)
    if match:
        release, date = match.groups()
        if manifest.get("date") != date:
            return f"manifest is dated {manifest.get('date')!r}, toolchain file requests {channel}"

    pkg = manifest.get("pkg")
    rust = pkg.get("rust") if isinstance(pkg, dict) else None
    version = rust.get("version") if isinstance(rust, dict) else None
    if isinstance(version, str) and not _release_matches(version, release):
        return f"manifest is for rust {version!r}, toolchain file requests {channel}"
    return None


def _release_matches(version: str, release: str) -> bool:
    # "1.88.0-nightly (b8005bff3 2025-04-26)" -> "1.88.0-nightly"
    number = version.split(" ", 1)[0]
    if release == "nightly":
        return number.endswith("-nightly")
    if release == "beta":
        return "-beta" in number
    if release == "stable":
        return "-" not in number
    return number == release or number.startswith(release + ".")


@dataclass
class ChannelManifestFetcher:
    """Fetch channel manifests from the cache, then from the dist server.

    Attributes:
        cache: Read-only artifact cache consulted before the network.
        toolchains_root: Directory holding installed toolchains
            (``$RUSTUP_HOME/toolchains``).
        offline: Never touch the network; a cache miss is fatal.
        timeout_s: Network timeout handed to ``urllib``.
    """

    cache: ArtifactCache | None = None
    toolchains_root: Path | None = None
    offline: bool = False
    timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    dist_server: str = DIST_SERVER

    def __post_init__(self) -> None:
        if self.toolchains_root is None:
            rustup_home = os.environ.get("RUSTUP_HOME") or str(Path.home() / ".rustup")
            self.toolchains_root = Path(rustup_home) / "toolchains"

    def fetch(self, toolchain: ToolchainFile, platform: str, digest_hex: str | None = None) -> bytes:
        if self.cache is not None and digest_hex is not None:
            cached = self.cache.lookup(digest_hex)
            if cached is not None:
                return cached

        url = channel_manifest_url(toolchain.channel, dist_server=self.dist_server)
        if self.offline:
            raise UnresolvableCapability(toolchain.path.name, platform, f"offline and not cached: {url}")

        logger.info("Fetching %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self.timeout_s) as resp:
                return resp.read()
        except (urllib.error.URLError, OSError) as exc:
            raise UnresolvableCapability(toolchain.path.name, platform, f"failed to fetch {url}: {exc}") from exc

    def locate(self, toolchain: ToolchainFile, platform: str) -> Path | None:
        toolchains_root = cast(Path, self.toolchains_root)
        install_dir = toolchains_root / f"{toolchain.channel}-{host_triple(platform)}"
        bin_dir = install_dir / "bin"
        if not bin_dir.is_dir():
            raise UnresolvableCapability(
                toolchain.path.name, platform, f"toolchain {toolchain.channel} is not installed at {install_dir}"
            )
        return bin_dir


def resolve_pinned_toolchain(
    ref: PinnedToolchainRef,
    *,
    base_dir: Path,
    platform: str,
    fetcher: ToolchainFetcher,
) -> ResolvedToolchain:
    """Resolve a pinned toolchain and verify its content hash.

    Raises:
        DescriptorError: If the recorded hash is malformed.
        UnresolvableCapability: If the toolchain file or its content cannot
            be obtained, or the toolchain is not installed.
        IntegrityMismatch: If the fetched content does not hash to the
            recorded value, or is not the manifest of the channel the
            toolchain file requests.
    """
    placeholder = is_placeholder_digest(ref.sha256)
    expected = b"" if placeholder else parse_digest(ref.sha256)

    toolchain = load_toolchain_file(base_dir / ref.file)
    content = fetcher.fetch(toolchain, platform, None if placeholder else expected.hex())
    actual = hashlib.sha256(content).digest()

    if placeholder or actual != expected:
        raise IntegrityMismatch(ref.file, ref.sha256, to_sri(actual))
    reason = manifest_channel_mismatch(content, toolchain.channel)
    if reason is not None:
        raise IntegrityMismatch(ref.file, ref.sha256, to_sri(actual), reason=reason)
    logger.debug("Pinned toolchain %s verified: %s", ref.file, ref.sha256)

    return ResolvedToolchain(
        file=ref.file,
        channel=toolchain.channel,
        components=toolchain.components,
        targets=toolchain.targets,
        profile=toolchain.profile,
        digest=to_sri(actual),
        bin_dir=fetcher.locate(toolchain, platform),
    )


def prefetch_hash(ref: PinnedToolchainRef, *, base_dir: Path, platform: str, fetcher: ToolchainFetcher) -> str:
    """Fetch a pinned toolchain's content and return its SRI hash, unchecked."""
    toolchain = load_toolchain_file(base_dir / ref.file)
    return to_sri(hashlib.sha256(fetcher.fetch(toolchain, platform, None)).digest())


__all__ = [
    "ChannelManifestFetcher",
    "ResolvedToolchain",
    "ToolchainFetcher",
    "ToolchainFile",
    "channel_manifest_url",
    "host_triple",
    "load_toolchain_file",
    "manifest_channel_mismatch",
    "prefetch_hash",
    "resolve_pinned_toolchain",
]
