"""Read-only content-addressed artifact cache.

The cache is shared between invocations and owned by whoever populates it
(a fetch tool, a CI job, another composer installation). The composer only
reads from it, and takes the handle as an explicit parameter.

Layout::

    <root>/sha256/<64 hex chars>

An entry whose content does not hash to its name is treated as a miss.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from .hashing import sha256_bytes

logger = logging.getLogger(__name__)

_HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def default_cache_root() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "envcomposer"


@dataclass(frozen=True)
class ArtifactCache:
    root: Path

    def entry_path(self, digest_hex: str) -> Path:
        if not _HEX_PATTERN.match(digest_hex):
            raise ValueError("digest_hex must be a 64-character lowercase hex string")
        return self.root / "sha256" / digest_hex

    def contains(self, digest_hex: str) -> bool:
        return self.entry_path(digest_hex).is_file()

    def lookup(self, digest_hex: str) -> bytes | None:
        """Return cached bytes for ``digest_hex``, or None on a miss."""
        path = self.entry_path(digest_hex)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unreadable cache entry %s: %s", path, exc)
            return None
        if sha256_bytes(data) != digest_hex:
            logger.warning("Ignoring corrupt cache entry %s", path)
            return None
        logger.debug("Cache hit: %s", digest_hex[:12])
        return data
