"""Shell-activation hook that prepends a local tool directory to PATH.

Local tool shims live in the working tree (conventionally ``devtools/bin``)
and are picked up live: the directory is resolved at activation time and
never copied, created or modified, so editing a shim does not require
re-composing the environment.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TOOL_DIR = "devtools/bin"


@dataclass(frozen=True)
class PathPrefixHook:
    directory: str = DEFAULT_TOOL_DIR

    def absolute_dir(self, cwd: Path) -> str:
        """Resolve the tool directory against ``cwd``; it need not exist."""
        return os.path.realpath(os.path.join(os.fspath(cwd), self.directory))

    def apply(self, environ: Mapping[str, str], cwd: Path) -> dict[str, str]:
        """Return a copy of ``environ`` with the tool directory first on PATH.

        The existing PATH is kept as-is, duplicates included.
        """
        result = dict(environ)
        prefix = self.absolute_dir(cwd)
        current = result.get("PATH", "")
        result["PATH"] = f"{prefix}{os.pathsep}{current}" if current else prefix
        return result

    def render(self) -> str:
        """Return the equivalent POSIX shell snippet."""
        directory = self.directory.rstrip("/") + "/"
        return f'PATH="$(realpath {shlex.quote(directory)}):$PATH";'
