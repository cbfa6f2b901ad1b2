"""Activation: hand the caller a composed environment."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from .compose import Environment

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "bash"


def activate(
    environment: Environment,
    *,
    cwd: Path,
    base_environ: Mapping[str, str] | None = None,
    command: Sequence[str] | None = None,
    shell: str | None = None,
) -> int:
    """Enter ``environment``.

    With ``command``, run it inside the environment and return its exit
    code. Otherwise replace the current process with an interactive shell;
    this only returns if ``exec`` fails.
    """
    if base_environ is None:
        base_environ = os.environ
    environ = environment.materialize(base_environ, cwd)

    if command:
        logger.info("Running %s", shlex.join(command))
        proc = subprocess.run(list(command), cwd=str(cwd), env=environ, check=False)
        return proc.returncode

    program = shell or base_environ.get("SHELL") or DEFAULT_SHELL
    logger.info("Entering %s (%s/%s)", program, environment.platform, environment.variant)
    os.chdir(cwd)
    os.execvpe(program, [program], environ)
    return 1  # pragma: no cover - execvpe does not return


def render_exports(variables: Mapping[str, str]) -> str:
    """Render ``export`` lines suitable for ``eval`` in a POSIX shell."""
    lines = [f"export {key}={shlex.quote(value)}" for key, value in sorted(variables.items())]
    return "\n".join(lines) + ("\n" if lines else "")
