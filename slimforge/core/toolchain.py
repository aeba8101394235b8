"""Subprocess driver for the external compiler toolchain.

The toolchain is a black box: slimforge runs the configured command in a
workspace and reports its output verbatim when it fails.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from slimforge.core.errors import CompilationError

logger = logging.getLogger(__name__)


def run_toolchain(
    command: list[str],
    *,
    cwd: Path,
    phase: str,
    env: dict[str, str] | None = None,
) -> str:
    """Run *command* in *cwd* and return its combined stdout/stderr.

    Raises ``CompilationError`` when the command cannot be started or exits
    non-zero. The error carries the tool's output unmodified.
    """
    if not command:
        raise CompilationError(f"No {phase} build command configured", phase=phase)

    full_env = dict(os.environ)
    full_env.update(env or {})

    logger.info("%s build: %s", phase, " ".join(command))
    try:
        proc = subprocess.run(
            command,
            cwd=str(cwd),
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise CompilationError(
            f"Cannot start {phase} build command {command[0]!r}: {exc}",
            phase=phase,
            command=command,
            diagnostics=str(exc),
        ) from exc

    output = proc.stdout.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        logger.error("%s build failed with exit code %d", phase, proc.returncode)
        raise CompilationError(
            f"{phase} build failed with exit code {proc.returncode}",
            phase=phase,
            command=command,
            returncode=proc.returncode,
            diagnostics=output,
        )
    return output
