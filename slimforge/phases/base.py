"""Abstract base phase with an enforced lifecycle.

Every concrete phase implements ``execute()`` plus the two fingerprint
hooks. ``run_phase()`` is **not overridable**; it fixes the ordering:

    compute input hash -> execute -> compute output hash -> report

Errors raised by ``execute()`` propagate unchanged. The pipeline is
fail-fast and never rewrites a toolchain diagnostic.
"""

from __future__ import annotations

import abc
import logging
import shutil
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, final

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class PhaseOutcome(BaseModel):
    """What a phase produced, plus the fingerprints recorded in the ledger."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    phase_id: str
    output: Any
    input_hash: str
    output_hash: str
    artifact_references: list[str] = []
    elapsed_seconds: float = 0.0


class BasePhase(abc.ABC):
    """Abstract base for the three pipeline phases.

    Subclasses **must** implement ``phase_id``, ``display_name``,
    ``execute``, ``input_hash`` and ``output_hash``. They **must not**
    override ``run_phase()``.
    """

    @property
    @abc.abstractmethod
    def phase_id(self) -> str:
        """Stable phase identifier (e.g. ``'dependencies'``)."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        """Human-readable name used in logs and the CLI."""
        ...

    @abc.abstractmethod
    def execute(self, *inputs: Any) -> Any:
        """Run the phase and return its artifact."""
        ...

    @abc.abstractmethod
    def input_hash(self, *inputs: Any) -> str:
        """Fingerprint of the phase inputs."""
        ...

    @abc.abstractmethod
    def output_hash(self, output: Any) -> str:
        """Fingerprint of the phase output."""
        ...

    def artifact_references(self, output: Any) -> list[str]:
        """Content addresses produced by the phase, for the ledger."""
        return []

    @final
    def run_phase(self, *inputs: Any) -> PhaseOutcome:
        """Execute the full phase lifecycle.  **Do not override.**"""
        input_hash = self.input_hash(*inputs)
        logger.info(
            "%s [%s] starting, input=%s", self.display_name, self.phase_id, input_hash[:12]
        )

        started = time.monotonic()
        try:
            output = self.execute(*inputs)
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.phase_id, exc)
            raise
        elapsed = time.monotonic() - started

        output_hash = self.output_hash(output)
        logger.info(
            "%s [%s] finished in %.1fs, output=%s",
            self.display_name,
            self.phase_id,
            elapsed,
            output_hash[:12],
        )
        return PhaseOutcome(
            phase_id=self.phase_id,
            output=output,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=self.artifact_references(output),
            elapsed_seconds=elapsed,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} phase_id={self.phase_id!r}>"


@contextmanager
def scratch_workspace(work_root: Path, prefix: str, *, keep: bool = False) -> Iterator[Path]:
    """Yield a fresh, empty build workspace under *work_root*.

    The workspace is removed afterwards unless *keep* is set.
    """
    work_root = Path(work_root)
    work_root.mkdir(parents=True, exist_ok=True)
    workspace = Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=work_root))
    try:
        yield workspace
    finally:
        if keep:
            logger.info("kept workspace %s", workspace)
        else:
            shutil.rmtree(workspace, ignore_errors=True)
