"""Pipeline error taxonomy.

Every error is fatal: the pipeline moves to FAILED, records the error in
the build ledger and re-raises it unchanged. Nothing is retried.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for all fatal pipeline errors."""

    phase: str = "pipeline"


class ConfigError(PipelineError):
    """Raised when ``slimforge.toml`` is missing, unreadable or invalid."""


class ManifestError(PipelineError):
    """Raised when the manifest or lockfile is invalid or inconsistent.

    Raised before any compilation starts.
    """

    phase = "dependencies"


class CompilationError(PipelineError):
    """Raised when the dependency or application build fails.

    ``diagnostics`` holds the toolchain's combined output verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        diagnostics: str = "",
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.command = list(command or [])
        self.returncode = returncode
        self.diagnostics = diagnostics


class AssemblyError(PipelineError):
    """Raised when the runtime image cannot be assembled.

    Covers a missing or unsuitable base layer, missing trust material and
    failures while writing image layers.
    """

    phase = "assembly"


class CacheIntegrityError(PipelineError):
    """Raised when a published dependency cache entry is corrupt."""

    phase = "dependencies"
