"""slimforge data models: all Pydantic v2, all frozen (immutable)."""

from slimforge.models.artifacts import (
    ArtifactRef,
    ContentAddressedArtifact,
    DependencyCache,
    Executable,
    SourceTree,
)
from slimforge.models.config import PipelineConfig, RuntimeSpec, ToolchainSpec
from slimforge.models.image import (
    BaseLayer,
    ImageConfig,
    RuntimeDefaults,
    RuntimeImage,
)
from slimforge.models.ledger import LedgerEntry
from slimforge.models.manifest import DependencySpec, LockedPackage, Lockfile, Manifest
from slimforge.models.pipeline import (
    VALID_TRANSITIONS,
    BuildResult,
    PipelineState,
)

__all__ = [
    # manifest
    "DependencySpec",
    "Manifest",
    "LockedPackage",
    "Lockfile",
    # artifacts
    "ArtifactRef",
    "ContentAddressedArtifact",
    "DependencyCache",
    "Executable",
    "SourceTree",
    # image
    "BaseLayer",
    "ImageConfig",
    "RuntimeDefaults",
    "RuntimeImage",
    # pipeline
    "PipelineState",
    "VALID_TRANSITIONS",
    "BuildResult",
    # ledger
    "LedgerEntry",
    # config
    "PipelineConfig",
    "RuntimeSpec",
    "ToolchainSpec",
]
