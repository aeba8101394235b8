"""The three pipeline phases, in execution order."""

from slimforge.phases.application import ApplicationBuilder, scan_source_tree
from slimforge.phases.assembly import RuntimeImageAssembler
from slimforge.phases.base import BasePhase, PhaseOutcome
from slimforge.phases.dependencies import DependencyLayerBuilder

__all__ = [
    "BasePhase",
    "PhaseOutcome",
    "DependencyLayerBuilder",
    "ApplicationBuilder",
    "RuntimeImageAssembler",
    "scan_source_tree",
]
