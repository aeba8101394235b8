"""Rich terminal views over builds, images, the cache and the ledger."""

from slimforge.monitor.renderer import BuildRenderer

__all__ = ["BuildRenderer"]
