"""slimforge: layered, cached builds packaged into minimal runtime images.

Three phases, strictly in order:
  - Dependency-Layer Builder: compiles dependencies once per manifest/lock
    content and caches the result under a content hash
  - Application Builder: compiles the sources against the warm cache
  - Runtime Image Assembler: base layer + executable + CA bundle, with
    SERVER_HOST/SERVER_PORT defaults and a direct entry point
"""

__version__ = "0.1.0"
__description__ = "Layered build cache and minimal runtime image assembly"

from slimforge.core.orchestrator import Pipeline
from slimforge.cli.app import app as cli

__all__ = ["Pipeline", "cli", "__version__"]
