"""Runtime launch contract for assembled images."""

from slimforge.runtime.launcher import (
    LaunchError,
    launch,
    materialize_rootfs,
    resolve_environment,
    resolve_runtime_settings,
)

__all__ = [
    "LaunchError",
    "launch",
    "materialize_rootfs",
    "resolve_environment",
    "resolve_runtime_settings",
]
