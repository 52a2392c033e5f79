"""CMake project analysis, build targets and builders, and Watchman or native file watching."""

__version__ = "0.1.0"

__all__ = [
    "builders",
    "client",
    "cmake",
    "factory",
    "fallback",
    "protocol",
    "targets",
    "watch_config",
]