from .settings import (
    MAX_CONCURRENT,
    MIN_CONCURRENT,
    AuthConfig,
    RuntimeConfig,
    Settings,
)

__all__ = [
    "MAX_CONCURRENT",
    "MIN_CONCURRENT",
    "AuthConfig",
    "RuntimeConfig",
    "Settings",
]
