from .store import (
    read_cookies,
    write_cookies,
)

__all__ = [
    "read_cookies",
    "write_cookies",
]
