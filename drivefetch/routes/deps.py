"""Accessors for the services stored on app.state, and client path checks."""
import logging
from pathlib import Path

from fastapi import HTTPException, Request

from drivefetch.config import Settings
from drivefetch.services import EventHub, Scheduler
from drivefetch.state import TaskRegistry

logger = logging.getLogger("drivefetch")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> TaskRegistry:
    return request.app.state.registry


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def get_hub(request: Request) -> EventHub:
    return request.app.state.hub


# ----------------------------
# Client path hardening
# ----------------------------

def resolve_under_root(settings: Settings, client_path: str) -> Path:
    """
    Resolve a client-supplied directory against the download root.

    Relative paths are taken from the root; absolute paths must already point
    inside it. Anything resolving outside the root is rejected with 400.
    """
    value = client_path.strip()
    if "\x00" in value:
        logger.warning("Rejected path with NUL byte path=%r", value)
        raise HTTPException(status_code=400, detail="Invalid path.")

    root = Path(settings.download_root).resolve(strict=False)
    target = (root / value).resolve(strict=False)
    if not target.is_relative_to(root):
        logger.warning("Rejected path outside download root path=%r target=%s root=%s", value, target, root)
        raise HTTPException(status_code=400, detail="Path must be inside the download root.")

    logger.debug("Resolved client path path=%r target=%s", value, target)
    return target
