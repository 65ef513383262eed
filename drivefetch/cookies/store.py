"""Access to the cookies file gdown reads."""
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("drivefetch")


def read_cookies(cookies_file: str) -> Optional[str]:
    """Return the cookies file content, or None when it does not exist."""
    p = Path(cookies_file)
    if not p.exists():
        return None
    return p.read_text(encoding="utf-8")


def write_cookies(cookies_file: str, content: str) -> None:
    p = Path(cookies_file)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    logger.info("[Cookies] Updated cookies file path=%s size=%d", p, len(content))
