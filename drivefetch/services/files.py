"""Listing of downloaded files."""
import hashlib
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

logger = logging.getLogger("drivefetch")

HASH_CHUNK_SIZE = 1024 * 1024


class DownloadedFile(BaseModel):
    name: str
    path: str
    size_bytes: int
    md5: Optional[str] = None


def file_md5(path: Path) -> str:
    digest = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def scan_directory(directory: str, with_hash: bool = True) -> List[DownloadedFile]:
    """Recursively list files under directory, newest first."""
    root = Path(directory)
    if not root.is_dir():
        logger.warning("Download directory missing dir=%s", root)
        return []

    paths = [p for p in root.rglob("*") if p.is_file()]
    paths.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    files: List[DownloadedFile] = []
    for p in paths:
        try:
            files.append(
                DownloadedFile(
                    name=p.name,
                    path=str(p),
                    size_bytes=p.stat().st_size,
                    md5=file_md5(p) if with_hash else None,
                )
            )
        except OSError:
            logger.exception("Failed to read file path=%s", p)
    logger.debug("Scanned directory dir=%s count=%d", root, len(files))
    return files
