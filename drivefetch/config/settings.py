"""Configuration loading."""
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

# Read .env if present
load_dotenv()

logger = logging.getLogger("drivefetch")

DEFAULT_API_KEY_HEADER_NAME = "X-API-Key"
DEFAULT_API_KEY_ENABLED_ENV = "API_KEY_AUTH_ENABLED"
DEFAULT_MASTER_API_KEY_ENV = "API_MASTER_KEY"

MIN_CONCURRENT = 1
MAX_CONCURRENT = 8


def _env_truthy(value: Optional[str], *, default: bool = False) -> bool:
    """Parse common truthy/falsey strings from environment variables."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _default_cookies_file() -> str:
    # gdown reads cookies from ~/.cache/gdown/cookies.txt
    return str(Path.home() / ".cache" / "gdown" / "cookies.txt")


def _default_tool_command() -> List[str]:
    return [sys.executable, "-m", "gdown"]


class Settings(BaseModel):
    """
    Process-level settings loaded from environment variables.

    - download_root: default base directory for batches without output_dir
    - tasks_db: SQLite file holding the task registry
    - config_file: JSON file holding runtime-adjustable settings
    - flush_interval: seconds between buffered progress flushes
    - poll_interval: seconds between scheduler admission passes
    - resume_delay: seconds to wait after startup before re-enqueueing work
    - tool_command: argv prefix used to run gdown
    """

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    download_root: str = "./downloads"
    tasks_db: str = "tasks.db"
    config_file: str = "config.json"
    flush_interval: float = 5.0
    poll_interval: float = 0.1
    resume_delay: float = 2.0
    tool_command: List[str] = Field(default_factory=_default_tool_command)
    cookies_file: str = Field(default_factory=_default_cookies_file)

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "host": os.getenv("HOST"),
            "port": os.getenv("PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
            "download_root": os.getenv("DOWNLOAD_ROOT"),
            "tasks_db": os.getenv("TASKS_DB"),
            "config_file": os.getenv("CONFIG_FILE"),
            "flush_interval": os.getenv("FLUSH_INTERVAL"),
            "poll_interval": os.getenv("POLL_INTERVAL"),
            "resume_delay": os.getenv("RESUME_DELAY"),
            "cookies_file": os.getenv("COOKIES_FILE"),
        }
        command = os.getenv("GDOWN_COMMAND")
        if command:
            values["tool_command"] = shlex.split(command)
        cfg = cls(**{k: v for k, v in values.items() if v is not None})
        logger.info(
            "Settings loaded download_root=%s tasks_db=%s config_file=%s tool_command=%s",
            cfg.download_root,
            cfg.tasks_db,
            cfg.config_file,
            cfg.tool_command,
        )
        return cfg


class AuthConfig(BaseModel):
    """
    Authentication configuration loaded from environment variables.

    - enabled: global kill-switch for API key auth
    - master_key: master API key value used for authentication
    - header_name: header used to pass key (default X-API-Key)
    """

    enabled: bool = Field(default=False)
    master_key: Optional[str] = Field(default=None)
    header_name: str = Field(default=DEFAULT_API_KEY_HEADER_NAME)

    @classmethod
    def from_env(cls) -> "AuthConfig":
        enabled = _env_truthy(os.getenv(DEFAULT_API_KEY_ENABLED_ENV), default=False)
        master_key = os.getenv(DEFAULT_MASTER_API_KEY_ENV)
        header_name = os.getenv("API_KEY_HEADER_NAME", DEFAULT_API_KEY_HEADER_NAME).strip()
        cfg = cls(enabled=enabled, master_key=master_key, header_name=header_name)
        logger.info(
            "Auth config loaded enabled=%s header_name=%s master_key_set=%s",
            cfg.enabled,
            cfg.header_name,
            bool(cfg.master_key),
        )
        return cfg


class RuntimeConfig(BaseModel):
    """Settings that can be changed while the server runs; persisted as JSON."""

    max_concurrent: int = Field(default=1, ge=MIN_CONCURRENT, le=MAX_CONCURRENT)

    @classmethod
    def load(cls, path: str) -> "RuntimeConfig":
        p = Path(path)
        if not p.exists():
            logger.info("Using default runtime config path=%s", path)
            return cls()
        try:
            cfg = cls(**json.loads(p.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError):
            logger.exception("Error loading runtime config, using defaults path=%s", path)
            return cls()
        logger.info("Loaded runtime config path=%s max_concurrent=%d", path, cfg.max_concurrent)
        return cfg

    def save(self, path: str) -> None:
        try:
            Path(path).write_text(self.model_dump_json(indent=2), encoding="utf-8")
            logger.info("Saved runtime config path=%s max_concurrent=%d", path, self.max_concurrent)
        except OSError:
            logger.exception("Error saving runtime config path=%s", path)
