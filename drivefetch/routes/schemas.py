"""Request models."""
from typing import List, Optional

from pydantic import BaseModel, Field

from drivefetch.config import MAX_CONCURRENT, MIN_CONCURRENT


class BatchRequest(BaseModel):
    urls: List[str]
    output_dir: Optional[str] = None


class ConfigRequest(BaseModel):
    max_concurrent: Optional[int] = Field(default=None, ge=MIN_CONCURRENT, le=MAX_CONCURRENT)


class CookiesRequest(BaseModel):
    content: str = Field(..., min_length=1)
