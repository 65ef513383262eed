"""Health and cookies routes."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from drivefetch.config import Settings
from drivefetch.cookies import read_cookies, write_cookies
from .deps import get_settings
from .schemas import CookiesRequest

router = APIRouter(prefix="/api")
logger = logging.getLogger("drivefetch")


@router.get("/health", response_class=JSONResponse)
async def health():
    return {"status": "ok", "message": "Server is running"}


@router.get("/system/cookies", response_class=JSONResponse)
async def get_cookies(settings: Settings = Depends(get_settings)):
    """
    Return the cookies file gdown uses for Drive access, if it exists.
    """
    try:
        content = read_cookies(settings.cookies_file)
    except OSError as exc:
        logger.exception("[Cookies] Failed to read cookies path=%s", settings.cookies_file)
        raise HTTPException(status_code=500, detail=f"Failed to read cookies: {exc}")
    data = {"exists": content is not None, "path": settings.cookies_file}
    if content is not None:
        data["content"] = content
    return {"status": "success", "data": data}


@router.post("/system/cookies", response_class=JSONResponse)
async def update_cookies(request: CookiesRequest, settings: Settings = Depends(get_settings)):
    try:
        write_cookies(settings.cookies_file, request.content)
    except OSError as exc:
        logger.exception("[Cookies] Failed to write cookies path=%s", settings.cookies_file)
        raise HTTPException(status_code=500, detail=f"Failed to update cookies: {exc}")
    return {"status": "success", "message": "Cookies updated successfully", "data": {"path": settings.cookies_file}}
