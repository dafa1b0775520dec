# coding: utf-8
"""
API Key Authentication

Защита internal status endpoints через X-API-Key.

Usage:
    @router.get("/protected-endpoint")
    async def protected(api_key: str = Depends(verify_api_key)):
        pass
"""
from fastapi import Header, HTTPException
from typing import Optional

from loguru import logger
from config.config import STATUS_API_KEY


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, description="Internal API key")
) -> str:
    """
    Verify API key from request header

    Raises:
        HTTPException 401: If API key is missing or invalid
        HTTPException 500: If API key auth is not configured

    Returns:
        API key if valid
    """
    if not x_api_key:
        logger.warning("API key missing in request")
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide X-API-Key header."
        )

    if not STATUS_API_KEY:
        logger.error("STATUS_API_KEY not configured in .env")
        raise HTTPException(
            status_code=500,
            detail="API key authentication not configured"
        )

    if x_api_key != STATUS_API_KEY:
        logger.warning(f"Invalid API key attempt: {x_api_key[:8]}...")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )

    return x_api_key
