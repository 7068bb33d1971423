"""
API key dependency for destructive session endpoints.
"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException

from backend.core.config import get_settings


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """
    Require a matching x-api-key header when QUARRY_API_KEY is configured.

    With no key configured (local use) every request passes.
    """
    expected = get_settings().API_KEY
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")
