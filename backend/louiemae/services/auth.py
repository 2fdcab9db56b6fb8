from typing import Optional

from fastapi import Header, HTTPException, status

from louiemae.config import settings


def internal_api_key_required(x_internal_api_key: Optional[str] = Header(None)) -> None:
    """Guard for admin and internal routes (shared INTERNAL_API_KEY header)."""

    expected_key = settings.INTERNAL_API_KEY or ""
    if not expected_key or x_internal_api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid_internal_api_key",
        )
