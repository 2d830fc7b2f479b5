from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status


# PUBLIC_INTERFACE
async def get_owner_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-ID")) -> str:
    """
    Resolve the owner of the request from the X-User-ID header.

    Identity is established upstream (gateway or auth middleware); the value is
    trusted as-is and scopes every read and write.

    Raises:
        HTTPException(401) if the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()
