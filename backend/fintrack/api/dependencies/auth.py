"""Current-user dependency supplied by the upstream authentication layer."""

from fastapi import Header, HTTPException, status


def get_current_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    """Return the authenticated user id forwarded by the auth proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()
