"""Request dependencies."""

from fastapi import Header


async def current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Authenticated user id as supplied by the upstream auth layer."""
    return x_user_id
