"""Control API routes for test harnesses."""

from fastapi import APIRouter, Query
from pydantic import BaseModel

from ...app import IApplication


class ResetResponse(BaseModel):
    """Result of a data reset."""

    status: str
    sessions_closed: int


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=ResetResponse)
    async def reset_system(
        drop_sessions: bool = Query(False, description="Also close live sessions"),
    ) -> dict:
        """Wipe users, groups, messages and trace events."""
        closed = await app.reset(drop_sessions=drop_sessions)
        return {"status": "ok", "sessions_closed": closed}

    return router
