"""Live session routes: mount, inspect, select, unmount."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth.admin_token import verify_admin_token
from ..errors import EventNotFound, SessionNotFound
from ..services.session import SessionSnapshot
from ..services.session_manager import SessionManager
from .deps import get_session_manager
from .schemas import CreateSessionRequest, SelectEventRequest

router = APIRouter(prefix="/v1/sessions", tags=["sessions"], dependencies=[Depends(verify_admin_token)])


@router.post("", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
async def create_session(
    req: CreateSessionRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Mount a live view over a data source.

    Token and connection problems do not fail the request; they are reported
    in the snapshot's ``error`` and ``status`` fields.
    """
    session = await manager.create(req.tenant_id, req.source_id)
    return session.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    limit: Optional[int] = None,
    manager: SessionManager = Depends(get_session_manager),
):
    try:
        session = manager.get(session_id)
    except SessionNotFound as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(e))
    return session.snapshot(limit=limit)


@router.post("/{session_id}/select", response_model=SessionSnapshot)
async def select_event(
    session_id: str,
    req: SelectEventRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    try:
        session = manager.get(session_id)
        session.select(req.message_id)
    except (SessionNotFound, EventNotFound) as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(e))
    return session.snapshot()


@router.delete("/{session_id}/profile-error", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_profile_error(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    try:
        session = manager.get(session_id)
    except SessionNotFound as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(e))
    session.dismiss_profile_error()


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    """Unmount a session. Unknown or already closed sessions are not an error."""
    await manager.close(session_id)
