"""Live call session inspection endpoints."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from callscreen.core.dependencies import get_session_store
from callscreen.services.call_session.models import CallSession
from callscreen.services.call_session.store import SessionStore

router = APIRouter()
logger = logging.getLogger(__name__)


class SessionResponse(BaseModel):
    """Call session response model."""
    call_sid: str
    state: str
    started_at: float
    answered: bool
    transcript_window: str
    machine_signal: Optional[str] = None
    fired_actions: List[str] = []
    version: int

    @classmethod
    def from_session(cls, session: CallSession) -> "SessionResponse":
        return cls(
            call_sid=session.call_sid,
            state=session.state.value,
            started_at=session.started_at,
            answered=session.answered,
            transcript_window=session.transcript_window,
            machine_signal=session.machine_signal.value if session.machine_signal else None,
            fired_actions=sorted(session.fired_actions),
            version=session.version,
        )


@router.get("/api/sessions", response_model=List[SessionResponse])
async def list_sessions(
    request: Request,
    store: SessionStore = Depends(get_session_store),
):
    """Get all live call sessions."""
    logger.info(
        f"[SESSIONS] List requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    sessions = await store.list_sessions()
    logger.debug(f"[SESSIONS] Found {len(sessions)} live sessions")
    return [SessionResponse.from_session(s) for s in sessions]


@router.get("/api/sessions/{call_sid}", response_model=SessionResponse)
async def get_session(
    call_sid: str,
    store: SessionStore = Depends(get_session_store),
):
    """Get one live call session."""
    session = await store.get(call_sid)
    if session is None:
        logger.info(f"[SESSIONS] Session not found - CallSid: {call_sid}")
        raise HTTPException(status_code=404, detail=f"No live session for call {call_sid}")
    return SessionResponse.from_session(session)
