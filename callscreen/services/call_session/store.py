"""Call session storage."""
import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional

from callscreen.services.call_session.models import CallSession, CallState, MachineSignal

logger = logging.getLogger(__name__)

# A mutation receives a copy of the current session and returns the new
# session, or None to leave it untouched.
Mutation = Callable[[CallSession], Optional[CallSession]]

# How long an ended call id stays dead. Twilio keeps delivering transcription
# callbacks for a while after the call completes.
DEFAULT_ENDED_CALL_TTL_SECONDS = 3600.0


class SessionStore(ABC):
    """
    Owns every CallSession.

    Callers only ever receive copies; all changes go through update(), which
    applies a mutation atomically against the stored version.

    Deleting a session marks its call id as ended. Until the mark expires,
    get_or_create() will not bring the call back.
    """

    @abstractmethod
    async def get(self, call_sid: str) -> Optional[CallSession]:
        """Get a copy of the session, or None."""
        pass

    @abstractmethod
    async def get_or_create(self, call_sid: str, now: float) -> Optional[CallSession]:
        """
        Get the session, creating it in INITIAL state if missing.

        Returns None if the call has already ended.
        """
        pass

    @abstractmethod
    async def update(self, call_sid: str, mutate: Mutation) -> Optional[CallSession]:
        """
        Apply a mutation atomically.

        Returns the updated session, or None if the session does not exist
        or the mutation declined to change it.
        """
        pass

    @abstractmethod
    async def delete(self, call_sid: str, now: float) -> bool:
        """Delete the session and mark the call ended. Returns True if it existed."""
        pass

    @abstractmethod
    async def list_sessions(self) -> List[CallSession]:
        """Get copies of all live sessions."""
        pass

    async def claim(
        self,
        call_sid: str,
        from_states: Iterable[CallState],
        to_state: CallState,
        tag: Optional[str] = None,
    ) -> bool:
        """
        Claim an action for a call.

        Moves the session to to_state and records tag in one atomic step, but
        only if the current state is one of from_states and the tag has not
        fired yet. Exactly one concurrent caller can win a given claim.
        """
        allowed = frozenset(from_states)

        def _claim(session: CallSession) -> Optional[CallSession]:
            if session.state not in allowed:
                return None
            if tag and session.has_fired(tag):
                return None
            fired = set(session.fired_actions)
            if tag:
                fired.add(tag)
            return session.model_copy(update={"state": to_state, "fired_actions": fired})

        updated = await self.update(call_sid, _claim)
        if updated is None:
            logger.debug(
                f"[SESSION STORE] Claim rejected - CallSid: {call_sid}, "
                f"To: {to_state}, Tag: {tag}"
            )
            return False
        logger.info(
            f"[SESSION STORE] State transition claimed - CallSid: {call_sid}, "
            f"To: {to_state}, Tag: {tag}"
        )
        return True

    async def set_machine_signal(
        self, call_sid: str, signal: MachineSignal
    ) -> Optional[CallSession]:
        """Record the latest machine detection result."""
        return await self.update(
            call_sid, lambda s: s.model_copy(update={"machine_signal": signal})
        )

    async def mark_answered(self, call_sid: str, now: float) -> Optional[CallSession]:
        """Restart the elapsed-time clock when the call is first answered."""

        def _answer(session: CallSession) -> Optional[CallSession]:
            if session.answered or session.state is not CallState.INITIAL:
                return None
            return session.model_copy(update={"answered": True, "started_at": now})

        return await self.update(call_sid, _answer)


class InMemorySessionStore(SessionStore):
    """Process-local session store."""

    def __init__(self, ended_ttl_seconds: float = DEFAULT_ENDED_CALL_TTL_SECONDS):
        self._sessions: Dict[str, CallSession] = {}
        # call_sid -> time the call ended, oldest first
        self._ended: "OrderedDict[str, float]" = OrderedDict()
        self.ended_ttl_seconds = ended_ttl_seconds
        self._lock = threading.Lock()

    def _prune_ended(self, now: float) -> None:
        while self._ended:
            ended_at = next(iter(self._ended.values()))
            if ended_at + self.ended_ttl_seconds > now:
                break
            self._ended.popitem(last=False)

    async def get(self, call_sid: str) -> Optional[CallSession]:
        with self._lock:
            session = self._sessions.get(call_sid)
            return session.model_copy(deep=True) if session else None

    async def get_or_create(self, call_sid: str, now: float) -> Optional[CallSession]:
        with self._lock:
            session = self._sessions.get(call_sid)
            if session is None:
                self._prune_ended(now)
                if call_sid in self._ended:
                    logger.info(f"[SESSION STORE] Call already ended, not recreating - CallSid: {call_sid}")
                    return None
                session = CallSession(call_sid=call_sid, started_at=now)
                self._sessions[call_sid] = session
                logger.info(f"[SESSION STORE] Initialized session - CallSid: {call_sid}")
            return session.model_copy(deep=True)

    async def update(self, call_sid: str, mutate: Mutation) -> Optional[CallSession]:
        with self._lock:
            current = self._sessions.get(call_sid)
            if current is None:
                return None
            updated = mutate(current.model_copy(deep=True))
            if updated is None:
                return None
            updated = updated.model_copy(update={"version": current.version + 1})
            self._sessions[call_sid] = updated
            return updated.model_copy(deep=True)

    async def delete(self, call_sid: str, now: float) -> bool:
        with self._lock:
            existed = self._sessions.pop(call_sid, None) is not None
            self._ended.pop(call_sid, None)
            self._ended[call_sid] = now
            self._prune_ended(now)
        if existed:
            logger.info(f"[SESSION STORE] Cleaned up session - CallSid: {call_sid}")
        return existed

    async def list_sessions(self) -> List[CallSession]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]
