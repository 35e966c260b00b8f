"""SQL-backed call session store for multi-instance deployments."""
import logging
from typing import List, Optional
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callscreen.db.models import CallSessionRecord, EndedCallRecord
from callscreen.services.call_session.models import CallSession, CallState, MachineSignal
from callscreen.services.call_session.store import (
    DEFAULT_ENDED_CALL_TTL_SECONDS,
    Mutation,
    SessionStore,
)

logger = logging.getLogger(__name__)


def _to_session(record: CallSessionRecord) -> CallSession:
    return CallSession(
        call_sid=record.call_sid,
        state=CallState(record.state),
        started_at=record.started_at,
        answered=record.answered,
        transcript_window=record.transcript_window or "",
        machine_signal=MachineSignal(record.machine_signal) if record.machine_signal else None,
        fired_actions=set(record.fired_actions or []),
        version=record.version,
    )


def _to_values(session: CallSession) -> dict:
    return {
        "state": session.state.value,
        "started_at": session.started_at,
        "answered": session.answered,
        "transcript_window": session.transcript_window,
        "machine_signal": session.machine_signal.value if session.machine_signal else None,
        "fired_actions": sorted(session.fired_actions),
    }


class SqlSessionStore(SessionStore):
    """
    Session store shared by every process pointed at the same database.

    Mutations are optimistic compare-and-set on the version column: the
    UPDATE only matches the row version that was read, so of two racing
    writers exactly one succeeds and the other re-reads and re-applies its
    mutation against the new state.

    Ended calls leave a row in ended_calls until the TTL passes; expired rows
    are removed whenever another call ends.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_retries: int = 10,
        ended_ttl_seconds: float = DEFAULT_ENDED_CALL_TTL_SECONDS,
    ):
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.ended_ttl_seconds = ended_ttl_seconds

    async def _load(self, db: AsyncSession, call_sid: str) -> Optional[CallSessionRecord]:
        result = await db.execute(
            select(CallSessionRecord)
            .where(CallSessionRecord.call_sid == call_sid)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _has_ended(self, db: AsyncSession, call_sid: str, now: float) -> bool:
        result = await db.execute(
            select(EndedCallRecord.call_sid).where(
                EndedCallRecord.call_sid == call_sid,
                EndedCallRecord.ended_at > now - self.ended_ttl_seconds,
            )
        )
        return result.scalar_one_or_none() is not None

    async def get(self, call_sid: str) -> Optional[CallSession]:
        async with self.session_factory() as db:
            record = await self._load(db, call_sid)
            return _to_session(record) if record else None

    async def get_or_create(self, call_sid: str, now: float) -> Optional[CallSession]:
        async with self.session_factory() as db:
            record = await self._load(db, call_sid)
            if record:
                return _to_session(record)

            if await self._has_ended(db, call_sid, now):
                logger.info(f"[SQL SESSION STORE] Call already ended, not recreating - CallSid: {call_sid}")
                return None

            record = CallSessionRecord(
                call_sid=call_sid,
                state=CallState.INITIAL.value,
                started_at=now,
                answered=False,
                transcript_window="",
                fired_actions=[],
                version=0,
            )
            db.add(record)
            try:
                await db.commit()
                logger.info(f"[SQL SESSION STORE] Initialized session - CallSid: {call_sid}")
            except IntegrityError:
                # Another instance created it first
                await db.rollback()
                record = await self._load(db, call_sid)
                if record is None:
                    # The call ended before the reload
                    logger.info(f"[SQL SESSION STORE] Call ended during creation - CallSid: {call_sid}")
                    return None
            return _to_session(record)

    async def update(self, call_sid: str, mutate: Mutation) -> Optional[CallSession]:
        async with self.session_factory() as db:
            for attempt in range(self.max_retries):
                record = await self._load(db, call_sid)
                if record is None:
                    return None
                current = _to_session(record)
                updated = mutate(current.model_copy(deep=True))
                if updated is None:
                    await db.rollback()
                    return None

                result = await db.execute(
                    update(CallSessionRecord)
                    .where(
                        CallSessionRecord.call_sid == call_sid,
                        CallSessionRecord.version == current.version,
                    )
                    .values(**_to_values(updated), version=current.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await db.commit()
                    return updated.model_copy(update={"version": current.version + 1})

                await db.rollback()
                logger.debug(
                    f"[SQL SESSION STORE] Version conflict, retrying - CallSid: {call_sid}, "
                    f"Attempt: {attempt + 1}"
                )

        logger.warning(
            f"[SQL SESSION STORE] Gave up after {self.max_retries} version conflicts - "
            f"CallSid: {call_sid}"
        )
        return None

    async def delete(self, call_sid: str, now: float) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(CallSessionRecord).where(CallSessionRecord.call_sid == call_sid)
            )
            await db.execute(
                delete(EndedCallRecord).where(
                    EndedCallRecord.ended_at <= now - self.ended_ttl_seconds
                )
            )
            await db.merge(EndedCallRecord(call_sid=call_sid, ended_at=now))
            await db.commit()
        existed = result.rowcount > 0
        if existed:
            logger.info(f"[SQL SESSION STORE] Cleaned up session - CallSid: {call_sid}")
        return existed

    async def list_sessions(self) -> List[CallSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CallSessionRecord).order_by(CallSessionRecord.created_at)
            )
            return [_to_session(record) for record in result.scalars().all()]
