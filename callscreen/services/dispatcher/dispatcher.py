"""Action dispatcher for screening outcomes."""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from callscreen.services.dispatcher.call_control import CallConflictError, CallControl
from callscreen.services.dispatcher.twiml import TwimlBuilder

logger = logging.getLogger(__name__)

# Call statuses that can no longer be redirected
TERMINAL_CALL_STATUSES = frozenset({"completed", "busy", "failed", "canceled", "no-answer"})


class ActionResult(str, Enum):
    """Outcome of an external call action."""

    SUCCESS = "SUCCESS"
    ABORTED = "ABORTED"  # Call ended or was modified by someone else
    FAILED = "FAILED"

    def __str__(self) -> str:
        return self.value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionDispatcher:
    """
    Executes screening actions on a live call.

    Every action waits a short settle delay, then re-checks the live call
    before redirecting it. A call that has ended, or that was updated very
    recently by a racing handler, is left alone.
    """

    def __init__(
        self,
        call_control: CallControl,
        twiml: TwimlBuilder,
        callback_url: str,
        settle_delay: float = 0.1,
        recent_update_window: float = 2.0,
        voicemail_pause_seconds: int = 10,
        now: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.call_control = call_control
        self.twiml = twiml
        self.callback_url = callback_url
        self.settle_delay = settle_delay
        self.recent_update_window = recent_update_window
        self.voicemail_pause_seconds = voicemail_pause_seconds
        self._now = now
        self._sleep = sleep

    async def identify(self, call_sid: str, message: str) -> ActionResult:
        """Speak the identification and restart monitoring."""
        return await self._apply(
            call_sid, "identify", self.twiml.identify(message, self.callback_url)
        )

    async def leave_voicemail(self, call_sid: str, message: str) -> ActionResult:
        """Wait out the greeting, leave the message and hang up."""
        return await self._apply(
            call_sid,
            "leave_voicemail",
            self.twiml.leave_voicemail(message, self.voicemail_pause_seconds),
        )

    async def passthrough(self, call_sid: str) -> ActionResult:
        """Stop monitoring and hand the line to the two parties."""
        return await self._apply(call_sid, "passthrough", self.twiml.passthrough())

    def _updated_recently(self, date_updated: Optional[datetime]) -> bool:
        if date_updated is None:
            return False
        if date_updated.tzinfo is None:
            date_updated = date_updated.replace(tzinfo=timezone.utc)
        age = (self._now() - date_updated).total_seconds()
        return age < self.recent_update_window

    async def _apply(self, call_sid: str, action: str, twiml: str) -> ActionResult:
        if self.settle_delay > 0:
            await self._sleep(self.settle_delay)

        try:
            call = await self.call_control.fetch_call(call_sid)
            if call.status in TERMINAL_CALL_STATUSES:
                logger.info(
                    f"[DISPATCHER] Call already ended, skipping {action} - "
                    f"CallSid: {call_sid}, Status: {call.status}"
                )
                return ActionResult.ABORTED
            if self._updated_recently(call.date_updated):
                logger.info(
                    f"[DISPATCHER] Call updated moments ago, skipping {action} - "
                    f"CallSid: {call_sid}, Updated: {call.date_updated}"
                )
                return ActionResult.ABORTED
        except Exception as e:
            logger.warning(
                f"[DISPATCHER] Could not check call before {action}, proceeding - "
                f"CallSid: {call_sid}, Error: {str(e)}"
            )

        try:
            await self.call_control.update_call(call_sid, twiml)
        except CallConflictError as e:
            logger.info(
                f"[DISPATCHER] Call modified concurrently, {action} aborted - "
                f"CallSid: {call_sid}, Error: {str(e)}"
            )
            return ActionResult.ABORTED
        except Exception as e:
            logger.error(
                f"[DISPATCHER] {action} failed - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return ActionResult.FAILED

        logger.info(f"[DISPATCHER] {action} applied - CallSid: {call_sid}")
        return ActionResult.SUCCESS
