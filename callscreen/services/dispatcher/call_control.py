"""Live call control."""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

logger = logging.getLogger(__name__)

# Twilio rejects updates to a call that is being modified concurrently
CONCURRENT_MODIFICATION_CODE = 20001
CONCURRENT_MODIFICATION_MARKERS = ("not be modified", "cannot be updated", "already")


class CallControlError(Exception):
    """The call-control API failed."""


class CallConflictError(CallControlError):
    """The call was modified concurrently by someone else."""


class CallSnapshot(BaseModel):
    """What the call-control API reports about a live call."""

    call_sid: str
    status: Optional[str] = None
    date_updated: Optional[datetime] = None


class CallControl(ABC):
    """Abstract access to a live call."""

    @abstractmethod
    async def fetch_call(self, call_sid: str) -> CallSnapshot:
        """Fetch current status and last update time."""
        pass

    @abstractmethod
    async def update_call(self, call_sid: str, twiml: str) -> None:
        """Replace the call's instructions with new TwiML."""
        pass


def is_concurrent_modification(error: TwilioRestException) -> bool:
    """Check whether Twilio rejected an update because of a racing change."""
    if error.code == CONCURRENT_MODIFICATION_CODE:
        return True
    message = (error.msg or str(error)).lower()
    return any(marker in message for marker in CONCURRENT_MODIFICATION_MARKERS)


class TwilioCallControl(CallControl):
    """Call control backed by the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, client: Optional[Client] = None):
        self.client = client or Client(account_sid, auth_token)

    async def _run(self, request):
        # The Twilio client is blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, request)

    async def fetch_call(self, call_sid: str) -> CallSnapshot:
        try:
            call = await self._run(lambda: self.client.calls(call_sid).fetch())
        except TwilioRestException as e:
            raise CallControlError(f"Could not fetch call {call_sid}: {e.msg}") from e
        return CallSnapshot(call_sid=call_sid, status=call.status, date_updated=call.date_updated)

    async def update_call(self, call_sid: str, twiml: str) -> None:
        try:
            await self._run(lambda: self.client.calls(call_sid).update(twiml=twiml))
        except TwilioRestException as e:
            logger.info(
                f"[TWILIO] Call update rejected - CallSid: {call_sid}, "
                f"Code: {e.code}, Message: {e.msg}"
            )
            if is_concurrent_modification(e):
                raise CallConflictError(str(e.msg)) from e
            raise CallControlError(f"Could not update call {call_sid}: {e.msg}") from e
