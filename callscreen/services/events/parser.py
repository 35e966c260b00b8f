"""Parsing of Twilio voice callbacks into call events."""
import json
import logging
from typing import Any, Mapping, Optional

from callscreen.services.call_session.models import MachineSignal
from callscreen.services.events.models import (
    CallEvent,
    LifecycleEvent,
    MachineDetectionEvent,
    TranscriptEvent,
    TranscriptionSessionEvent,
    TranscriptionStatus,
)

logger = logging.getLogger(__name__)

TRANSCRIPTION_CONTENT = "transcription-content"

ANSWERED_BY_SIGNALS = {
    "machine_start": MachineSignal.MACHINE_START,
    "machine_end_beep": MachineSignal.MACHINE_END_BEEP,
    "machine_end_silence": MachineSignal.MACHINE_END_BEEP,
    "machine_end_other": MachineSignal.MACHINE_END_BEEP,
    "human": MachineSignal.HUMAN,
    "fax": MachineSignal.FAX,
    "unknown": MachineSignal.UNKNOWN,
}


class MalformedEventError(ValueError):
    """The callback could not be turned into an event."""


def parse_answered_by(answered_by: str) -> MachineSignal:
    """Map an AnsweredBy value onto a machine signal."""
    return ANSWERED_BY_SIGNALS.get((answered_by or "").strip().lower(), MachineSignal.UNKNOWN)


def _is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _parse_confidence(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_transcript(call_sid: str, form: Mapping[str, Any]) -> Optional[TranscriptEvent]:
    """
    Parse a transcription-content callback.

    Returns:
        TranscriptEvent, or None if the chunk carries no text

    Raises:
        MalformedEventError: If TranscriptionData is not valid JSON
    """
    raw = form.get("TranscriptionData")
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Invalid TranscriptionData for {call_sid}: {str(e)}") from e
    if not isinstance(data, dict):
        raise MalformedEventError(f"TranscriptionData for {call_sid} is not an object")

    text = data.get("transcript") or data.get("Transcript") or ""
    if not isinstance(text, str) or not text.strip():
        return None

    is_final = _is_true(data.get("is_final", False)) or _is_true(form.get("Final", False))
    return TranscriptEvent(
        call_sid=call_sid,
        text=text.strip(),
        is_final=is_final,
        confidence=_parse_confidence(data.get("confidence", data.get("Confidence"))),
        transcription_name=form.get("TranscriptionName"),
    )


def parse_webhook(form: Mapping[str, Any]) -> Optional[CallEvent]:
    """
    Turn a voice callback form into a call event.

    One webhook receives status callbacks, async AMD callbacks and real-time
    transcription callbacks for the same call; the fields present decide
    which one it is.

    Returns:
        The event, or None for callbacks with nothing to act on

    Raises:
        MalformedEventError: If CallSid is missing or the payload is unparseable
    """
    call_sid = form.get("CallSid")
    if not call_sid:
        raise MalformedEventError("Callback without CallSid")

    transcription_event = form.get("TranscriptionEvent")
    if transcription_event == TRANSCRIPTION_CONTENT:
        return parse_transcript(call_sid, form)
    if transcription_event:
        try:
            status = TranscriptionStatus(transcription_event)
        except ValueError:
            logger.debug(
                f"[EVENT PARSER] Unknown transcription event - CallSid: {call_sid}, "
                f"Event: {transcription_event}"
            )
            return None
        return TranscriptionSessionEvent(
            call_sid=call_sid,
            status=status,
            transcription_name=form.get("TranscriptionName"),
        )

    answered_by = form.get("AnsweredBy")
    if answered_by:
        return MachineDetectionEvent(
            call_sid=call_sid,
            signal=parse_answered_by(answered_by),
            answered_by=answered_by,
        )

    return LifecycleEvent(call_sid=call_sid, status=form.get("CallStatus") or None)
