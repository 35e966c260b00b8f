"""Inbound call events."""
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel

from callscreen.services.call_session.models import MachineSignal


class LifecycleEvent(BaseModel):
    """Call status callback. A missing status means the call is in progress."""

    call_sid: str
    status: Optional[str] = None


class MachineDetectionEvent(BaseModel):
    """Answering machine detection result."""

    call_sid: str
    signal: MachineSignal
    answered_by: str  # Raw AnsweredBy value


class TranscriptEvent(BaseModel):
    """A chunk of transcribed speech from the called party."""

    call_sid: str
    text: str
    is_final: bool = True
    confidence: Optional[float] = None
    transcription_name: Optional[str] = None


class TranscriptionStatus(str, Enum):
    STARTED = "transcription-started"
    STOPPED = "transcription-stopped"
    ERROR = "transcription-error"


class TranscriptionSessionEvent(BaseModel):
    """A transcription stream started, stopped or failed."""

    call_sid: str
    status: TranscriptionStatus
    transcription_name: Optional[str] = None


CallEvent = Union[LifecycleEvent, MachineDetectionEvent, TranscriptEvent, TranscriptionSessionEvent]
