"""Call session models."""
from enum import Enum
from typing import Optional, Set
from pydantic import BaseModel


class CallState(str, Enum):
    """Screening progress of a call. Only ever moves forward."""

    INITIAL = "INITIAL"  # Nothing detected yet
    IOS26_MONITORING = "IOS26_MONITORING"  # Preamble heard, identification played
    PASSTHROUGH = "PASSTHROUGH"  # Human on the line, monitoring stopped
    VOICEMAIL_DELIVERED = "VOICEMAIL_DELIVERED"  # Voicemail message left

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value


TERMINAL_STATES = frozenset({CallState.PASSTHROUGH, CallState.VOICEMAIL_DELIVERED})


class MachineSignal(str, Enum):
    """Answering machine detection classification."""

    MACHINE_START = "machine_start"
    MACHINE_END_BEEP = "machine_end_beep"
    HUMAN = "human"
    FAX = "fax"
    UNKNOWN = "unknown"

    @property
    def is_machine(self) -> bool:
        return self in (MachineSignal.MACHINE_START, MachineSignal.MACHINE_END_BEEP)

    def __str__(self) -> str:
        return self.value


class CallSession(BaseModel):
    """Everything remembered about a live call between webhooks."""

    call_sid: str
    state: CallState = CallState.INITIAL
    started_at: float  # epoch seconds
    answered: bool = False
    transcript_window: str = ""
    machine_signal: Optional[MachineSignal] = None
    fired_actions: Set[str] = set()
    version: int = 0  # bumped on every mutation, used for compare-and-set

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def elapsed(self, now: float) -> float:
        """Seconds since the session started."""
        return max(0.0, now - self.started_at)

    def has_fired(self, tag: str) -> bool:
        return tag in self.fired_actions
