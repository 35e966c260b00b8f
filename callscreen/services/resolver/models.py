"""Resolver result models."""
from enum import Enum
from typing import Optional
from pydantic import BaseModel

from callscreen.services.dispatcher.dispatcher import ActionResult


class Scenario(str, Enum):
    """How the call unfolded."""

    SCREENING_PREAMBLE = "screening_preamble"  # Not an outcome yet: identified, still monitoring
    SCREENING_THEN_VOICEMAIL = "screening_then_voicemail"  # Scenario 1
    SCREENING_THEN_HUMAN = "screening_then_human"  # Scenario 2
    DIRECT_HUMAN = "direct_human"  # Scenario 3
    DIRECT_VOICEMAIL = "direct_voicemail"  # Scenario 4

    def __str__(self) -> str:
        return self.value


class Action(str, Enum):
    """Command requested from the dispatcher."""

    IDENTIFY = "identify"
    LEAVE_VOICEMAIL = "leave_voicemail"
    PASSTHROUGH = "passthrough"
    HOLD = "hold"  # Keep monitoring, nothing to send

    def __str__(self) -> str:
        return self.value


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


class LifecycleOutcome(str, Enum):
    """What the router should tell the call after a lifecycle event."""

    START_MONITORING = "start_monitoring"
    CONTINUE_MONITORING = "continue_monitoring"
    ENDED = "ended"


class DetectionResult(BaseModel):
    """Result of evaluating one transcript event."""

    call_sid: str
    detected: bool = False
    rule: Optional[str] = None
    scenario: Optional[Scenario] = None
    action: Optional[Action] = None
    confidence: Optional[Confidence] = None
    action_result: Optional[ActionResult] = None
    reason: Optional[str] = None

    @classmethod
    def keep_monitoring(cls, call_sid: str, reason: str = "no detection yet") -> "DetectionResult":
        return cls(call_sid=call_sid, reason=reason)
