"""
Ordered screening rules.

Each rule names the state it applies in, what it listens for, and the
state it claims. The resolver evaluates them top to bottom and acts on the
first match, so the order below is the priority order.
"""
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Optional, Tuple

from callscreen.services.call_session.models import CallSession, CallState, MachineSignal
from callscreen.services.classifier.classifier import PatternClassifier
from callscreen.services.resolver import constants
from callscreen.services.resolver.models import Action, Confidence, Scenario


@dataclass
class DetectionContext:
    """One transcript event seen against the current session."""

    session: CallSession
    text: str
    window: str
    elapsed: float
    classifier: PatternClassifier

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def signal(self) -> Optional[MachineSignal]:
        return self.session.machine_signal

    @property
    def machine_signal(self) -> bool:
        return self.signal is not None and self.signal.is_machine

    @cached_property
    def preamble_heard(self) -> bool:
        return self.classifier.is_preamble(self.text) or self.window_has_preamble

    @cached_property
    def window_has_preamble(self) -> bool:
        return self.classifier.is_preamble(self.window)

    @cached_property
    def human_heard(self) -> bool:
        return self.classifier.is_human_speech(self.text) or self.classifier.is_human_speech(
            self.window
        )

    @cached_property
    def voicemail_heard(self) -> bool:
        return self.classifier.is_voicemail_greeting(
            self.text
        ) or self.classifier.is_voicemail_greeting(self.window)

    @cached_property
    def intermediate_prompt(self) -> bool:
        return self.classifier.is_intermediate_prompt(self.text)


def _no_confidence(ctx: DetectionContext) -> Optional[Confidence]:
    return None


@dataclass(frozen=True)
class Rule:
    """A guarded trigger and the transition it claims."""

    name: str
    from_state: CallState
    matches: Callable[[DetectionContext], bool]
    action: Action
    scenario: Optional[Scenario] = None
    to_state: Optional[CallState] = None
    tag: Optional[str] = None
    confidence: Callable[[DetectionContext], Optional[Confidence]] = field(
        default=_no_confidence
    )

    def applies(self, ctx: DetectionContext) -> bool:
        return ctx.state is self.from_state and self.matches(ctx)


def _early_human(ctx: DetectionContext) -> bool:
    if not constants.EARLY_HUMAN_MIN_SECONDS < ctx.elapsed < constants.EARLY_HUMAN_MAX_SECONDS:
        return False
    human = ctx.human_heard or ctx.signal is MachineSignal.HUMAN
    return human and not ctx.preamble_heard


def _human_fallback(ctx: DetectionContext) -> bool:
    # Nothing positive was heard, but a screened call would have played
    # the preamble by now
    if not constants.HUMAN_FALLBACK_MIN_SECONDS < ctx.elapsed < constants.HUMAN_FALLBACK_MAX_SECONDS:
        return False
    if ctx.session.has_fired(constants.TAG_HUMAN_PASSTHROUGH_FALLBACK):
        return False
    return not ctx.window_has_preamble and not ctx.machine_signal


def _direct_voicemail(ctx: DetectionContext) -> bool:
    if ctx.elapsed >= constants.DIRECT_VOICEMAIL_MAX_SECONDS:
        return False
    return (ctx.voicemail_heard or ctx.machine_signal) and not ctx.preamble_heard


def _preamble(ctx: DetectionContext) -> bool:
    return ctx.preamble_heard


def _inferred_preamble(ctx: DetectionContext) -> bool:
    # Transcription can start too late to catch the preamble itself, but a
    # follow-up prompt this early means it played
    return ctx.intermediate_prompt and ctx.elapsed < constants.INFERRED_PREAMBLE_MAX_SECONDS


def _inferred_confidence(ctx: DetectionContext) -> Confidence:
    return Confidence.HIGH if ctx.machine_signal else Confidence.MEDIUM


def _monitoring_prompt(ctx: DetectionContext) -> bool:
    return ctx.intermediate_prompt


def _voicemail_after_preamble(ctx: DetectionContext) -> bool:
    return ctx.voicemail_heard


def _human_after_preamble(ctx: DetectionContext) -> bool:
    return ctx.human_heard


SCREENING_RULES: Tuple[Rule, ...] = (
    Rule(
        name="early_human",
        from_state=CallState.INITIAL,
        matches=_early_human,
        action=Action.PASSTHROUGH,
        scenario=Scenario.DIRECT_HUMAN,
        to_state=CallState.PASSTHROUGH,
        tag=constants.TAG_HUMAN_PASSTHROUGH,
    ),
    Rule(
        name="human_fallback",
        from_state=CallState.INITIAL,
        matches=_human_fallback,
        action=Action.PASSTHROUGH,
        scenario=Scenario.DIRECT_HUMAN,
        to_state=CallState.PASSTHROUGH,
        tag=constants.TAG_HUMAN_PASSTHROUGH_FALLBACK,
    ),
    Rule(
        name="direct_voicemail",
        from_state=CallState.INITIAL,
        matches=_direct_voicemail,
        action=Action.LEAVE_VOICEMAIL,
        scenario=Scenario.DIRECT_VOICEMAIL,
        to_state=CallState.VOICEMAIL_DELIVERED,
        tag=constants.TAG_VOICEMAIL_DIRECT,
    ),
    Rule(
        name="preamble",
        from_state=CallState.INITIAL,
        matches=_preamble,
        action=Action.IDENTIFY,
        scenario=Scenario.SCREENING_PREAMBLE,
        to_state=CallState.IOS26_MONITORING,
        tag=constants.TAG_IDENTIFY,
    ),
    Rule(
        name="inferred_preamble",
        from_state=CallState.INITIAL,
        matches=_inferred_preamble,
        action=Action.IDENTIFY,
        scenario=Scenario.SCREENING_PREAMBLE,
        to_state=CallState.IOS26_MONITORING,
        tag=constants.TAG_IDENTIFY,
        confidence=_inferred_confidence,
    ),
    Rule(
        name="monitoring_prompt",
        from_state=CallState.IOS26_MONITORING,
        matches=_monitoring_prompt,
        action=Action.HOLD,
    ),
    Rule(
        name="voicemail_after_preamble",
        from_state=CallState.IOS26_MONITORING,
        matches=_voicemail_after_preamble,
        action=Action.LEAVE_VOICEMAIL,
        scenario=Scenario.SCREENING_THEN_VOICEMAIL,
        to_state=CallState.VOICEMAIL_DELIVERED,
        tag=constants.TAG_VOICEMAIL_AFTER_PREAMBLE,
    ),
    Rule(
        name="human_after_preamble",
        from_state=CallState.IOS26_MONITORING,
        matches=_human_after_preamble,
        action=Action.PASSTHROUGH,
        scenario=Scenario.SCREENING_THEN_HUMAN,
        to_state=CallState.PASSTHROUGH,
        tag=constants.TAG_HUMAN_AFTER_PREAMBLE,
    ),
)


def first_match(rules: Tuple[Rule, ...], ctx: DetectionContext) -> Optional[Rule]:
    """Get the highest-priority rule that applies, or None."""
    for rule in rules:
        if rule.applies(ctx):
            return rule
    return None
