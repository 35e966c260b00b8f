"""Scenario resolver: the screening state machine."""
import logging
import time
from typing import Callable, Optional, Tuple

from callscreen.services.call_session.models import CallSession, CallState, MachineSignal
from callscreen.services.call_session.store import SessionStore
from callscreen.services.call_session.transcript import DEFAULT_WINDOW_CHARS, TranscriptAccumulator
from callscreen.services.classifier.classifier import PatternClassifier
from callscreen.services.dispatcher.dispatcher import ActionDispatcher, ActionResult
from callscreen.services.resolver.constants import (
    ANSWERED_CALL_STATUSES,
    ENDED_CALL_STATUSES,
    STARTING_CALL_STATUSES,
)
from callscreen.services.resolver.models import (
    Action,
    DetectionResult,
    LifecycleOutcome,
)
from callscreen.services.resolver.rules import SCREENING_RULES, DetectionContext, Rule, first_match

logger = logging.getLogger(__name__)


class ScenarioResolver:
    """
    Turns call events into at most one screening action per call.

    The session store is the only place call state lives. A rule's state
    transition and action tag are claimed atomically before its action is
    dispatched, so duplicate or concurrent deliveries of the same event
    cannot dispatch twice.
    """

    def __init__(
        self,
        store: SessionStore,
        classifier: PatternClassifier,
        dispatcher: ActionDispatcher,
        screening_response: str,
        voicemail_message: str,
        window_chars: int = DEFAULT_WINDOW_CHARS,
        clock: Callable[[], float] = time.time,
        rules: Tuple[Rule, ...] = SCREENING_RULES,
    ):
        self.store = store
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.screening_response = screening_response
        self.voicemail_message = voicemail_message
        self.accumulator = TranscriptAccumulator(store, window_chars)
        self.clock = clock
        self.rules = rules

    async def handle_lifecycle(self, call_sid: str, status: Optional[str]) -> LifecycleOutcome:
        """
        Track the call lifecycle.

        A missing status is treated as a call in progress.
        """
        if status in ENDED_CALL_STATUSES:
            await self.store.delete(call_sid, self.clock())
            logger.info(f"[RESOLVER] Call ended - CallSid: {call_sid}, Status: {status}")
            return LifecycleOutcome.ENDED

        if status is not None and status not in STARTING_CALL_STATUSES:
            logger.debug(f"[RESOLVER] Ignoring call status - CallSid: {call_sid}, Status: {status}")
            return LifecycleOutcome.CONTINUE_MONITORING

        now = self.clock()
        session = await self.store.get_or_create(call_sid, now)
        if session is None:
            logger.info(f"[RESOLVER] Ignoring status for ended call - CallSid: {call_sid}, Status: {status}")
            return LifecycleOutcome.ENDED
        if status is None or status in ANSWERED_CALL_STATUSES:
            session = await self.store.mark_answered(call_sid, now) or session

        if session.state is not CallState.INITIAL:
            logger.info(
                f"[RESOLVER] Monitoring already running - CallSid: {call_sid}, "
                f"State: {session.state}"
            )
            return LifecycleOutcome.CONTINUE_MONITORING
        return LifecycleOutcome.START_MONITORING

    async def handle_machine_detection(
        self, call_sid: str, signal: MachineSignal
    ) -> Optional[CallSession]:
        """
        Record the answering machine detection result.

        Never dispatches: a machine answer alone cannot tell the screening
        assistant from a voicemail greeting.
        """
        if await self.store.get_or_create(call_sid, self.clock()) is None:
            logger.info(f"[RESOLVER] Ignoring machine detection for ended call - CallSid: {call_sid}")
            return None
        session = await self.store.set_machine_signal(call_sid, signal)
        logger.info(f"[RESOLVER] Machine detection - CallSid: {call_sid}, AnsweredBy: {signal}")
        return session

    async def handle_transcription_stopped(self, call_sid: str) -> None:
        """Forget heard text when a transcription stream stops."""
        await self.accumulator.clear(call_sid)
        logger.debug(f"[RESOLVER] Transcript window cleared - CallSid: {call_sid}")

    async def is_resolved(self, call_sid: str) -> bool:
        """Check whether the call has reached a terminal screening state."""
        session = await self.store.get(call_sid)
        return session is not None and session.is_terminal

    async def handle_transcript(
        self, call_sid: str, text: str, is_final: bool = True
    ) -> DetectionResult:
        """
        Evaluate a transcript chunk and act on the first matching rule.

        Args:
            call_sid: Call the transcript belongs to
            text: Transcribed speech
            is_final: Whether the transcription engine considers the chunk final

        Returns:
            DetectionResult describing the matched rule and dispatched action
        """
        now = self.clock()
        session = await self.store.get_or_create(call_sid, now)
        if session is None:
            return DetectionResult.keep_monitoring(call_sid, "call ended")
        if session.is_terminal:
            return DetectionResult.keep_monitoring(call_sid, f"already resolved ({session.state})")

        window = await self.accumulator.append(call_sid, text)
        session = await self.store.get(call_sid)
        if session is None:
            return DetectionResult.keep_monitoring(call_sid, "call ended")
        if session.is_terminal:
            return DetectionResult.keep_monitoring(call_sid, f"already resolved ({session.state})")

        elapsed = session.elapsed(now)
        logger.debug(
            f"[RESOLVER] Transcript - CallSid: {call_sid}, State: {session.state}, "
            f"Elapsed: {elapsed:.1f}s, Final: {is_final}, Text: '{text[:100]}'"
        )

        try:
            ctx = DetectionContext(
                session=session,
                text=text,
                window=window,
                elapsed=elapsed,
                classifier=self.classifier,
            )
            rule = first_match(self.rules, ctx)
            confidence = rule.confidence(ctx) if rule else None
        except Exception as e:
            logger.error(
                f"[RESOLVER] Classification failed, keeping monitoring - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return DetectionResult.keep_monitoring(call_sid, "classification error")

        if rule is None:
            return DetectionResult.keep_monitoring(call_sid)

        if rule.action is Action.HOLD:
            logger.info(
                f"[RESOLVER] Screening prompt heard, still monitoring - CallSid: {call_sid}, "
                f"Rule: {rule.name}"
            )
            return DetectionResult(
                call_sid=call_sid, rule=rule.name, action=rule.action, reason="monitoring"
            )

        claimed = await self.store.claim(call_sid, [rule.from_state], rule.to_state, rule.tag)
        if not claimed:
            logger.info(
                f"[RESOLVER] Already handled by another event - CallSid: {call_sid}, "
                f"Rule: {rule.name}"
            )
            return DetectionResult(call_sid=call_sid, rule=rule.name, reason="already handled")

        logger.info(
            f"[RESOLVER] Detected {rule.scenario} - CallSid: {call_sid}, Rule: {rule.name}, "
            f"Elapsed: {elapsed:.1f}s, Action: {rule.action}"
            + (f", Confidence: {confidence.value}" if confidence else "")
        )
        action_result = await self._dispatch(call_sid, rule.action)
        if action_result is ActionResult.ABORTED and rule.action is Action.IDENTIFY:
            logger.info(
                f"[RESOLVER] Identification skipped, call already changed - CallSid: {call_sid}"
            )

        return DetectionResult(
            call_sid=call_sid,
            detected=True,
            rule=rule.name,
            scenario=rule.scenario,
            action=rule.action,
            confidence=confidence,
            action_result=action_result,
        )

    async def _dispatch(self, call_sid: str, action: Action) -> ActionResult:
        if action is Action.IDENTIFY:
            return await self.dispatcher.identify(call_sid, self.screening_response)
        if action is Action.LEAVE_VOICEMAIL:
            return await self.dispatcher.leave_voicemail(call_sid, self.voicemail_message)
        return await self.dispatcher.passthrough(call_sid)
