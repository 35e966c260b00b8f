"""Unit tests for the scenario resolver."""
import asyncio
import pytest

from callscreen.services.call_session.models import CallState, MachineSignal
from callscreen.services.dispatcher.call_control import CallConflictError, CallControlError
from callscreen.services.dispatcher.dispatcher import ActionResult
from callscreen.services.resolver.models import Action, LifecycleOutcome, Scenario

CALL_SID = "CA1234567890"
PREAMBLE = "Hi, if you record your name and reason for calling, I'll see if this person is available"


async def _answered_call(resolver, clock):
    """Start a call and answer it at elapsed zero."""
    clock.set_elapsed(0)
    await resolver.handle_lifecycle(CALL_SID, "initiated")
    await resolver.handle_lifecycle(CALL_SID, "in-progress")


class TestScenarioWalkthroughs:
    """Test the four call outcomes end to end."""

    @pytest.mark.asyncio
    async def test_screening_then_voicemail(self, resolver, store, clock, call_control):
        """Scenario 1: preamble at 3s, voicemail greeting at 20s."""
        await _answered_call(resolver, clock)

        clock.set_elapsed(3)
        first = await resolver.handle_transcript(CALL_SID, PREAMBLE)

        assert first.detected
        assert first.scenario is Scenario.SCREENING_PREAMBLE
        assert first.action is Action.IDENTIFY
        assert first.action_result is ActionResult.SUCCESS
        assert (await store.get(CALL_SID)).state is CallState.IOS26_MONITORING

        clock.set_elapsed(20)
        second = await resolver.handle_transcript(CALL_SID, "Please leave a message after the tone")

        assert second.detected
        assert second.scenario is Scenario.SCREENING_THEN_VOICEMAIL
        assert second.action is Action.LEAVE_VOICEMAIL
        session = await store.get(CALL_SID)
        assert session.state is CallState.VOICEMAIL_DELIVERED
        assert session.fired_actions == {"identify", "voicemail_after_preamble"}
        assert len(call_control.updates) == 2
        assert "This is Twilio leaving a voicemail" in call_control.updates[1][1]

    @pytest.mark.asyncio
    async def test_screening_then_human(self, resolver, store, clock, call_control):
        """Scenario 2: preamble at 3s, a person picks up at 18s."""
        await _answered_call(resolver, clock)

        clock.set_elapsed(3)
        await resolver.handle_transcript(CALL_SID, PREAMBLE)
        clock.set_elapsed(18)
        result = await resolver.handle_transcript(CALL_SID, "hello, who is this")

        assert result.detected
        assert result.scenario is Scenario.SCREENING_THEN_HUMAN
        assert result.action is Action.PASSTHROUGH
        session = await store.get(CALL_SID)
        assert session.state is CallState.PASSTHROUGH
        assert session.fired_actions == {"identify", "human_after_preamble"}
        # Identification is not replayed
        assert sum("Say" in twiml for _, twiml in call_control.updates) == 1

    @pytest.mark.asyncio
    async def test_direct_human(self, resolver, store, clock):
        """Scenario 3: 'hello?' at 8s."""
        await _answered_call(resolver, clock)

        clock.set_elapsed(8)
        result = await resolver.handle_transcript(CALL_SID, "hello?")

        assert result.detected
        assert result.scenario is Scenario.DIRECT_HUMAN
        assert result.rule == "early_human"
        session = await store.get(CALL_SID)
        assert session.state is CallState.PASSTHROUGH
        assert session.fired_actions == {"human_passthrough"}

    @pytest.mark.asyncio
    async def test_direct_voicemail(self, resolver, store, clock, call_control):
        """Scenario 4: a personal voicemail greeting at 9s."""
        await _answered_call(resolver, clock)

        clock.set_elapsed(9)
        result = await resolver.handle_transcript(
            CALL_SID, "sorry, I can't come to the phone right now, please leave a message"
        )

        assert result.detected
        assert result.scenario is Scenario.DIRECT_VOICEMAIL
        session = await store.get(CALL_SID)
        assert session.state is CallState.VOICEMAIL_DELIVERED
        assert session.fired_actions == {"voicemail_direct"}
        assert len(call_control.updates) == 1


class TestTranscriptHandling:
    """Test transcript events outside the walkthroughs."""

    @pytest.mark.asyncio
    async def test_no_detection_keeps_monitoring(self, resolver, store, clock, call_control):
        await _answered_call(resolver, clock)

        clock.set_elapsed(3)
        result = await resolver.handle_transcript(CALL_SID, "good morning")

        assert not result.detected
        assert result.reason == "no detection yet"
        assert (await store.get(CALL_SID)).state is CallState.INITIAL
        assert call_control.updates == []

    @pytest.mark.asyncio
    async def test_late_initialization(self, resolver, store, clock):
        """Test a transcript before any lifecycle event creates the session."""
        result = await resolver.handle_transcript(CALL_SID, "record your name")

        assert result.detected
        session = await store.get(CALL_SID)
        assert session.state is CallState.IOS26_MONITORING
        assert session.transcript_window == "record your name"

    @pytest.mark.asyncio
    async def test_preamble_split_across_chunks(self, resolver, store, clock):
        await _answered_call(resolver, clock)

        clock.set_elapsed(2)
        first = await resolver.handle_transcript(CALL_SID, "Hi, if you")
        clock.set_elapsed(3)
        second = await resolver.handle_transcript(CALL_SID, "record your name and reason")

        assert not first.detected
        assert second.detected
        assert second.rule == "preamble"

    @pytest.mark.asyncio
    async def test_monitoring_prompt_holds(self, resolver, store, clock, call_control):
        await _answered_call(resolver, clock)
        clock.set_elapsed(3)
        await resolver.handle_transcript(CALL_SID, PREAMBLE)

        clock.set_elapsed(6)
        result = await resolver.handle_transcript(CALL_SID, "Thanks, stay on the line")

        assert not result.detected
        assert result.action is Action.HOLD
        assert (await store.get(CALL_SID)).state is CallState.IOS26_MONITORING
        assert len(call_control.updates) == 1

    @pytest.mark.asyncio
    async def test_inferred_preamble(self, resolver, store, clock):
        """Test a follow-up prompt heard early implies a missed preamble."""
        await _answered_call(resolver, clock)

        clock.set_elapsed(6)
        result = await resolver.handle_transcript(CALL_SID, "Thanks, stay on the line")

        assert result.detected
        assert result.rule == "inferred_preamble"
        assert result.confidence.value == "MEDIUM"
        assert (await store.get(CALL_SID)).state is CallState.IOS26_MONITORING

    @pytest.mark.asyncio
    async def test_resolved_call_ignored(self, resolver, store, clock, call_control):
        """Test nothing happens once a terminal state is reached."""
        await _answered_call(resolver, clock)
        clock.set_elapsed(8)
        await resolver.handle_transcript(CALL_SID, "hello?")

        clock.set_elapsed(10)
        result = await resolver.handle_transcript(CALL_SID, "please leave a message")

        assert not result.detected
        assert (await store.get(CALL_SID)).state is CallState.PASSTHROUGH
        assert len(call_control.updates) == 1

    @pytest.mark.asyncio
    async def test_resolved_call_window_untouched(self, resolver, store, clock):
        """Test late chunks for a resolved call are not written to the store."""
        await _answered_call(resolver, clock)
        clock.set_elapsed(9)
        await resolver.handle_transcript(CALL_SID, "please leave a message after the tone")
        before = await store.get(CALL_SID)

        clock.set_elapsed(12)
        result = await resolver.handle_transcript(CALL_SID, "beep")

        assert result.reason.startswith("already resolved")
        after = await store.get(CALL_SID)
        assert after.version == before.version
        assert after.transcript_window == before.transcript_window

    @pytest.mark.asyncio
    async def test_classification_error_fails_open(self, resolver, store, clock, monkeypatch):
        """Test a broken predicate keeps monitoring instead of failing the call."""
        await _answered_call(resolver, clock)

        def boom(text):
            raise RuntimeError("broken pattern")

        monkeypatch.setattr(resolver.classifier, "is_human_speech", boom)
        clock.set_elapsed(8)
        result = await resolver.handle_transcript(CALL_SID, "hello?")

        assert not result.detected
        assert result.reason == "classification error"
        assert (await store.get(CALL_SID)).state is CallState.INITIAL


class TestAtMostOnce:
    """Test each action runs at most once per call."""

    @pytest.mark.asyncio
    async def test_duplicate_deliveries(self, resolver, store, clock, call_control):
        await _answered_call(resolver, clock)
        clock.set_elapsed(9)

        results = [
            await resolver.handle_transcript(CALL_SID, "please leave a message after the tone")
            for _ in range(5)
        ]

        assert [r.detected for r in results] == [True, False, False, False, False]
        assert len(call_control.updates) == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries(self, resolver, store, clock, call_control):
        """Test racing duplicates of the same event dispatch once."""
        await _answered_call(resolver, clock)
        clock.set_elapsed(3)

        results = await asyncio.gather(
            *[resolver.handle_transcript(CALL_SID, PREAMBLE) for _ in range(10)]
        )

        assert sum(r.detected for r in results) == 1
        assert len(call_control.updates) == 1
        session = await store.get(CALL_SID)
        assert session.state is CallState.IOS26_MONITORING
        assert session.fired_actions == {"identify"}

    @pytest.mark.asyncio
    async def test_concurrent_conflicting_events(self, resolver, store, clock, call_control):
        """Test a human and a voicemail event racing resolve to one outcome."""
        await _answered_call(resolver, clock)
        clock.set_elapsed(9)

        results = await asyncio.gather(
            resolver.handle_transcript(CALL_SID, "hello, who is this"),
            resolver.handle_transcript(CALL_SID, "please leave a message"),
        )

        assert sum(r.detected for r in results) == 1
        assert len(call_control.updates) == 1
        assert (await store.get(CALL_SID)).state.is_terminal

    @pytest.mark.asyncio
    async def test_state_only_moves_forward(self, resolver, store, clock):
        await _answered_call(resolver, clock)
        clock.set_elapsed(3)
        await resolver.handle_transcript(CALL_SID, PREAMBLE)
        clock.set_elapsed(18)
        await resolver.handle_transcript(CALL_SID, "hello, who is this")

        # A late preamble chunk must not reopen monitoring
        clock.set_elapsed(19)
        result = await resolver.handle_transcript(CALL_SID, PREAMBLE)

        assert not result.detected
        assert (await store.get(CALL_SID)).state is CallState.PASSTHROUGH


class TestDispatchOutcomes:
    """Test how action results surface."""

    @pytest.mark.asyncio
    async def test_identify_conflict_is_benign(self, resolver, store, clock, call_control):
        await _answered_call(resolver, clock)
        call_control.update_error = CallConflictError("Call is already being redirected")

        clock.set_elapsed(3)
        result = await resolver.handle_transcript(CALL_SID, PREAMBLE)

        assert result.detected
        assert result.action_result is ActionResult.ABORTED
        assert (await store.get(CALL_SID)).state is CallState.IOS26_MONITORING

    @pytest.mark.asyncio
    async def test_failure_not_rolled_back(self, resolver, store, clock, call_control):
        """Test a failed action keeps its transition and is not retried."""
        await _answered_call(resolver, clock)
        call_control.update_error = CallControlError("Authenticate")

        clock.set_elapsed(9)
        first = await resolver.handle_transcript(CALL_SID, "please leave a message")
        second = await resolver.handle_transcript(CALL_SID, "please leave a message")

        assert first.action_result is ActionResult.FAILED
        assert not second.detected
        assert (await store.get(CALL_SID)).state is CallState.VOICEMAIL_DELIVERED


class TestLifecycle:
    """Test lifecycle and machine detection events."""

    @pytest.mark.asyncio
    async def test_start_monitoring_until_detection(self, resolver, clock):
        clock.set_elapsed(0)
        assert await resolver.handle_lifecycle(CALL_SID, "initiated") is LifecycleOutcome.START_MONITORING
        assert await resolver.handle_lifecycle(CALL_SID, "ringing") is LifecycleOutcome.START_MONITORING

        clock.set_elapsed(3)
        await resolver.handle_transcript(CALL_SID, PREAMBLE)

        assert await resolver.handle_lifecycle(CALL_SID, None) is LifecycleOutcome.CONTINUE_MONITORING

    @pytest.mark.asyncio
    async def test_answer_restarts_clock(self, resolver, store, clock):
        """Test elapsed time counts from the answer, not the dial."""
        clock.set_elapsed(0)
        await resolver.handle_lifecycle(CALL_SID, "initiated")
        clock.set_elapsed(15)
        await resolver.handle_lifecycle(CALL_SID, "answered")

        clock.set_elapsed(18)
        result = await resolver.handle_transcript(CALL_SID, "hello?")

        # 3s after answering is too early for the direct human rule
        assert not result.detected
        assert (await store.get(CALL_SID)).started_at == clock.now - 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["completed", "failed", "canceled", "no-answer", "busy"])
    async def test_terminal_status_deletes_session(self, resolver, store, clock, status):
        await _answered_call(resolver, clock)

        outcome = await resolver.handle_lifecycle(CALL_SID, status)

        assert outcome is LifecycleOutcome.ENDED
        assert await store.get(CALL_SID) is None

    @pytest.mark.asyncio
    async def test_transcript_after_call_ended(self, resolver, store, clock, call_control):
        """Test a transcription callback after completion does not revive the call."""
        await _answered_call(resolver, clock)
        clock.set_elapsed(9)
        await resolver.handle_transcript(CALL_SID, "please leave a message after the tone")
        clock.set_elapsed(25)
        await resolver.handle_lifecycle(CALL_SID, "completed")

        clock.set_elapsed(26)
        result = await resolver.handle_transcript(CALL_SID, "record your name and reason for calling")

        assert not result.detected
        assert result.reason == "call ended"
        assert await store.list_sessions() == []
        assert len(call_control.updates) == 1

    @pytest.mark.asyncio
    async def test_machine_detection_after_call_ended(self, resolver, store, clock):
        await _answered_call(resolver, clock)
        clock.set_elapsed(25)
        await resolver.handle_lifecycle(CALL_SID, "completed")

        session = await resolver.handle_machine_detection(CALL_SID, MachineSignal.MACHINE_START)

        assert session is None
        assert await store.get(CALL_SID) is None

    @pytest.mark.asyncio
    async def test_status_after_call_ended(self, resolver, store, clock):
        await _answered_call(resolver, clock)
        await resolver.handle_lifecycle(CALL_SID, "completed")

        outcome = await resolver.handle_lifecycle(CALL_SID, None)

        assert outcome is LifecycleOutcome.ENDED
        assert await store.get(CALL_SID) is None

    @pytest.mark.asyncio
    async def test_machine_detection_never_dispatches(self, resolver, store, clock, call_control):
        await _answered_call(resolver, clock)

        session = await resolver.handle_machine_detection(CALL_SID, MachineSignal.MACHINE_START)

        assert session.machine_signal is MachineSignal.MACHINE_START
        assert session.state is CallState.INITIAL
        assert call_control.updates == []

    @pytest.mark.asyncio
    async def test_machine_detection_before_lifecycle(self, resolver, store):
        session = await resolver.handle_machine_detection(CALL_SID, MachineSignal.HUMAN)

        assert session.machine_signal is MachineSignal.HUMAN

    @pytest.mark.asyncio
    async def test_machine_signal_used_by_rules(self, resolver, store, clock):
        """Test a machine answer resolves direct voicemail on the next transcript."""
        await _answered_call(resolver, clock)
        await resolver.handle_machine_detection(CALL_SID, MachineSignal.MACHINE_END_BEEP)

        clock.set_elapsed(7)
        result = await resolver.handle_transcript(CALL_SID, "good morning")

        assert result.scenario is Scenario.DIRECT_VOICEMAIL

    @pytest.mark.asyncio
    async def test_transcription_stopped_clears_window(self, resolver, store, clock):
        await _answered_call(resolver, clock)
        clock.set_elapsed(3)
        await resolver.handle_transcript(CALL_SID, PREAMBLE)

        await resolver.handle_transcription_stopped(CALL_SID)

        session = await store.get(CALL_SID)
        assert session.transcript_window == ""
        assert session.state is CallState.IOS26_MONITORING
        assert session.fired_actions == {"identify"}

    @pytest.mark.asyncio
    async def test_is_resolved(self, resolver, clock):
        await _answered_call(resolver, clock)
        assert not await resolver.is_resolved(CALL_SID)

        clock.set_elapsed(8)
        await resolver.handle_transcript(CALL_SID, "hello?")

        assert await resolver.is_resolved(CALL_SID)
        assert not await resolver.is_resolved("CA-unknown")
