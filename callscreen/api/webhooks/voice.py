"""Twilio voice webhook endpoints."""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from callscreen.core.dependencies import get_callback_url, get_scenario_resolver, get_twiml_builder
from callscreen.services.dispatcher.twiml import TwimlBuilder
from callscreen.services.events.models import (
    LifecycleEvent,
    MachineDetectionEvent,
    TranscriptEvent,
    TranscriptionSessionEvent,
    TranscriptionStatus,
)
from callscreen.services.events.parser import MalformedEventError, parse_webhook
from callscreen.services.resolver.constants import ENDED_CALL_STATUSES
from callscreen.services.resolver.models import LifecycleOutcome
from callscreen.services.resolver.resolver import ScenarioResolver

router = APIRouter()
logger = logging.getLogger(__name__)


def _twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


@router.post("/voice/screening")
async def handle_screening_callback(
    request: Request,
    resolver: ScenarioResolver = Depends(get_scenario_resolver),
    twiml: TwimlBuilder = Depends(get_twiml_builder),
):
    """
    Handle every Twilio callback for a screened call.

    Status callbacks, answering machine detection callbacks and real-time
    transcription callbacks all arrive here. Twilio always gets TwiML back,
    even when processing fails.
    """
    call_sid = None
    try:
        form = dict(await request.form())
        call_sid = form.get("CallSid")
        logger.info(
            f"[SCREENING WEBHOOK] Callback received - CallSid: {call_sid}, "
            f"CallStatus: {form.get('CallStatus')}, AnsweredBy: {form.get('AnsweredBy')}, "
            f"TranscriptionEvent: {form.get('TranscriptionEvent')}"
        )

        try:
            event = parse_webhook(form)
        except MalformedEventError as e:
            logger.warning(f"[SCREENING WEBHOOK] Dropping malformed callback - CallSid: {call_sid}, Error: {str(e)}")
            return _twiml_response(twiml.empty())

        if event is None:
            return _twiml_response(twiml.empty())

        if isinstance(event, TranscriptEvent):
            result = await resolver.handle_transcript(event.call_sid, event.text, event.is_final)
            if result.detected:
                logger.info(
                    f"[SCREENING WEBHOOK] Scenario resolved - CallSid: {call_sid}, "
                    f"Scenario: {result.scenario}, Result: {result.action_result}"
                )
            return _twiml_response(twiml.empty())

        if isinstance(event, TranscriptionSessionEvent):
            if event.status is TranscriptionStatus.STOPPED:
                await resolver.handle_transcription_stopped(event.call_sid)
            elif event.status is TranscriptionStatus.ERROR:
                logger.warning(
                    f"[SCREENING WEBHOOK] Transcription error - CallSid: {call_sid}, "
                    f"Name: {event.transcription_name}"
                )
            return _twiml_response(twiml.empty())

        # Ended calls are always cleaned up, even once screening is resolved
        if isinstance(event, LifecycleEvent) and event.status in ENDED_CALL_STATUSES:
            await resolver.handle_lifecycle(event.call_sid, event.status)
            return _twiml_response(twiml.empty())

        if await resolver.is_resolved(event.call_sid):
            logger.debug(f"[SCREENING WEBHOOK] Call already resolved, ignoring - CallSid: {call_sid}")
            return _twiml_response(twiml.empty())

        if isinstance(event, MachineDetectionEvent):
            await resolver.handle_machine_detection(event.call_sid, event.signal)
            return _twiml_response(twiml.empty())

        outcome = await resolver.handle_lifecycle(event.call_sid, event.status)
        if outcome is LifecycleOutcome.ENDED:
            return _twiml_response(twiml.empty())
        callback_url = get_callback_url(request)
        if outcome is LifecycleOutcome.START_MONITORING:
            logger.info(f"[SCREENING WEBHOOK] Starting transcription - CallSid: {call_sid}")
            return _twiml_response(twiml.start_monitoring(callback_url))
        return _twiml_response(twiml.continue_monitoring(callback_url))

    except Exception as e:
        logger.error(
            f"[SCREENING WEBHOOK] Error processing callback - CallSid: {call_sid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        return _twiml_response(twiml.apology())
