"""FastAPI dependencies."""
import logging
from functools import lru_cache
from fastapi import Depends, Request

from callscreen.core.config import settings
from callscreen.services.call_session.store import InMemorySessionStore, SessionStore
from callscreen.services.classifier.classifier import PatternClassifier
from callscreen.services.classifier.patterns import load_pattern_set
from callscreen.services.dispatcher.call_control import CallControl, TwilioCallControl
from callscreen.services.dispatcher.dispatcher import ActionDispatcher
from callscreen.services.dispatcher.twiml import TwimlBuilder
from callscreen.services.resolver.resolver import ScenarioResolver

logger = logging.getLogger(__name__)

SCREENING_WEBHOOK_PATH = "/webhooks/voice/screening"


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL environment variable if set (e.g., behind a tunnel or proxy),
    otherwise constructs from request.
    """
    if settings.base_url:
        return settings.base_url.rstrip('/')
    return str(request.base_url).rstrip('/')


def get_callback_url(request: Request) -> str:
    """Get the absolute URL Twilio should call back into."""
    return f"{get_base_url(request)}{SCREENING_WEBHOOK_PATH}"


@lru_cache()
def get_session_store() -> SessionStore:
    """Get the process-wide session store."""
    if settings.session_backend == "database":
        from callscreen.db.database import AsyncSessionLocal
        from callscreen.services.call_session.sql_store import SqlSessionStore

        logger.info("Using database session store")
        return SqlSessionStore(AsyncSessionLocal, ended_ttl_seconds=settings.ended_call_ttl_seconds)
    logger.info("Using in-memory session store")
    return InMemorySessionStore(ended_ttl_seconds=settings.ended_call_ttl_seconds)


@lru_cache()
def get_pattern_classifier() -> PatternClassifier:
    """Get pattern classifier instance."""
    patterns = load_pattern_set(
        patterns_file=settings.patterns_file,
        preamble_override=settings.preamble_phrases,
        primary_phrase=settings.primary_preamble_phrase,
    )
    return PatternClassifier(patterns)


@lru_cache()
def get_call_control() -> CallControl:
    """Get Twilio call control instance."""
    return TwilioCallControl(settings.twilio_account_sid, settings.twilio_auth_token)


@lru_cache()
def get_twiml_builder() -> TwimlBuilder:
    """Get TwiML builder instance."""
    return TwimlBuilder(voice=settings.twilio_voice, language=settings.twilio_language)


def get_dispatcher(
    request: Request,
    call_control: CallControl = Depends(get_call_control),
    twiml: TwimlBuilder = Depends(get_twiml_builder),
) -> ActionDispatcher:
    """Get action dispatcher for the current request."""
    return ActionDispatcher(
        call_control,
        twiml,
        callback_url=get_callback_url(request),
        settle_delay=settings.action_settle_delay_ms / 1000.0,
        recent_update_window=settings.recent_update_window_seconds,
        voicemail_pause_seconds=settings.voicemail_pause_seconds,
    )


def get_scenario_resolver(
    store: SessionStore = Depends(get_session_store),
    classifier: PatternClassifier = Depends(get_pattern_classifier),
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
) -> ScenarioResolver:
    """Get scenario resolver."""
    return ScenarioResolver(
        store,
        classifier,
        dispatcher,
        screening_response=settings.screening_response,
        voicemail_message=settings.voicemail_message,
        window_chars=settings.transcript_window_chars,
    )
