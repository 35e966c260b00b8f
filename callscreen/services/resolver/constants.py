"""Timing thresholds, action tags and call statuses used by the resolver."""
from callscreen.services.dispatcher.dispatcher import TERMINAL_CALL_STATUSES

# Elapsed-time windows, in seconds since the call was answered
EARLY_HUMAN_MIN_SECONDS = 5
EARLY_HUMAN_MAX_SECONDS = 35
HUMAN_FALLBACK_MIN_SECONDS = 20
HUMAN_FALLBACK_MAX_SECONDS = 25
DIRECT_VOICEMAIL_MAX_SECONDS = 30
INFERRED_PREAMBLE_MAX_SECONDS = 12

# Action tags recorded in CallSession.fired_actions
TAG_HUMAN_PASSTHROUGH = "human_passthrough"
TAG_HUMAN_PASSTHROUGH_FALLBACK = "human_passthrough_fallback"
TAG_VOICEMAIL_DIRECT = "voicemail_direct"
TAG_IDENTIFY = "identify"
TAG_VOICEMAIL_AFTER_PREAMBLE = "voicemail_after_preamble"
TAG_HUMAN_AFTER_PREAMBLE = "human_after_preamble"

# Lifecycle statuses
STARTING_CALL_STATUSES = frozenset({"initiated", "ringing", "in-progress", "answered"})
ANSWERED_CALL_STATUSES = frozenset({"in-progress", "answered"})
ENDED_CALL_STATUSES = TERMINAL_CALL_STATUSES
