"""Application configuration."""
from typing import List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_voice: str = "alice"
    twilio_language: str = "en-US"

    # Public URL Twilio calls back into (falls back to the request URL)
    base_url: Optional[str] = None

    # Messages
    screening_response: str = (
        "This is Twilio calling to test iOS 26 call screening detection, "
        "I will leave a voicemail if you don't answer"
    )
    voicemail_message: str = "This is Twilio leaving a voicemail"

    # Pattern sets
    primary_preamble_phrase: str = (
        "Hi, if you record your name and reason for calling, "
        "I'll see if this person is available"
    )
    preamble_phrases: Optional[List[str]] = None  # JSON list, replaces bundled preamble phrases
    patterns_file: Optional[str] = None  # YAML file replacing the bundled pattern set

    # Session storage
    session_backend: Literal["memory", "database"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./call_sessions.db"
    transcript_window_chars: int = 300
    ended_call_ttl_seconds: float = 3600.0  # late callbacks for an ended call are ignored this long

    # Action dispatch
    action_settle_delay_ms: int = 100
    recent_update_window_seconds: float = 2.0
    voicemail_pause_seconds: int = 10

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
