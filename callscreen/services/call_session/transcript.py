"""Sliding transcript window."""
from callscreen.services.call_session.store import SessionStore

DEFAULT_WINDOW_CHARS = 300


def append_to_window(window: str, text: str, max_chars: int = DEFAULT_WINDOW_CHARS) -> str:
    """
    Append a transcript chunk to the window, keeping only the newest text.

    Patterns can span chunks ("Hi, if you" then "record your name"), so the
    window is matched as well as the chunk itself.
    """
    chunk = (text or "").strip()
    if not chunk:
        return window
    accumulated = f"{window} {chunk}" if window else chunk
    if len(accumulated) > max_chars:
        accumulated = accumulated[-max_chars:]
    return accumulated


class TranscriptAccumulator:
    """Keeps a bounded window of recently heard text per call."""

    def __init__(self, store: SessionStore, max_chars: int = DEFAULT_WINDOW_CHARS):
        self.store = store
        self.max_chars = max_chars

    async def append(self, call_sid: str, text: str) -> str:
        """Append text and return the updated window."""
        session = await self.store.update(
            call_sid,
            lambda s: s.model_copy(
                update={"transcript_window": append_to_window(s.transcript_window, text, self.max_chars)}
            ),
        )
        return session.transcript_window if session else ""

    async def clear(self, call_sid: str) -> None:
        """Forget heard text but keep state and fired actions."""
        await self.store.update(
            call_sid, lambda s: s.model_copy(update={"transcript_window": ""})
        )
