"""TwiML generation for call control."""
from typing import Optional

# Names of the transcription streams started on a call
INITIAL_TRANSCRIPTION = "ios26-full-detection"
MONITORING_TRANSCRIPTION = "post-ios26-monitoring"

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


class TwimlBuilder:
    """Builds the TwiML documents used during screening."""

    def __init__(self, voice: str = "alice", language: str = "en-US"):
        self.voice = escape_xml(voice)
        self.language = escape_xml(language)

    def _say(self, text: str) -> str:
        return f'<Say voice="{self.voice}" language="{self.language}">{escape_xml(text)}</Say>'

    def empty(self) -> str:
        """Acknowledge a callback without changing the call."""
        return f"{XML_HEADER}\n<Response/>"

    def start_monitoring(self, callback_url: str) -> str:
        """
        Start real-time transcription of the called party.

        Args:
            callback_url: Webhook receiving transcription events

        Returns:
            TwiML XML string
        """
        url = escape_xml(callback_url)
        return f"""{XML_HEADER}
<Response>
    <Start>
        <Transcription statusCallbackUrl="{url}" track="inbound_track" transcriptionEngine="google" speechModel="telephony" partialResults="false" name="{INITIAL_TRANSCRIPTION}"/>
    </Start>
    <Pause length="60"/>
    <Redirect>{url}</Redirect>
</Response>"""

    def continue_monitoring(self, callback_url: str) -> str:
        """Keep the call alive while transcription runs."""
        url = escape_xml(callback_url)
        return f"""{XML_HEADER}
<Response>
    <Pause length="60"/>
    <Redirect>{url}</Redirect>
</Response>"""

    def identify(self, message: str, callback_url: str) -> str:
        """
        Speak the identification, then watch for a human or a voicemail.

        No Redirect: it would re-enter the webhook after a human answers and
        replay the identification.
        """
        url = escape_xml(callback_url)
        return f"""{XML_HEADER}
<Response>
    {self._say(message)}
    <Start>
        <Transcription statusCallbackUrl="{url}" track="inbound_track" transcriptionEngine="google" speechModel="telephony" partialResults="true" name="{MONITORING_TRANSCRIPTION}"/>
    </Start>
    <Pause length="300"/>
</Response>"""

    def _stop_transcriptions(self) -> str:
        return f"""<Stop>
        <Transcription name="{INITIAL_TRANSCRIPTION}"/>
        <Transcription name="{MONITORING_TRANSCRIPTION}"/>
    </Stop>"""

    def leave_voicemail(self, message: str, pause_seconds: int = 10) -> str:
        """
        Stop transcription, wait out the greeting and beep, leave the message, hang up.

        Transcription is stopped first so our own message is not transcribed.
        """
        return f"""{XML_HEADER}
<Response>
    {self._stop_transcriptions()}
    <Pause length="{int(pause_seconds)}"/>
    {self._say(message)}
    <Pause length="2"/>
    <Hangup/>
</Response>"""

    def passthrough(self) -> str:
        """Stop transcription and leave the line open for the two parties."""
        return f"""{XML_HEADER}
<Response>
    {self._stop_transcriptions()}
    <Pause length="300"/>
</Response>"""

    def apology(self, message: Optional[str] = None) -> str:
        """End the call after an unrecoverable error."""
        return f"""{XML_HEADER}
<Response>
    {self._say(message or "An error occurred. Goodbye.")}
    <Hangup/>
</Response>"""
