"""Pattern classifier for screening, voicemail and human speech."""
import logging
from typing import Iterable, Optional

from callscreen.services.classifier.patterns import PatternSet

logger = logging.getLogger(__name__)


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(phrase in text for phrase in phrases)


class PatternClassifier:
    """
    Stateless predicates over a transcript snippet.

    Matching is deliberately liberal: a false "something is present" is
    cheaper than a missed detection. Every predicate is a pure function of
    its text argument.
    """

    def __init__(self, patterns: PatternSet):
        self.patterns = patterns

    def is_preamble(self, text: Optional[str]) -> bool:
        """Check for the screening assistant's opening announcement."""
        if not text:
            return False
        return _contains_any(text.lower(), self.patterns.preamble)

    def is_intermediate_prompt(self, text: Optional[str]) -> bool:
        """
        Check for a short follow-up from the screening assistant.

        Only short snippets qualify: a longer sentence that happens to
        contain "thanks" is a person talking.
        """
        if not text:
            return False
        lower_text = text.lower()
        if len(lower_text.split()) > self.patterns.intermediate_max_words:
            return False
        return _contains_any(lower_text, self.patterns.intermediate_prompts)

    def is_voicemail_greeting(self, text: Optional[str]) -> bool:
        """Check for personal, standard or carrier voicemail greetings."""
        if not text:
            return False
        return _contains_any(text.lower(), self.patterns.voicemail)

    def is_human_speech(self, text: Optional[str]) -> bool:
        """
        Check for a live person talking.

        Known machine speech is excluded first (preamble, voicemail,
        intermediate prompts, recorded greetings that sound personal), then
        the text must carry an interactive marker or an interactive question.
        """
        if not text:
            return False

        if self.is_preamble(text) or self.is_voicemail_greeting(text):
            return False
        if self.is_intermediate_prompt(text):
            return False

        lower_text = text.lower()
        if _contains_any(lower_text, self.patterns.human_like_greetings):
            logger.debug(f"[CLASSIFIER] Recorded greeting, not human: '{text}'")
            return False

        if _contains_any(lower_text, self.patterns.human_markers):
            return True
        if _contains_any(lower_text, self.patterns.greeting_questions):
            return True
        return "?" in lower_text and _contains_any(lower_text, self.patterns.interrogatives)
