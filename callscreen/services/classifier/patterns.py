"""Phrase lists used by the pattern classifier."""
import logging
import yaml
from pathlib import Path
from typing import List, Optional, Sequence
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS_FILE = Path(__file__).parent / "data" / "patterns.yaml"


class PatternSet(BaseModel):
    """A complete set of phrase lists for one language."""

    preamble: List[str]
    intermediate_prompts: List[str]
    intermediate_max_words: int = 10
    voicemail: List[str]
    human_like_greetings: List[str] = []
    human_markers: List[str] = []
    interrogatives: List[str] = []
    greeting_questions: List[str] = []

    model_config = {"frozen": True}


def _normalize(phrases: Sequence[str]) -> List[str]:
    seen = []
    for phrase in phrases:
        phrase = (phrase or "").strip().lower()
        if phrase and phrase not in seen:
            seen.append(phrase)
    return seen


def load_pattern_set(
    patterns_file: Optional[str] = None,
    preamble_override: Optional[Sequence[str]] = None,
    primary_phrase: Optional[str] = None,
) -> PatternSet:
    """
    Load a pattern set from YAML.

    Args:
        patterns_file: YAML file to load instead of the bundled English set
        preamble_override: Replaces the preamble phrase list when given
        primary_phrase: Full preamble wording, always matched in addition

    Returns:
        PatternSet with lower-cased, de-duplicated phrases
    """
    path = Path(patterns_file) if patterns_file else DEFAULT_PATTERNS_FILE
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if preamble_override:
        logger.info(f"[PATTERNS] Using {len(preamble_override)} configured preamble phrases")
        data["preamble"] = list(preamble_override)

    preamble = list(data.get("preamble", []))
    if primary_phrase:
        preamble.insert(0, primary_phrase)

    list_fields = (
        "intermediate_prompts",
        "voicemail",
        "human_like_greetings",
        "human_markers",
        "interrogatives",
        "greeting_questions",
    )
    normalized = {field: _normalize(data.get(field, [])) for field in list_fields}
    pattern_set = PatternSet(
        preamble=_normalize(preamble),
        intermediate_max_words=int(data.get("intermediate_max_words", 10)),
        **normalized,
    )
    logger.debug(
        f"[PATTERNS] Loaded pattern set from {path} - "
        f"preamble: {len(pattern_set.preamble)}, voicemail: {len(pattern_set.voicemail)}"
    )
    return pattern_set
