import re
import unicodedata
import logging
from typing import Dict, Iterable, List, Optional

from .settings import FORBIDDEN_NAMES

logger = logging.getLogger(__name__)

# An 8s clip fits roughly 22-27 spoken words of Spanish.
MIN_WORDS = 22
MAX_WORDS = 27

REQUIRED_PROMPT_FIELDS = ("dialogue", "emotion", "shot_type", "behavior")


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def find_forbidden_names(text: str, forbidden: Optional[Iterable[str]] = None) -> List[str]:
    folded = _fold(text)
    found = []
    for name in forbidden if forbidden is not None else FORBIDDEN_NAMES:
        if re.search(rf"\b{re.escape(_fold(name))}\b", folded):
            found.append(name)
    return found


def validate_dialogue(text: str, forbidden: Optional[Iterable[str]] = None) -> List[str]:
    """Return a list of problems with one segment's dialogue; empty means valid."""
    errors = []
    words = len(text.split())
    if words < MIN_WORDS or words > MAX_WORDS:
        errors.append(f"dialogue has {words} words, expected {MIN_WORDS}-{MAX_WORDS}")
    names = find_forbidden_names(text, forbidden)
    if names:
        errors.append(f"dialogue mentions forbidden names: {', '.join(names)}")
    return errors


def missing_prompt_fields(fields: Dict[str, object]) -> List[str]:
    missing = []
    for key in REQUIRED_PROMPT_FIELDS:
        value = fields.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(key)
    return missing
