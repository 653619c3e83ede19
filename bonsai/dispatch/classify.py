from __future__ import annotations

import re

DEFAULT_CONVERSATIONAL_MAX_CHARS = 200

_QUESTION_START_RE = re.compile(
    r"^(what|how|why|when|where|who|can|could|would|should|do|does|did|is|are|was|were)\b",
    re.IGNORECASE,
)
_ACKNOWLEDGMENT_START_RE = re.compile(
    r"^(thanks|thank you|got it|ok|okay|sure|yes|no|lgtm|approved)\b",
    re.IGNORECASE,
)


def is_conversational(text: str, *, max_chars: int = DEFAULT_CONVERSATIONAL_MAX_CHARS) -> bool:
    """Return ``True`` for short questions and acknowledgments.

    Anything longer than ``max_chars`` is treated as a work directive.
    """

    trimmed = text.strip()
    if not trimmed or len(trimmed) >= max_chars:
        return False
    if trimmed.endswith("?"):
        return True
    return bool(_QUESTION_START_RE.match(trimmed) or _ACKNOWLEDGMENT_START_RE.match(trimmed))
