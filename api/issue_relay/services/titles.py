from __future__ import annotations

from dataclasses import dataclass, field
import re

DEFAULT_TITLE = "Generated Issue"
MAX_DERIVED_TITLE_LENGTH = 50
MAX_SUGGESTED_TITLE_LENGTH = 70
MIN_MEANINGFUL_TITLE_LENGTH = 5
GENERIC_TITLES = (
    "generated issue",
    "new issue",
    "issue",
    "feature request",
    "bug report",
    "enhancement",
)

_TITLE_PREFIX_RE = re.compile(r"^(?:#+\s*)?title:?\s*", re.IGNORECASE)
_HEADING_RE = re.compile(r"^#+\s*")
_SENTENCE_END_RE = re.compile(r"[.!?\n]")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class TitleSuggestion:
    title: str
    is_generated: bool
    alternatives: list[str] = field(default_factory=list)


def is_generic_title(title: str) -> bool:
    normalized = title.strip().lower()
    return any(normalized == generic or normalized.startswith(generic) for generic in GENERIC_TITLES)


def is_meaningful_title(title: str | None) -> bool:
    if not title:
        return False
    stripped = title.strip()
    return len(stripped) > MIN_MEANINGFUL_TITLE_LENGTH and not is_generic_title(stripped)


def derive_title(content: str) -> str:
    """Build a short title from free text: the first sentence, cleaned and truncated."""
    sanitized = _TITLE_PREFIX_RE.sub("", content.strip())
    sanitized = _HEADING_RE.sub("", sanitized)

    first_sentence = _clean(_SENTENCE_END_RE.split(sanitized, maxsplit=1)[0])
    if first_sentence and len(first_sentence) <= MAX_DERIVED_TITLE_LENGTH:
        return first_sentence

    cleaned = first_sentence or _clean(sanitized)
    if len(cleaned) > MAX_DERIVED_TITLE_LENGTH:
        return truncate_title(cleaned, MAX_DERIVED_TITLE_LENGTH)
    return cleaned or DEFAULT_TITLE


def resolve_title(prompt: str, current_title: str | None = None) -> TitleSuggestion:
    if current_title is not None and is_meaningful_title(current_title):
        return TitleSuggestion(title=current_title.strip(), is_generated=False)
    return TitleSuggestion(title=derive_title(prompt), is_generated=False)


def truncate_title(title: str, max_length: int = MAX_SUGGESTED_TITLE_LENGTH) -> str:
    stripped = title.strip()
    if len(stripped) <= max_length:
        return stripped
    return stripped[: max_length - 3].rstrip() + "..."


def _clean(text: str) -> str:
    without_symbols = _NON_WORD_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", without_symbols).strip()
