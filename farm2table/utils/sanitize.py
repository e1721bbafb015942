# =============================================
# File: farm2table/utils/sanitize.py
# Purpose: Neutralize prompt-injection in user text and knowledge snippets
# =============================================
from __future__ import annotations

import re
from typing import Iterable

_INJECTION_CUES = [
    "ignore previous instruction",
    "ignore the previous instruction",
    "disregard previous instruction",
    "system prompt",
    "developer message",
    "you are chatgpt",
    "do not follow the above",
    "reset the system",
    "jailbreak",
]

_WHITESPACE_RE = re.compile(r"\s+")
_SENT_SPLIT_RE = re.compile(r'(?<=[.!?])\s+')


def collapse_ws(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def _strip_injection_sentences(text: str, cues: Iterable[str] = _INJECTION_CUES) -> str:
    parts = _SENT_SPLIT_RE.split(text)
    cues_l = [c.lower() for c in cues]
    kept = [p.strip() for p in parts if p.strip() and not any(c in p.lower() for c in cues_l)]
    return " ".join(kept)


def sanitize_snippet(text: str | None, max_chars: int = 400) -> str:
    """
    Collapse whitespace, drop sentences that look like prompt-injection,
    then truncate. Used for producer-authored knowledge content.
    """
    if not text:
        return ""
    t = collapse_ws(_strip_injection_sentences(text))
    if max_chars and len(t) > max_chars:
        t = t[:max_chars].rstrip() + "…"
    return t


def sanitize_question(text: str | None, max_chars: int = 500) -> str:
    """User questions keep every sentence; only whitespace and length are bounded."""
    t = collapse_ws(text)
    return t[:max_chars]
