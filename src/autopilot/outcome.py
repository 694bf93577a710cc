"""Outcome symbols assigned by reflection and the escalation window over them."""

from __future__ import annotations

import re
from enum import Enum
from typing import Sequence


class Outcome(str, Enum):
    SUCCESS = "A"
    UNCERTAIN = "B"
    FAILURE = "C"
    PENDING = "?"

    @property
    def is_success(self) -> bool:
        return self is Outcome.SUCCESS


_LEADING_SYMBOL = re.compile(r"^\W*([ABC])\b")

_WORD_HINTS = (
    ("fail", Outcome.FAILURE),
    ("partial", Outcome.UNCERTAIN),
    ("uncertain", Outcome.UNCERTAIN),
    ("success", Outcome.SUCCESS),
)


def classify_outcome(judgment: str) -> Outcome:
    """Map a free-text reflection judgment onto an outcome symbol.

    The reflector is asked to answer with a leading ``A``, ``B`` or ``C``. Models
    that spell the verdict out instead are matched on keywords; anything
    unrecognised counts as a failure.
    """
    text = (judgment or "").strip()
    if not text:
        return Outcome.FAILURE
    match = _LEADING_SYMBOL.match(text.upper())
    if match:
        return Outcome(match.group(1))
    lowered = text.lower()
    for hint, outcome in _WORD_HINTS:
        if hint in lowered:
            return outcome
    for symbol in ("A", "B", "C"):
        if symbol in text:
            return Outcome(symbol)
    return Outcome.FAILURE


def should_escalate(outcomes: Sequence[Outcome], threshold: int) -> bool:
    """True when the last ``threshold`` outcomes are all non-success."""
    if threshold <= 0 or len(outcomes) < threshold:
        return False
    return all(outcome in (Outcome.UNCERTAIN, Outcome.FAILURE) for outcome in outcomes[-threshold:])


__all__ = ["Outcome", "classify_outcome", "should_escalate"]
