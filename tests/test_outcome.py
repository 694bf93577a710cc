from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autopilot.outcome import Outcome, classify_outcome, should_escalate  # noqa: E402

A, B, C = Outcome.SUCCESS, Outcome.UNCERTAIN, Outcome.FAILURE


@pytest.mark.parametrize(
    "judgment, expected",
    [
        ("A", A),
        ("B: the page changed", B),
        ("  C. nothing happened", C),
        ("Successful, the app opened", A),
        ("Failed to open the menu", C),
        ("", C),
        ("no idea", C),
    ],
)
def test_classify_outcome(judgment: str, expected: Outcome) -> None:
    assert classify_outcome(judgment) is expected


def test_escalation_needs_full_window() -> None:
    assert should_escalate([], 2) is False
    assert should_escalate([C], 2) is False
    assert should_escalate([C, C], 2) is True
    assert should_escalate([B, C], 2) is True


def test_escalation_resets_after_success() -> None:
    assert should_escalate([C, C, A], 2) is False
    assert should_escalate([C, A, C], 2) is False
    assert should_escalate([A, C, B, C], 3) is True
    assert should_escalate([A, C, B, C], 4) is False


def test_escalation_disabled_for_non_positive_threshold() -> None:
    assert should_escalate([C, C, C], 0) is False


def test_only_symbol_a_counts_as_success() -> None:
    assert Outcome.SUCCESS.is_success
    assert not any(outcome.is_success for outcome in (Outcome.UNCERTAIN, Outcome.FAILURE, Outcome.PENDING))
