"""Pure scoring helpers shared by the answer ledger and the reveal engine.

Every award follows the same time-decay rule::

    elapsed_fraction = clamp((answered_at - started_at) / duration, 0, 1)
    award = round(points * score_fraction * (1 - elapsed_fraction))

When the start of the question is unknown the answer is treated as having used
the whole duration, which yields no award.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Iterable

from quiz_live.constants.session_constants import DEFAULT_DURATION_SECONDS
from quiz_live.core.wire import answer_key


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def elapsed_fraction(
    answered_at: datetime,
    started_at: datetime | None,
    duration_seconds: int | float | None,
) -> float:
    total = float(duration_seconds or DEFAULT_DURATION_SECONDS)
    if started_at is None:
        started_at = answered_at - timedelta(seconds=total)
    elapsed = (answered_at - started_at).total_seconds() / total
    return min(1.0, max(0.0, elapsed))


def decayed_award(
    points: int | float,
    score_fraction: float,
    answered_at: datetime,
    started_at: datetime | None,
    duration_seconds: int | float | None,
    time_decay: bool = True,
) -> int:
    if score_fraction <= 0 or points <= 0:
        return 0
    factor = 1.0
    if time_decay:
        factor = 1.0 - elapsed_fraction(answered_at, started_at, duration_seconds)
    return max(0, round_half_up(points * score_fraction * factor))


def normalize_evaluator_score(score: Any) -> float:
    """Map an evaluator score onto [0, 1]; values above 1 are read as percentages."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    if value > 1:
        value = value / 100.0
    return min(1.0, max(0.0, value))


def mcq_matches(answer: Any, correct_answer: Any) -> bool:
    if correct_answer is None:
        return False
    return answer_key(answer) == answer_key(correct_answer)


def _as_tokens(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [answer_key(item) for item in value]
    return [answer_key(value)]


def redflags_fraction(answer: Any, expected: Iterable[Any]) -> float:
    expected_tokens = set(_as_tokens(list(expected)))
    if not expected_tokens:
        return 0.0
    selected = set(_as_tokens(answer))
    return len(selected & expected_tokens) / len(expected_tokens)


def tally_answers(answers: Iterable[Any]) -> dict[str, int]:
    """Count answers per distinct value."""
    counts: dict[str, int] = {}
    for value in answers:
        key = answer_key(value)
        counts[key] = counts.get(key, 0) + 1
    return counts
