"""
Abuse detection helpers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from focusup.constants import Rewards
from focusup.models import Task, utc_now

GENERIC_TITLES = frozenset(
    {"a", "test", "123", "task", "work", "stuff", "todo", "thing", "asdf", "qwerty"}
)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def _normalize(title: str) -> str:
    return title.strip().lower()


def is_duplicate_task(title: str, recent: Sequence[Task], now: Optional[datetime] = None) -> bool:
    """
    True when ``title`` matches, or nearly matches, a task created in the
    last 24 hours. Near matches only count for titles longer than 5 chars.
    """
    cutoff = (now or utc_now()) - timedelta(hours=Rewards.DUPLICATE_WINDOW_HOURS)
    candidate = _normalize(title)
    for task in recent:
        if task.created_at <= cutoff:
            continue
        existing = _normalize(task.title)
        if candidate == existing:
            return True
        if len(candidate) > 5 and levenshtein(candidate, existing) < 3:
            return True
    return False


def is_rapid_completion(timestamps: Sequence[float]) -> bool:
    """True when the last five completions (epoch seconds) fit inside 60 seconds."""
    count = Rewards.RAPID_COMPLETION_COUNT
    if len(timestamps) < count:
        return False
    window = sorted(timestamps)[-count:]
    return window[-1] - window[0] < Rewards.RAPID_WINDOW_SECONDS


def is_generic_title(title: str) -> bool:
    normalized = _normalize(title)
    return normalized in GENERIC_TITLES or len(normalized) < 3


def spam_score(is_duplicate: bool, is_rapid: bool, is_generic: bool, completion_count: int) -> float:
    """0.0 for legitimate use up to 1.0 for certain spam."""
    score = 0.0
    if is_duplicate:
        score += 0.3
    if is_rapid:
        score += 0.3
    if is_generic:
        score += 0.2
    if completion_count > 20:
        score += 0.2
    return min(1.0, round(score, 2))
