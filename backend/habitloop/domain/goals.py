"""Built-in goal catalog and goal-title matching against coach responses."""
from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, TypeVar

from habitloop.domain.models import Goal

PREDEFINED_GOALS: List[tuple[str, str]] = [
    ("Drink more water", "💧"),
    ("Read", "📚"),
    ("Meditate", "🙏"),
    ("Run", "🏃"),
    ("Journal", "✍️"),
    ("Lift", "🏋️"),
    ("Budget", "💰"),
    ("Sleep better", "😴"),
    ("Eat right", "🥗"),
    ("Stay tidy", "🧹"),
    ("Learn a language", "🗣️"),
    ("Practice guitar", "🎸"),
    ("Take vitamins", "💊"),
    ("Walk 10k steps", "👣"),
    ("Stretch daily", "🧘"),
    ("Call family", "👨‍👩‍👧‍👦"),
    ("Save money", "🏦"),
    ("Cook meals", "👨‍🍳"),
    ("Less screen time", "📱"),
    ("Practice gratitude", "🙌"),
]


class _Titled(Protocol):
    title: str


T = TypeVar("T", bound=_Titled)


def predefined_goals() -> List[Goal]:
    """Fresh catalog goals (new ids on every call)."""
    return [Goal(title=title, emoji=emoji) for title, emoji in PREDEFINED_GOALS]


def normalize_title(value: str) -> str:
    return value.strip().casefold()


def titles_match(local_title: str, generated_title: str) -> bool:
    """Exact match after normalisation, or either title contains the other."""
    left = normalize_title(local_title)
    right = normalize_title(generated_title)
    if not left or not right:
        return False
    return left == right or left in right or right in left


def match_generated_goals(goals: Sequence[Goal], generated: Sequence[T]) -> List[Optional[T]]:
    """Pair each local goal with the first generated goal whose title matches.

    The result is aligned with ``goals``; ``None`` marks a goal the coach did not
    cover, which keeps its empty strategy and sub-plans.
    """
    matches: List[Optional[T]] = []
    for goal in goals:
        found = next((item for item in generated if titles_match(goal.title, item.title)), None)
        matches.append(found)
    return matches
