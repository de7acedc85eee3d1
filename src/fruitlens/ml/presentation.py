"""Map a ranking outcome onto the structure the UI renders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fruitlens.ml.ranking import RankingOutcome

MATCH_HEADLINE = "I think this is a:"
NO_MATCH_HEADLINE = "No fruits detected. Top guesses:"


@dataclass(frozen=True)
class DisplayItem:
    text: str
    confidence_percent: float
    confidence_label: str
    magnitude: float


@dataclass(frozen=True)
class DisplayResult:
    matched: bool
    headline: str
    items: tuple[DisplayItem, ...]


def format_result(outcome: RankingOutcome) -> DisplayResult:
    """Build the display list for a ranking outcome.

    ``magnitude`` is the 0-100 width of the confidence bar.
    """
    items = tuple(
        DisplayItem(
            text=entry.display_name,
            confidence_percent=entry.confidence_percent,
            confidence_label=f"{entry.confidence_percent:.1f}%",
            magnitude=min(100.0, max(0.0, entry.confidence_percent)),
        )
        for entry in outcome.entries
    )
    headline = MATCH_HEADLINE if outcome.matched else NO_MATCH_HEADLINE
    return DisplayResult(matched=outcome.matched, headline=headline, items=items)
