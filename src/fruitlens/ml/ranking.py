"""Turn generic classifier labels into a short list of fruit guesses.

ImageNet labels are free-form and often comma-joined synonym lists
("Granny Smith, apple"), so a label counts as a fruit when a vocabulary term
appears in it as a whole word. Plain substring tests would let "apple" match
inside "pineapple".

Matches keep the classifier's own order. When nothing matches, the top raw
predictions are returned instead, flagged as non-matches, so the caller can
still show what the classifier saw.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

FRUIT_VOCABULARY: tuple[str, ...] = (
    "apple",
    "banana",
    "orange",
    "strawberry",
    "grape",
    "pineapple",
    "blueberry",
    "raspberry",
    "peach",
    "pear",
    "plum",
    "cherry",
    "kiwi",
    "mango",
    "lemon",
    "lime",
    "watermelon",
    "cantaloupe",
    "honeydew",
    "coconut",
    "avocado",
    "pomegranate",
    "fig",
    "jackfruit",
)

MAX_RESULTS = 3


@dataclass(frozen=True)
class RankedEntry:
    """One presented guess."""

    display_name: str
    confidence_percent: float
    matched_term: str | None


@dataclass(frozen=True)
class RankingOutcome:
    """Result of ranking one raw prediction.

    ``matched`` is False when ``entries`` holds the unfiltered top raw
    predictions rather than fruit matches.
    """

    entries: tuple[RankedEntry, ...]
    matched: bool


def matches_term(label: str, term: str) -> bool:
    """Whole-word containment of ``term`` in an already lowercased ``label``."""
    return label == term or f"{term} " in label or f" {term}" in label or f"{term}," in label


def match_vocabulary(label: str, vocabulary: Iterable[str] = FRUIT_VOCABULARY) -> str | None:
    """Return the most specific vocabulary term found in ``label``, if any.

    Longer terms are tried first, so "pineapple, ananas" resolves to
    "pineapple" even though "apple," also occurs in it. Equal-length terms
    keep vocabulary order.
    """
    lowered = label.lower()
    for term in sorted(vocabulary, key=len, reverse=True):
        if matches_term(lowered, term):
            return term
    return None


def derive_display_name(label: str) -> str:
    """'granny smith, apple' -> 'Granny Smith'."""
    first = label.split(",", 1)[0]
    return " ".join(word[:1].upper() + word[1:] for word in first.split())


def confidence_percent(probability: float) -> float:
    return round(probability * 100, 1)


def _parse_entry(entry: object) -> tuple[str, float] | None:
    # Accepts {"className", "probability"} mappings or objects with those
    # attributes. Anything else is malformed.
    if isinstance(entry, Mapping):
        label = entry.get("className")
        probability = entry.get("probability")
    else:
        label = getattr(entry, "className", None)
        probability = getattr(entry, "probability", None)

    if not isinstance(label, str) or not label.strip():
        return None
    if isinstance(probability, bool) or not isinstance(probability, numbers.Real):
        return None
    value = float(probability)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        return None
    return label, value


def rank_predictions(
    predictions: Iterable[object],
    vocabulary: Iterable[str] = FRUIT_VOCABULARY,
    limit: int = MAX_RESULTS,
) -> RankingOutcome:
    """Filter raw classifier output down to the top fruit guesses.

    Args:
        predictions: Raw ``{className, probability}`` entries in classifier order.
        vocabulary: Fruit terms to look for. The longest matching term wins.
        limit: Maximum number of entries to return.

    Returns:
        Up to ``limit`` fruit matches in classifier order, or, when there are
        none, the ``limit`` most probable raw entries with ``matched=False``.
    """
    terms = tuple(sorted(vocabulary, key=len, reverse=True))
    valid: list[tuple[str, float]] = []
    matches: list[RankedEntry] = []

    for entry in predictions:
        parsed = _parse_entry(entry)
        if parsed is None:
            continue
        label, probability = parsed
        valid.append(parsed)

        if len(matches) >= limit:
            continue
        term = match_vocabulary(label, terms)
        if term is not None:
            matches.append(RankedEntry(derive_display_name(label), confidence_percent(probability), term))

    if matches:
        return RankingOutcome(entries=tuple(matches), matched=True)

    # sorted() is stable: an already sorted input keeps its original top entries.
    top = sorted(valid, key=lambda item: item[1], reverse=True)[:limit]
    return RankingOutcome(
        entries=tuple(RankedEntry(derive_display_name(label), confidence_percent(p), None) for label, p in top),
        matched=False,
    )
