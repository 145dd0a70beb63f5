"""
Caretaker rating aggregation.

A caretaker's ``rating`` is the arithmetic mean of the ratings of every
feedback document that references it, and ``total_reviews`` is their count.
``recompute`` derives both from the full feedback set; ``incremental`` folds a
single new rating into an existing summary and agrees with ``recompute``
whenever the stored summary was itself consistent.
"""

from typing import Any, Dict, Iterable, NamedTuple


class RatingSummary(NamedTuple):
    rating: float
    total_reviews: int


EMPTY = RatingSummary(0.0, 0)


def recompute(feedbacks: Iterable[Dict[str, Any]]) -> RatingSummary:
    ratings = [f["rating"] for f in feedbacks]
    if not ratings:
        return EMPTY
    return RatingSummary(sum(ratings) / len(ratings), len(ratings))


def incremental(rating: float, total_reviews: int, new_rating: float) -> RatingSummary:
    count = total_reviews + 1
    return RatingSummary((rating * total_reviews + new_rating) / count, count)


def apply(caretaker: Dict[str, Any], summary: RatingSummary) -> Dict[str, Any]:
    caretaker["rating"] = summary.rating
    caretaker["total_reviews"] = summary.total_reviews
    return caretaker
