import logging
from typing import Any, Dict, Optional

import ratings
from database import Document, EntityStore, canonical_id
from errors import DuplicateError, ForbiddenError, InvalidStateError, NotFoundError
from schemas import Feedback, FeedbackCreate, FeedbackUpdate
from security import is_admin

logger = logging.getLogger(__name__)

CATEGORY_NAMES = ("professionalism", "punctuality", "communication", "care_quality")


class FeedbackService:
    """Feedback CRUD; every mutation re-derives the caretaker's rating."""

    def __init__(self, store: EntityStore):
        self.store = store

    def _get_feedback(self, feedback_id: str) -> Document:
        feedback = self.store.find_by_id("feedback", feedback_id)
        if not feedback:
            raise NotFoundError("Feedback not found")
        return feedback

    def _recompute_rating(self, caretaker_id: str) -> Optional[Document]:
        caretaker = self.store.find_by_id("caretaker", caretaker_id)
        if not caretaker:
            return None
        summary = ratings.recompute(self.store.find("feedback", {"caretaker": caretaker_id}))
        self.store.save("caretaker", ratings.apply(caretaker, summary))
        logger.info("Caretaker %s rating recomputed: %.2f over %d", caretaker_id, *summary)
        return caretaker

    def submit(self, actor: Dict[str, Any], payload: FeedbackCreate) -> Document:
        booking = self.store.find_by_id("booking", payload.booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if booking["user"] != actor["id"]:
            raise ForbiddenError("Not authorized to submit feedback for this booking")
        if booking["status"] != "completed":
            raise InvalidStateError("Can only submit feedback for completed bookings")
        booking_id = str(booking["_id"])
        if self.store.find_one("feedback", {"booking": booking_id}):
            raise DuplicateError("Feedback already submitted for this booking")

        data = Feedback(
            user=actor["id"],
            caretaker=booking["caretaker"],
            booking=booking_id,
            rating=payload.rating,
            comment=payload.comment,
            categories=payload.categories,
        )
        feedback = self.store.create("feedback", data)
        logger.info("Feedback %s submitted for booking %s", feedback["_id"], booking_id)

        caretaker = self.store.find_by_id("caretaker", booking["caretaker"])
        if caretaker:
            summary = ratings.incremental(
                caretaker.get("rating", 0), caretaker.get("total_reviews", 0), payload.rating
            )
            self.store.save("caretaker", ratings.apply(caretaker, summary))
        return feedback

    def update(self, actor: Dict[str, Any], feedback_id: str, payload: FeedbackUpdate) -> Document:
        feedback = self._get_feedback(feedback_id)
        if feedback["user"] != actor["id"]:
            raise ForbiddenError("Not authorized to update this feedback")

        if payload.rating is not None:
            feedback["rating"] = payload.rating
        if "comment" in payload.model_fields_set:
            feedback["comment"] = payload.comment
        if payload.categories is not None:
            feedback["categories"] = payload.categories.model_dump()
        self.store.save("feedback", feedback)

        self._recompute_rating(feedback["caretaker"])
        return feedback

    def delete(self, actor: Dict[str, Any], feedback_id: str) -> None:
        feedback = self._get_feedback(feedback_id)
        if feedback["user"] != actor["id"] and not is_admin(actor):
            raise ForbiddenError("Not authorized to delete this feedback")
        self.store.delete_one("feedback", feedback)
        logger.info("Feedback %s deleted by %s", feedback_id, actor["id"])
        self._recompute_rating(feedback["caretaker"])

    def for_user(self, actor: Dict[str, Any]):
        return self.store.find("feedback", {"user": actor["id"]}, sort=[("created_at", -1)])

    def caretaker_summary(self, caretaker_id: str) -> Dict[str, Any]:
        """Visible feedback for a caretaker with its average and per-category averages."""
        feedbacks = self.store.find(
            "feedback", {"caretaker": canonical_id(caretaker_id), "is_visible": True}, sort=[("created_at", -1)]
        )
        summary = ratings.recompute(feedbacks)
        categories = {name: 0.0 for name in CATEGORY_NAMES}
        if feedbacks:
            for f in feedbacks:
                for name in CATEGORY_NAMES:
                    categories[name] += (f.get("categories") or {}).get(name) or 0
            categories = {name: total / len(feedbacks) for name, total in categories.items()}
        return {
            "count": summary.total_reviews,
            "avg_rating": round(summary.rating, 1),
            "avg_categories": categories,
            "feedbacks": feedbacks,
        }
