"""Caretaker directory and the availability flag the booking lifecycle drives."""

import logging
from typing import Any, Dict, List, Optional

from database import Document, EntityStore, now
from errors import DuplicateError, InvalidInputError, NotFoundError
from schemas import AVAILABILITY_VALUES, Caretaker, CaretakerCreate, CaretakerUpdate

logger = logging.getLogger(__name__)

RECENT_FEEDBACK_LIMIT = 10


def mark_busy(store: EntityStore, caretaker: Document) -> Document:
    caretaker["availability"] = "busy"
    caretaker["availability_source"] = "booking"
    store.save("caretaker", caretaker)
    logger.info("Caretaker %s marked busy", caretaker["_id"])
    return caretaker


def release(store: EntityStore, caretaker: Document) -> Document:
    caretaker["availability"] = "available"
    caretaker["availability_source"] = None
    store.save("caretaker", caretaker)
    logger.info("Caretaker %s released to available", caretaker["_id"])
    return caretaker


class CaretakerService:
    """Admin-managed caretaker profiles plus public browsing."""

    def __init__(self, store: EntityStore):
        self.store = store

    def get(self, caretaker_id: str) -> Document:
        caretaker = self.store.find_by_id("caretaker", caretaker_id)
        if not caretaker:
            raise NotFoundError("Caretaker not found")
        return caretaker

    def get_with_feedback(self, caretaker_id: str) -> Dict[str, Any]:
        caretaker = self.get(caretaker_id)
        feedbacks = self.store.find(
            "feedback",
            {"caretaker": str(caretaker["_id"]), "is_visible": True},
            sort=[("created_at", -1)],
            limit=RECENT_FEEDBACK_LIMIT,
        )
        return {"caretaker": caretaker, "feedbacks": feedbacks}

    def list_available(self, specialization: Optional[str] = None) -> List[Document]:
        query: Dict[str, Any] = {"is_active": True, "is_verified": True, "availability": "available"}
        if specialization:
            # "both" caretakers serve either kind of booking
            query["specialization"] = {"$in": [specialization, "both"]}
        return self.store.find("caretaker", query, sort=[("rating", -1), ("created_at", -1)])

    def create(self, payload: CaretakerCreate) -> Document:
        email = payload.email.lower()
        if self.store.find_one("caretaker", {"email": email}):
            raise DuplicateError("Caretaker with this email already exists")
        data = Caretaker(**{**payload.model_dump(), "email": email})
        caretaker = self.store.create("caretaker", data)
        logger.info("Caretaker %s created", caretaker["_id"])
        return caretaker

    def update(self, caretaker_id: str, payload: CaretakerUpdate) -> Document:
        caretaker = self.get(caretaker_id)
        # rating, total_reviews, availability and verification have their own paths
        for key, value in payload.model_dump(exclude_unset=True).items():
            if value is not None:
                caretaker[key] = value
        return self.store.save("caretaker", caretaker)

    def set_availability(self, caretaker_id: str, availability: str) -> Document:
        if availability not in AVAILABILITY_VALUES:
            raise InvalidInputError("Invalid availability status")
        caretaker = self.get(caretaker_id)
        caretaker["availability"] = availability
        caretaker["availability_source"] = "admin"
        logger.info("Caretaker %s availability set to %s", caretaker_id, availability)
        return self.store.save("caretaker", caretaker)

    def deactivate(self, caretaker_id: str) -> Document:
        caretaker = self.get(caretaker_id)
        caretaker["is_active"] = False
        caretaker["deactivated_at"] = now()
        logger.info("Caretaker %s deactivated", caretaker_id)
        return self.store.save("caretaker", caretaker)
