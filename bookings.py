"""
Booking lifecycle.

States: pending -> confirmed -> in-progress -> completed, with cancelled
reachable from any non-terminal state. completed and cancelled are final.

Every operation reads what it needs, validates, then writes documents one at a
time in a fixed order. The booking is always written before the caretaker's
availability flag; see ``create`` for the compensation applied when the
second write fails.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

import caretakers
import config
from database import Document, EntityStore, now
from errors import ForbiddenError, InvalidInputError, InvalidStateError, InvalidStatusError, NotFoundError
from schemas import BOOKING_STATUSES, TERMINAL_BOOKING_STATUSES, Booking, BookingCreate
from security import is_admin

logger = logging.getLogger(__name__)

# Edges accepted by update_status when strict transitions are enabled
STRICT_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"in-progress", "cancelled"},
    "in-progress": {"completed", "cancelled"},
}


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def can_act_on(actor: Dict[str, Any], booking: Document) -> bool:
    return is_admin(actor) or booking.get("user") == actor.get("id")


class BookingService:

    def __init__(self, store: EntityStore, strict_transitions: Optional[bool] = None):
        self.store = store
        if strict_transitions is None:
            strict_transitions = config.STRICT_STATUS_TRANSITIONS
        self.strict_transitions = strict_transitions

    def _get_booking(self, booking_id: str) -> Document:
        booking = self.store.find_by_id("booking", booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def _authorize(self, actor: Dict[str, Any], booking: Document, action: str) -> None:
        if not can_act_on(actor, booking):
            logger.warning("User %s not authorized to %s booking %s", actor.get("id"), action, booking["_id"])
            raise ForbiddenError(f"Not authorized to {action} this booking")

    def create(self, actor: Dict[str, Any], payload: BookingCreate) -> Document:
        """Create a pending booking and mark the caretaker busy.

        Rejected preconditions write nothing. If the availability write fails
        after the booking was inserted, the booking is deleted again before the
        error propagates, so no booking exists without its caretaker marked busy.
        """
        caretaker = self.store.find_by_id("caretaker", payload.caretaker_id)
        if not caretaker:
            raise NotFoundError("Caretaker not found")
        if not caretaker.get("is_active", True):
            raise InvalidStateError("Caretaker is not active")
        if not caretaker.get("is_verified"):
            raise InvalidStateError("Caretaker is not verified")
        if caretaker.get("availability") != "available":
            raise InvalidStateError("Caretaker is not available")

        start_date, end_date = _utc(payload.start_date), _utc(payload.end_date)
        if end_date <= start_date:
            raise InvalidInputError("End date must be after start date")

        data = Booking(
            user=actor["id"],
            caretaker=str(caretaker["_id"]),
            service_type=payload.service_type,
            start_date=start_date,
            end_date=end_date,
            duration=payload.duration,
            total_amount=payload.duration * caretaker["hourly_rate"],
            special_requirements=payload.special_requirements,
            patient_details=payload.patient_details,
            address=payload.address,
            assigned_by=actor["id"],
        )
        booking = self.store.create("booking", data)
        logger.info("Booking %s created for caretaker %s", booking["_id"], caretaker["_id"])

        try:
            caretakers.mark_busy(self.store, caretaker)
        except PyMongoError:
            logger.error("Marking caretaker %s busy failed; removing booking %s", caretaker["_id"], booking["_id"])
            self.store.delete_one("booking", booking)
            raise
        return booking

    def get(self, actor: Dict[str, Any], booking_id: str) -> Dict[str, Any]:
        booking = self._get_booking(booking_id)
        self._authorize(actor, booking, "view")
        payments = self.store.find(
            "payment", {"booking": str(booking["_id"])}, sort=[("created_at", -1)], limit=1
        )
        return {"booking": booking, "payment": payments[0] if payments else None}

    def for_user(self, actor: Dict[str, Any]) -> List[Document]:
        return self.store.find("booking", {"user": actor["id"]}, sort=[("created_at", -1)])

    def update_status(self, actor: Dict[str, Any], booking_id: str, status: str) -> Document:
        if status not in BOOKING_STATUSES:
            raise InvalidStatusError("Invalid status", {"status": status})
        booking = self._get_booking(booking_id)
        self._authorize(actor, booking, "update")

        current = booking["status"]
        if current in TERMINAL_BOOKING_STATUSES:
            raise InvalidStatusError(f"Cannot change status of a {current} booking")
        if self.strict_transitions and status != current and status not in STRICT_TRANSITIONS[current]:
            raise InvalidStatusError(f"Cannot move booking from {current} to {status}")

        if status == "cancelled":
            return self._cancel(actor, booking, None)

        booking["status"] = status
        if status == "completed":
            booking["completed_at"] = now()
        self.store.save("booking", booking)
        logger.info("Booking %s moved from %s to %s", booking_id, current, status)

        if status == "completed":
            caretaker = self.store.find_by_id("caretaker", booking["caretaker"])
            if caretaker:
                caretakers.release(self.store, caretaker)
        return booking

    def cancel(self, actor: Dict[str, Any], booking_id: str, reason: Optional[str] = None) -> Document:
        booking = self._get_booking(booking_id)
        self._authorize(actor, booking, "cancel")
        if booking["status"] in TERMINAL_BOOKING_STATUSES:
            raise InvalidStateError(f"Cannot cancel a {booking['status']} booking")
        return self._cancel(actor, booking, reason)

    def _cancel(self, actor: Dict[str, Any], booking: Document, reason: Optional[str]) -> Document:
        booking["status"] = "cancelled"
        booking["cancelled_by"] = actor["id"]
        booking["cancellation_reason"] = reason
        booking["cancelled_at"] = now()
        self.store.save("booking", booking)
        logger.info("Booking %s cancelled by %s", booking["_id"], actor["id"])

        caretaker = self.store.find_by_id("caretaker", booking["caretaker"])
        if caretaker and caretaker.get("availability") == "busy":
            caretakers.release(self.store, caretaker)
        return booking

    def assign_caretaker(self, actor: Dict[str, Any], booking_id: str, caretaker_id: str) -> Document:
        """Admin reassignment of a pending booking; confirms it."""
        if not is_admin(actor):
            raise ForbiddenError("Admin privileges required")
        booking = self._get_booking(booking_id)
        if booking["status"] != "pending":
            raise InvalidStateError(f"Cannot assign a caretaker to a {booking['status']} booking")
        caretaker = self.store.find_by_id("caretaker", caretaker_id)
        if not caretaker:
            raise NotFoundError("Caretaker not found")
        if not caretaker.get("is_verified"):
            raise InvalidStateError("Cannot assign unverified caretaker")

        caretaker_id = str(caretaker["_id"])
        previous_id = booking.get("caretaker")
        if previous_id and previous_id != caretaker_id:
            previous = self.store.find_by_id("caretaker", previous_id)
            if previous:
                caretakers.release(self.store, previous)

        booking["caretaker"] = caretaker_id
        booking["assigned_by"] = actor["id"]
        booking["status"] = "confirmed"
        self.store.save("booking", booking)
        logger.info("Booking %s assigned to caretaker %s", booking_id, caretaker_id)

        caretakers.mark_busy(self.store, caretaker)
        return booking
