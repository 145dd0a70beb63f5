"""
Reconciliation of state that spans several documents.

Multi-document operations write one document at a time. When a later write in
such a sequence fails, the earlier writes stay. ``reconcile`` scans the store
and re-derives the dependent fields from their sources of truth:

- booking.payment_status from its payments (completed -> paid, refunded -> refunded)
- caretaker.availability busy -> available when no active booking holds it,
  unless an admin set the flag
- caretaker.rating / total_reviews from its feedback
"""

import logging
from dataclasses import dataclass, field
from typing import List

import ratings
from database import EntityStore
from schemas import ACTIVE_BOOKING_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    bookings_marked_paid: List[str] = field(default_factory=list)
    bookings_marked_refunded: List[str] = field(default_factory=list)
    caretakers_released: List[str] = field(default_factory=list)
    ratings_corrected: List[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return (
            len(self.bookings_marked_paid)
            + len(self.bookings_marked_refunded)
            + len(self.caretakers_released)
            + len(self.ratings_corrected)
        )


def _reconcile_payments(store: EntityStore, report: ReconcileReport) -> None:
    for payment in store.find("payment", {"status": {"$in": ["completed", "refunded"]}}):
        booking = store.find_by_id("booking", payment["booking"])
        if not booking:
            continue
        if payment["status"] == "completed" and booking.get("payment_status") != "paid":
            booking["payment_status"] = "paid"
            if booking["status"] == "pending":
                booking["status"] = "confirmed"
            store.save("booking", booking)
            report.bookings_marked_paid.append(str(booking["_id"]))
        elif payment["status"] == "refunded" and booking.get("payment_status") == "paid":
            # a newer completed payment keeps the booking paid
            if store.find_one("payment", {"booking": payment["booking"], "status": "completed"}):
                continue
            booking["payment_status"] = "refunded"
            store.save("booking", booking)
            report.bookings_marked_refunded.append(str(booking["_id"]))


def _reconcile_caretakers(store: EntityStore, report: ReconcileReport) -> None:
    for caretaker in store.find("caretaker"):
        caretaker_id = str(caretaker["_id"])
        changed = False

        if caretaker.get("availability") == "busy" and caretaker.get("availability_source") != "admin":
            active = store.count(
                "booking", {"caretaker": caretaker_id, "status": {"$in": list(ACTIVE_BOOKING_STATUSES)}}
            )
            if not active:
                caretaker["availability"] = "available"
                caretaker["availability_source"] = None
                report.caretakers_released.append(caretaker_id)
                changed = True

        summary = ratings.recompute(store.find("feedback", {"caretaker": caretaker_id}))
        if caretaker.get("total_reviews", 0) != summary.total_reviews or abs(
            caretaker.get("rating", 0) - summary.rating
        ) > 1e-9:
            ratings.apply(caretaker, summary)
            report.ratings_corrected.append(caretaker_id)
            changed = True

        if changed:
            store.save("caretaker", caretaker)


def reconcile(store: EntityStore) -> ReconcileReport:
    report = ReconcileReport()
    _reconcile_payments(store, report)
    _reconcile_caretakers(store, report)
    if report.changed:
        logger.warning("Reconciliation repaired %d documents: %s", report.changed, report)
    else:
        logger.info("Reconciliation found no drift")
    return report
