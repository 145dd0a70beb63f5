"""
Payment settlement.

A payment is a side record of a booking: pending -> completed | failed, and
completed -> refunded. Settling or refunding a payment pushes the new state
onto the booking in a second write. The payment is written first; when the
booking write fails the payment keeps its new state and
``consistency.reconcile`` brings the booking back in line.
"""

import logging
import secrets
import string
import time
from typing import Any, Dict

from pymongo.errors import PyMongoError

import config
from database import Document, EntityStore, canonical_id, now
from errors import (
    AlreadyCompletedError,
    AlreadyPaidError,
    AmountExceededError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from schemas import Payment, PaymentCreate, PaymentProcess, RefundRequest
from security import is_admin

logger = logging.getLogger(__name__)

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def _millis() -> int:
    return int(time.time() * 1000)


def generate_transaction_id() -> str:
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(9))
    return f"TXN{_millis()}{suffix}"


class PaymentService:

    def __init__(self, store: EntityStore):
        self.store = store

    def _get_payment(self, payment_id: str) -> Document:
        payment = self.store.find_by_id("payment", payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    def _sync_booking(self, payment: Document, payment_status: str, confirm: bool = False) -> None:
        try:
            booking = self.store.find_by_id("booking", payment["booking"])
            if not booking:
                logger.error("Payment %s references missing booking %s", payment["_id"], payment["booking"])
                return
            booking["payment_status"] = payment_status
            # a booking that already moved past pending keeps its status
            if confirm and booking["status"] == "pending":
                booking["status"] = "confirmed"
            self.store.save("booking", booking)
        except PyMongoError:
            logger.exception(
                "Booking %s not updated after payment %s became %s; left for reconciliation",
                payment["booking"],
                payment["_id"],
                payment["status"],
            )

    def create(self, actor: Dict[str, Any], payload: PaymentCreate) -> Document:
        booking = self.store.find_by_id("booking", payload.booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        if booking["user"] != actor["id"]:
            raise ForbiddenError("Not authorized to make payment for this booking")
        if booking.get("payment_status") == "paid":
            raise AlreadyPaidError("Payment already completed for this booking")
        booking_id = str(booking["_id"])
        if self.store.find_one("payment", {"booking": booking_id, "status": "completed"}):
            raise AlreadyPaidError("Payment already exists for this booking")

        data = Payment(
            user=actor["id"],
            booking=booking_id,
            caretaker=booking["caretaker"],
            amount=booking["total_amount"],
            currency=config.CURRENCY,
            payment_method=payload.payment_method,
            payment_details=payload.payment_details,
        )
        payment = self.store.create("payment", data)
        logger.info("Payment %s initiated for booking %s", payment["_id"], booking_id)
        return payment

    def process(self, actor: Dict[str, Any], payment_id: str, payload: PaymentProcess) -> Document:
        """Mark a payment completed and the booking paid and confirmed."""
        payment = self._get_payment(payment_id)
        if payment["user"] != actor["id"]:
            raise ForbiddenError("Not authorized to process this payment")
        if payment["status"] == "completed":
            raise AlreadyCompletedError("Payment already completed")
        if payment["status"] == "refunded":
            raise InvalidStateError("Payment has been refunded")
        if self.store.find_one("payment", {"booking": payment["booking"], "status": "completed"}):
            raise AlreadyPaidError("Another payment already completed this booking")

        payment["status"] = "completed"
        payment["gateway_payment_id"] = payload.gateway_payment_id or f"PAY{_millis()}"
        payment["gateway_signature"] = payload.gateway_signature
        payment["failure_reason"] = None
        if not payment.get("transaction_id"):
            payment["transaction_id"] = generate_transaction_id()
        payment["paid_at"] = now()
        self.store.save("payment", payment)
        logger.info("Payment %s completed (%s)", payment_id, payment["transaction_id"])

        self._sync_booking(payment, "paid", confirm=True)
        return payment

    def fail(self, actor: Dict[str, Any], payment_id: str, reason: str) -> Document:
        payment = self._get_payment(payment_id)
        if payment["user"] != actor["id"] and not is_admin(actor):
            raise ForbiddenError("Not authorized to update this payment")
        if payment["status"] not in ("pending", "processing"):
            raise InvalidStateError(f"Cannot fail a {payment['status']} payment")
        payment["status"] = "failed"
        payment["failure_reason"] = reason
        self.store.save("payment", payment)
        logger.warning("Payment %s failed: %s", payment_id, reason)
        return payment

    def refund(self, actor: Dict[str, Any], payment_id: str, payload: RefundRequest) -> Document:
        if not is_admin(actor):
            raise ForbiddenError("Admin privileges required")
        payment = self._get_payment(payment_id)
        if payment["status"] != "completed":
            raise InvalidStateError("Can only refund completed payments")

        refund_amount = payload.refund_amount or payment["amount"]
        if refund_amount > payment["amount"]:
            raise AmountExceededError(
                "Refund amount cannot exceed payment amount",
                {"refund_amount": refund_amount, "amount": payment["amount"]},
            )

        payment["status"] = "refunded"
        payment["refund_amount"] = refund_amount
        payment["refunded_at"] = now()
        payment["refund_reason"] = payload.refund_reason
        self.store.save("payment", payment)
        logger.info("Payment %s refunded %s", payment_id, refund_amount)

        self._sync_booking(payment, "refunded")
        return payment

    def get(self, actor: Dict[str, Any], payment_id: str) -> Document:
        payment = self._get_payment(payment_id)
        if payment["user"] != actor["id"] and not is_admin(actor):
            raise ForbiddenError("Not authorized to view this payment")
        return payment

    def for_booking(self, actor: Dict[str, Any], booking_id: str) -> Document:
        payments = self.store.find(
            "payment", {"booking": canonical_id(booking_id)}, sort=[("created_at", -1)], limit=1
        )
        if not payments:
            raise NotFoundError("Payment not found for this booking")
        payment = payments[0]
        if payment["user"] != actor["id"] and not is_admin(actor):
            raise ForbiddenError("Not authorized to view this payment")
        return payment
