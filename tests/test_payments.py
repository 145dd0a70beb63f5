import re

import pytest
from pymongo.errors import PyMongoError

from bookings import BookingService
from conftest import booking_input
from consistency import reconcile
from errors import (
    AlreadyCompletedError,
    AlreadyPaidError,
    AmountExceededError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from payments import PaymentService, generate_transaction_id
from schemas import PaymentCreate, PaymentProcess, RefundRequest


@pytest.fixture
def payments(store):
    return PaymentService(store)


@pytest.fixture
def booking(store, user, caretaker):
    return BookingService(store).create(user, booking_input(caretaker, duration=3))


def _pay(payments, user, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="upi"))
    return payments.process(user, str(payment["_id"]), PaymentProcess())


def test_transaction_id_format():
    assert re.fullmatch(r"TXN\d{13}[A-Z0-9]{9}", generate_transaction_id())


def test_create_payment_copies_booking_amount(payments, user, booking, caretaker):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))

    assert payment["amount"] == 300
    assert payment["status"] == "pending"
    assert payment["currency"] == "INR"
    assert payment["payment_gateway"] == "manual"
    assert payment["caretaker"] == str(caretaker["_id"])
    assert payment["transaction_id"] is None


def test_create_payment_missing_booking(payments, user):
    with pytest.raises(NotFoundError):
        payments.create(user, PaymentCreate(booking_id="0123456789abcdef01234567", payment_method="card"))


def test_create_payment_owner_only(payments, make_user, admin, booking):
    with pytest.raises(ForbiddenError):
        payments.create(make_user(), PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    with pytest.raises(ForbiddenError):
        payments.create(admin, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))


def test_process_settles_payment_and_booking(store, payments, user, booking):
    payment = _pay(payments, user, booking)

    assert payment["status"] == "completed"
    assert payment["transaction_id"].startswith("TXN")
    assert payment["gateway_payment_id"].startswith("PAY")
    assert payment["paid_at"] is not None
    stored = store.find_by_id("booking", booking["_id"])
    assert stored["payment_status"] == "paid"
    assert stored["status"] == "confirmed"


def test_process_keeps_gateway_reference(payments, user, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    processed = payments.process(
        user, str(payment["_id"]), PaymentProcess(gateway_payment_id="pay_123", gateway_signature="sig")
    )
    assert processed["gateway_payment_id"] == "pay_123"
    assert processed["gateway_signature"] == "sig"


def test_second_payment_for_paid_booking_fails(payments, user, booking):
    _pay(payments, user, booking)
    with pytest.raises(AlreadyPaidError):
        payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="cash"))


def test_second_payment_blocked_by_completed_payment_even_if_booking_unpaid(store, payments, user, booking):
    _pay(payments, user, booking)
    stored = store.find_by_id("booking", booking["_id"])
    stored["payment_status"] = "pending"
    store.save("booking", stored)

    with pytest.raises(AlreadyPaidError):
        payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="cash"))


def test_only_one_of_two_pending_payments_can_complete(store, payments, user, booking):
    first = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    second = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="upi"))

    payments.process(user, str(first["_id"]), PaymentProcess())
    with pytest.raises(AlreadyPaidError):
        payments.process(user, str(second["_id"]), PaymentProcess())

    assert store.count("payment", {"booking": str(booking["_id"]), "status": "completed"}) == 1


def test_process_twice_fails(payments, user, booking):
    payment = _pay(payments, user, booking)
    with pytest.raises(AlreadyCompletedError):
        payments.process(user, str(payment["_id"]), PaymentProcess())


def test_process_owner_only(payments, user, admin, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    with pytest.raises(ForbiddenError):
        payments.process(admin, str(payment["_id"]), PaymentProcess())


def test_process_does_not_rewind_advanced_booking(store, payments, user, admin, booking):
    BookingService(store).update_status(admin, str(booking["_id"]), "in-progress")
    _pay(payments, user, booking)
    stored = store.find_by_id("booking", booking["_id"])
    assert stored["status"] == "in-progress"
    assert stored["payment_status"] == "paid"


def test_refund_full_amount_by_default(store, payments, user, admin, booking):
    payment = _pay(payments, user, booking)

    refunded = payments.refund(admin, str(payment["_id"]), RefundRequest(refund_reason="no show"))

    assert refunded["status"] == "refunded"
    assert refunded["refund_amount"] == 300
    assert refunded["refund_reason"] == "no show"
    assert refunded["refunded_at"] is not None
    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "refunded"


def test_partial_refund(payments, user, admin, booking):
    payment = _pay(payments, user, booking)
    refunded = payments.refund(admin, str(payment["_id"]), RefundRequest(refund_amount=120))
    assert refunded["refund_amount"] == 120


def test_refund_larger_than_payment_leaves_payment_unchanged(store, payments, user, admin, booking):
    payment = _pay(payments, user, booking)

    with pytest.raises(AmountExceededError):
        payments.refund(admin, str(payment["_id"]), RefundRequest(refund_amount=301))

    stored = store.find_by_id("payment", payment["_id"])
    assert stored["status"] == "completed"
    assert stored["refund_amount"] == 0
    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "paid"


def test_refund_requires_completed_payment(payments, user, admin, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    with pytest.raises(InvalidStateError):
        payments.refund(admin, str(payment["_id"]), RefundRequest())


def test_refund_twice_fails(payments, user, admin, booking):
    payment = _pay(payments, user, booking)
    payments.refund(admin, str(payment["_id"]), RefundRequest())
    with pytest.raises(InvalidStateError):
        payments.refund(admin, str(payment["_id"]), RefundRequest())


def test_refund_admin_only(payments, user, booking):
    payment = _pay(payments, user, booking)
    with pytest.raises(ForbiddenError):
        payments.refund(user, str(payment["_id"]), RefundRequest())


def test_failed_payment_can_be_retried(payments, user, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))

    failed = payments.fail(user, str(payment["_id"]), "card declined")
    assert failed["status"] == "failed"
    assert failed["failure_reason"] == "card declined"

    with pytest.raises(InvalidStateError):
        payments.fail(user, str(payment["_id"]), "again")

    processed = payments.process(user, str(payment["_id"]), PaymentProcess())
    assert processed["status"] == "completed"
    assert processed["failure_reason"] is None


def test_booking_write_failure_keeps_completed_payment_until_reconciled(store, payments, user, booking, monkeypatch):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    save = store.save

    def flaky_save(collection, doc):
        if collection == "booking":
            raise PyMongoError("write failed")
        return save(collection, doc)

    monkeypatch.setattr(store, "save", flaky_save)
    processed = payments.process(user, str(payment["_id"]), PaymentProcess())
    monkeypatch.undo()

    assert processed["status"] == "completed"
    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "pending"

    report = reconcile(store)

    assert report.bookings_marked_paid == [str(booking["_id"])]
    stored = store.find_by_id("booking", booking["_id"])
    assert stored["payment_status"] == "paid"
    assert stored["status"] == "confirmed"


def test_get_payment_and_payment_for_booking(payments, user, make_user, admin, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="wallet"))

    assert payments.get(user, str(payment["_id"]))["_id"] == payment["_id"]
    assert payments.get(admin, str(payment["_id"]))["_id"] == payment["_id"]
    assert payments.for_booking(user, str(booking["_id"]))["_id"] == payment["_id"]
    with pytest.raises(ForbiddenError):
        payments.get(make_user(), str(payment["_id"]))
    with pytest.raises(NotFoundError):
        payments.for_booking(user, "0123456789abcdef01234567")


def test_booking_id_case_does_not_allow_second_completed_payment(store, payments, user, booking):
    booking_id = str(booking["_id"])
    first = payments.create(user, PaymentCreate(booking_id=booking_id, payment_method="card"))
    second = payments.create(user, PaymentCreate(booking_id=booking_id.upper(), payment_method="upi"))
    assert second["booking"] == booking_id

    payments.process(user, str(first["_id"]), PaymentProcess())
    with pytest.raises(AlreadyPaidError):
        payments.process(user, str(second["_id"]), PaymentProcess())

    assert store.count("payment", {"status": "completed"}) == 1


def test_payment_for_booking_accepts_id_in_other_case(payments, user, booking):
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="card"))
    assert payments.for_booking(user, str(booking["_id"]).upper())["_id"] == payment["_id"]
