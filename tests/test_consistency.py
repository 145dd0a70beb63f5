import pytest
from pymongo.errors import AutoReconnect

from bookings import BookingService
from caretakers import CaretakerService
from conftest import booking_input
from consistency import reconcile
from payments import PaymentService
from schemas import Feedback, PaymentCreate, PaymentProcess, RefundRequest


@pytest.fixture
def paid_booking(store, user, caretaker):
    booking = BookingService(store).create(user, booking_input(caretaker))
    payments = PaymentService(store)
    payment = payments.create(user, PaymentCreate(booking_id=str(booking["_id"]), payment_method="upi"))
    payment = payments.process(user, str(payment["_id"]), PaymentProcess())
    return store.find_by_id("booking", booking["_id"]), payment


def test_consistent_store_reports_nothing(store, paid_booking):
    report = reconcile(store)
    assert report.changed == 0


def test_refunded_payment_marks_booking_refunded(store, paid_booking):
    booking, payment = paid_booking
    payment["status"] = "refunded"
    store.save("payment", payment)

    report = reconcile(store)

    assert report.bookings_marked_refunded == [str(booking["_id"])]
    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "refunded"


def test_refund_sync_failure_is_repaired(store, admin, paid_booking, monkeypatch):
    booking, payment = paid_booking
    save = store.save

    def flaky_save(collection, doc):
        if collection == "booking":
            raise AutoReconnect("connection lost")
        return save(collection, doc)

    monkeypatch.setattr(store, "save", flaky_save)
    PaymentService(store).refund(admin, str(payment["_id"]), RefundRequest())
    monkeypatch.undo()
    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "paid"

    reconcile(store)

    assert store.find_by_id("booking", booking["_id"])["payment_status"] == "refunded"


def test_busy_caretaker_without_active_booking_is_released(store, user, caretaker):
    booking = BookingService(store).create(user, booking_input(caretaker))
    stored = store.find_by_id("booking", booking["_id"])
    stored["status"] = "completed"
    store.save("booking", stored)

    report = reconcile(store)

    assert report.caretakers_released == [str(caretaker["_id"])]
    assert store.find_by_id("caretaker", caretaker["_id"])["availability"] == "available"


def test_busy_caretaker_with_active_booking_stays_busy(store, user, caretaker):
    BookingService(store).create(user, booking_input(caretaker))
    report = reconcile(store)
    assert report.caretakers_released == []
    assert store.find_by_id("caretaker", caretaker["_id"])["availability"] == "busy"


def test_drifted_rating_is_recomputed(store, user, caretaker):
    caretaker_id = str(caretaker["_id"])
    for rating in (2, 5):
        store.create("feedback", Feedback(user=user["id"], caretaker=caretaker_id, booking="b", rating=rating))

    report = reconcile(store)

    assert report.ratings_corrected == [caretaker_id]
    doc = store.find_by_id("caretaker", caretaker["_id"])
    assert doc["rating"] == pytest.approx(3.5)
    assert doc["total_reviews"] == 2
    assert reconcile(store).changed == 0


def test_admin_set_busy_flag_is_left_alone(store, caretaker):
    CaretakerService(store).set_availability(str(caretaker["_id"]), "busy")

    report = reconcile(store)

    assert report.caretakers_released == []
    assert store.find_by_id("caretaker", caretaker["_id"])["availability"] == "busy"


def test_booking_after_admin_busy_flag_is_released_again(store, user, caretaker):
    service = CaretakerService(store)
    service.set_availability(str(caretaker["_id"]), "busy")
    service.set_availability(str(caretaker["_id"]), "available")
    booking = BookingService(store).create(user, booking_input(caretaker))
    stored = store.find_by_id("booking", booking["_id"])
    stored["status"] = "cancelled"
    store.save("booking", stored)

    assert reconcile(store).caretakers_released == [str(caretaker["_id"])]
