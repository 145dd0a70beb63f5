import pytest

from caretakers import CaretakerService
from errors import DuplicateError, InvalidInputError, NotFoundError
from schemas import CaretakerCreate, CaretakerUpdate


@pytest.fixture
def service(store):
    return CaretakerService(store)


def _create_payload(**overrides):
    data = {
        "name": "Lakshmi",
        "email": "Lakshmi@Example.com",
        "phone": "9111111111",
        "age": 45,
        "gender": "female",
        "specialization": "child",
        "experience": 8,
        "hourly_rate": 150,
    }
    data.update(overrides)
    return CaretakerCreate(**data)


def test_create_starts_unverified_with_empty_rating(service):
    caretaker = service.create(_create_payload())
    assert caretaker["email"] == "lakshmi@example.com"
    assert caretaker["is_verified"] is False
    assert caretaker["availability"] == "available"
    assert (caretaker["rating"], caretaker["total_reviews"]) == (0, 0)


def test_create_rejects_duplicate_email(service):
    service.create(_create_payload())
    with pytest.raises(DuplicateError):
        service.create(_create_payload(email="lakshmi@example.com"))


def test_update_changes_only_sent_fields(store, service, caretaker):
    updated = service.update(str(caretaker["_id"]), CaretakerUpdate(hourly_rate=180))
    assert updated["hourly_rate"] == 180
    assert updated["name"] == caretaker["name"]
    assert updated["rating"] == caretaker["rating"]


def test_set_availability(service, caretaker):
    assert service.set_availability(str(caretaker["_id"]), "unavailable")["availability"] == "unavailable"
    with pytest.raises(InvalidInputError):
        service.set_availability(str(caretaker["_id"]), "on-leave")


def test_deactivated_caretaker_is_not_listed(service, caretaker):
    service.deactivate(str(caretaker["_id"]))
    assert service.list_available() == []


def test_list_available_sorted_by_rating(service, make_caretaker):
    low = make_caretaker(rating=2.0, total_reviews=1)
    high = make_caretaker(rating=4.5, total_reviews=3)
    assert [c["_id"] for c in service.list_available()] == [high["_id"], low["_id"]]


def test_get_missing_caretaker(service):
    with pytest.raises(NotFoundError):
        service.get("0123456789abcdef01234567")
