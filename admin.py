import logging
from typing import Any, Dict

from database import Document, EntityStore, now
from errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

RECENT_BOOKINGS_LIMIT = 5


class AdminService:
    """Oversight actions taken outside the user-driven booking flow."""

    def __init__(self, store: EntityStore):
        self.store = store

    def _get(self, collection: str, id_: str, label: str) -> Document:
        doc = self.store.find_by_id(collection, id_)
        if not doc:
            raise NotFoundError(f"{label} not found")
        return doc

    def verify_caretaker(self, actor: Dict[str, Any], caretaker_id: str) -> Document:
        caretaker = self._get("caretaker", caretaker_id, "Caretaker")
        if caretaker.get("is_verified"):
            raise InvalidStateError("Caretaker is already verified")
        caretaker["is_verified"] = True
        caretaker["verified_by"] = actor["id"]
        caretaker["verified_at"] = now()
        logger.info("Caretaker %s verified by %s", caretaker_id, actor["id"])
        return self.store.save("caretaker", caretaker)

    def unverify_caretaker(self, actor: Dict[str, Any], caretaker_id: str) -> Document:
        caretaker = self._get("caretaker", caretaker_id, "Caretaker")
        caretaker["is_verified"] = False
        caretaker["verified_by"] = None
        caretaker["verified_at"] = None
        logger.info("Caretaker %s verification removed by %s", caretaker_id, actor["id"])
        return self.store.save("caretaker", caretaker)

    def deactivate_user(self, actor: Dict[str, Any], user_id: str) -> Document:
        user = self._get("user", user_id, "User")
        if user.get("role") == "admin":
            raise InvalidStateError("Cannot deactivate admin users")
        user["is_active"] = False
        logger.info("User %s deactivated by %s", user_id, actor["id"])
        return self.store.save("user", user)

    def activate_user(self, actor: Dict[str, Any], user_id: str) -> Document:
        user = self._get("user", user_id, "User")
        user["is_active"] = True
        logger.info("User %s activated by %s", user_id, actor["id"])
        return self.store.save("user", user)

    def dashboard_stats(self) -> Dict[str, Any]:
        revenue = sum(p["amount"] for p in self.store.find("payment", {"status": "completed"}))
        return {
            "stats": {
                "total_users": self.store.count("user", {"role": "user"}),
                "total_caretakers": self.store.count("caretaker"),
                "verified_caretakers": self.store.count("caretaker", {"is_verified": True}),
                "pending_caretakers": self.store.count("caretaker", {"is_verified": False}),
                "total_bookings": self.store.count("booking"),
                "active_bookings": self.store.count("booking", {"status": {"$in": ["confirmed", "in-progress"]}}),
                "completed_bookings": self.store.count("booking", {"status": "completed"}),
                "total_revenue": revenue,
            },
            "recent_bookings": self.store.find(
                "booking", sort=[("created_at", -1)], limit=RECENT_BOOKINGS_LIMIT
            ),
        }
