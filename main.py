import logging
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

import config
from admin import AdminService
from bookings import BookingService
from caretakers import CaretakerService
from consistency import reconcile
from database import EntityStore, db, get_store, sanitize
from errors import DuplicateError, InvalidInputError, ServiceError
from feedback import FeedbackService
from payments import PaymentService
from schemas import (
    Availability,
    BookingCreate,
    BookingStatus,
    CaretakerCreate,
    CaretakerUpdate,
    FeedbackCreate,
    FeedbackUpdate,
    PaymentCreate,
    PaymentProcess,
    RefundRequest,
    ServiceType,
    User as UserSchema,
)
from security import (
    create_access_token,
    get_current_user,
    hash_password,
    require_role,
    verify_password,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
logging.getLogger("pymongo").setLevel(logging.WARNING)

# App and CORS
app = FastAPI(title="Caretaker Service API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, elapsed)
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.warning("%s %s rejected: %s %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content: Dict[str, Any] = {"success": False, "kind": "ServerError", "message": "Server error"}
    if config.DEBUG:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Request/Response Models
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=400)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=400)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str


class StatusUpdateRequest(BaseModel):
    status: BookingStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AssignCaretakerRequest(BaseModel):
    caretaker_id: str = Field(..., min_length=1)


class AvailabilityRequest(BaseModel):
    availability: Availability


class PaymentFailureRequest(BaseModel):
    reason: str = Field(..., min_length=1)


def _token_response(user: Dict[str, Any]) -> TokenResponse:
    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")})
    return TokenResponse(access_token=token, user=sanitize(user))


# Auth Routes
@app.post("/api/auth/signup", response_model=TokenResponse, status_code=201)
def signup(payload: SignupRequest, store: EntityStore = Depends(get_store)):
    email = payload.email.lower()
    if store.find_one("user", {"email": email}):
        raise DuplicateError("Email already registered")
    user = store.create(
        "user",
        UserSchema(
            name=payload.name,
            email=email,
            password_hash=hash_password(payload.password),
            phone=payload.phone,
            address=payload.address,
            role="user",
        ),
    )
    logger.info("User %s signed up", user["_id"])
    return _token_response(user)


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, store: EntityStore = Depends(get_store)):
    user = store.find_one("user", {"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")
    return _token_response(user)


@app.get("/api/auth/profile")
def profile(current_user=Depends(get_current_user)):
    return current_user


@app.put("/api/auth/profile")
def update_profile(
    payload: UpdateProfileRequest, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)
):
    user = store.find_by_id("user", current_user["id"])
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            user[key] = value
    return sanitize(store.save("user", user))


@app.put("/api/auth/change-password")
def change_password(
    payload: ChangePasswordRequest, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)
):
    user = store.find_by_id("user", current_user["id"])
    if not verify_password(payload.current_password, user.get("password_hash", "")):
        raise InvalidInputError("Current password is incorrect")
    user["password_hash"] = hash_password(payload.new_password)
    store.save("user", user)
    return {"message": "Password updated"}


# Caretaker Routes
@app.get("/api/caretakers/available")
def available_caretakers(
    specialization: Optional[ServiceType] = None,
    store: EntityStore = Depends(get_store),
):
    return [sanitize(c) for c in CaretakerService(store).list_available(specialization)]


@app.get("/api/caretakers/{caretaker_id}")
def get_caretaker(caretaker_id: str, store: EntityStore = Depends(get_store)):
    result = CaretakerService(store).get_with_feedback(caretaker_id)
    return {"caretaker": sanitize(result["caretaker"]), "feedbacks": [sanitize(f) for f in result["feedbacks"]]}


@app.post("/api/caretakers", status_code=201)
def create_caretaker(
    payload: CaretakerCreate, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)
):
    return sanitize(CaretakerService(store).create(payload))


@app.put("/api/caretakers/{caretaker_id}")
def update_caretaker(
    caretaker_id: str,
    payload: CaretakerUpdate,
    admin=Depends(require_role("admin")),
    store: EntityStore = Depends(get_store),
):
    return sanitize(CaretakerService(store).update(caretaker_id, payload))


@app.patch("/api/caretakers/{caretaker_id}/availability")
def update_availability(
    caretaker_id: str,
    payload: AvailabilityRequest,
    admin=Depends(require_role("admin")),
    store: EntityStore = Depends(get_store),
):
    return sanitize(CaretakerService(store).set_availability(caretaker_id, payload.availability))


@app.delete("/api/caretakers/{caretaker_id}")
def delete_caretaker(caretaker_id: str, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    CaretakerService(store).deactivate(caretaker_id)
    return {"message": "Caretaker deactivated successfully"}


# Booking Routes
@app.post("/api/bookings", status_code=201)
def create_booking(payload: BookingCreate, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return sanitize(BookingService(store).create(current_user, payload))


@app.get("/api/bookings/my/history")
def my_bookings(current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return [sanitize(b) for b in BookingService(store).for_user(current_user)]


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    result = BookingService(store).get(current_user, booking_id)
    return {"booking": sanitize(result["booking"]), "payment": sanitize(result["payment"])}


@app.patch("/api/bookings/{booking_id}/status")
def update_booking_status(
    booking_id: str,
    payload: StatusUpdateRequest,
    current_user=Depends(get_current_user),
    store: EntityStore = Depends(get_store),
):
    return sanitize(BookingService(store).update_status(current_user, booking_id, payload.status))


@app.post("/api/bookings/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    payload: CancelRequest,
    current_user=Depends(get_current_user),
    store: EntityStore = Depends(get_store),
):
    return sanitize(BookingService(store).cancel(current_user, booking_id, payload.reason))


# Payment Routes
@app.post("/api/payments", status_code=201)
def create_payment(payload: PaymentCreate, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return sanitize(PaymentService(store).create(current_user, payload))


@app.post("/api/payments/{payment_id}/process")
def process_payment(
    payment_id: str,
    payload: PaymentProcess,
    current_user=Depends(get_current_user),
    store: EntityStore = Depends(get_store),
):
    return sanitize(PaymentService(store).process(current_user, payment_id, payload))


@app.post("/api/payments/{payment_id}/fail")
def fail_payment(
    payment_id: str,
    payload: PaymentFailureRequest,
    current_user=Depends(get_current_user),
    store: EntityStore = Depends(get_store),
):
    return sanitize(PaymentService(store).fail(current_user, payment_id, payload.reason))


@app.post("/api/payments/{payment_id}/refund")
def refund_payment(
    payment_id: str,
    payload: RefundRequest,
    admin=Depends(require_role("admin")),
    store: EntityStore = Depends(get_store),
):
    return sanitize(PaymentService(store).refund(admin, payment_id, payload))


@app.get("/api/payments/booking/{booking_id}")
def payment_for_booking(booking_id: str, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return sanitize(PaymentService(store).for_booking(current_user, booking_id))


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return sanitize(PaymentService(store).get(current_user, payment_id))


# Feedback Routes
@app.post("/api/feedback", status_code=201)
def submit_feedback(payload: FeedbackCreate, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return sanitize(FeedbackService(store).submit(current_user, payload))


@app.get("/api/feedback/my")
def my_feedback(current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    return [sanitize(f) for f in FeedbackService(store).for_user(current_user)]


@app.get("/api/feedback/caretaker/{caretaker_id}")
def caretaker_feedback(caretaker_id: str, store: EntityStore = Depends(get_store)):
    summary = FeedbackService(store).caretaker_summary(caretaker_id)
    summary["feedbacks"] = [sanitize(f) for f in summary["feedbacks"]]
    return summary


@app.put("/api/feedback/{feedback_id}")
def update_feedback(
    feedback_id: str,
    payload: FeedbackUpdate,
    current_user=Depends(get_current_user),
    store: EntityStore = Depends(get_store),
):
    return sanitize(FeedbackService(store).update(current_user, feedback_id, payload))


@app.delete("/api/feedback/{feedback_id}")
def delete_feedback(feedback_id: str, current_user=Depends(get_current_user), store: EntityStore = Depends(get_store)):
    FeedbackService(store).delete(current_user, feedback_id)
    return {"message": "Feedback deleted successfully"}


# Admin Routes
@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    result = AdminService(store).dashboard_stats()
    result["recent_bookings"] = [sanitize(b) for b in result["recent_bookings"]]
    return result


@app.post("/api/admin/caretakers/{caretaker_id}/verify")
def verify_caretaker(caretaker_id: str, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    return sanitize(AdminService(store).verify_caretaker(admin, caretaker_id))


@app.post("/api/admin/caretakers/{caretaker_id}/unverify")
def unverify_caretaker(caretaker_id: str, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    return sanitize(AdminService(store).unverify_caretaker(admin, caretaker_id))


@app.post("/api/admin/users/{user_id}/deactivate")
def deactivate_user(user_id: str, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    AdminService(store).deactivate_user(admin, user_id)
    return {"message": "User deactivated successfully"}


@app.post("/api/admin/users/{user_id}/activate")
def activate_user(user_id: str, admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    AdminService(store).activate_user(admin, user_id)
    return {"message": "User activated successfully"}


@app.post("/api/admin/bookings/{booking_id}/assign")
def assign_caretaker(
    booking_id: str,
    payload: AssignCaretakerRequest,
    admin=Depends(require_role("admin")),
    store: EntityStore = Depends(get_store),
):
    return sanitize(BookingService(store).assign_caretaker(admin, booking_id, payload.caretaker_id))


@app.post("/api/admin/reconcile")
def reconcile_state(admin=Depends(require_role("admin")), store: EntityStore = Depends(get_store)):
    report = reconcile(store)
    return {"changed": report.changed, **asdict(report)}


# Bootstrap route for first deployment
@app.post("/init/bootstrap")
def bootstrap_admin(store: EntityStore = Depends(get_store)):
    """Create the first admin from BOOTSTRAP_ADMIN_EMAIL / BOOTSTRAP_ADMIN_PASSWORD if none exists."""
    if store.count("user", {"role": "admin"}) > 0:
        raise HTTPException(status_code=400, detail="Admin already exists")
    store.create(
        "user",
        UserSchema(
            name="Administrator",
            email=config.BOOTSTRAP_ADMIN_EMAIL,
            password_hash=hash_password(config.BOOTSTRAP_ADMIN_PASSWORD),
            role="admin",
        ),
    )
    logger.info("Bootstrap admin %s created", config.BOOTSTRAP_ADMIN_EMAIL)
    return {"message": "Admin created", "email": config.BOOTSTRAP_ADMIN_EMAIL}


# Utility endpoints
@app.get("/")
def root():
    return {"success": True, "message": "Caretaker Service API is running", "version": app.version}


@app.get("/test")
def test_database():
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
