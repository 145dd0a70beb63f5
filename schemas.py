"""
Database Schemas for the Caretaker Booking Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Caretaker -> "caretaker").

We will use these collections:
- user: customers and admins
- caretaker: caretaker profiles (created by admins)
- booking: a user's booking of one caretaker
- payment: payment attempts against a booking
- feedback: one rating per completed booking

Cross-collection references are stored as the referenced document's id string.
The *Create / *Update / *Process models at the bottom are the validated inputs
of the booking, payment and feedback operations.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
Specialization = Literal["child", "elderly", "both"]
ServiceType = Literal["child", "elderly"]
Availability = Literal["available", "busy", "unavailable"]
AvailabilitySource = Literal["booking", "admin"]
Gender = Literal["male", "female", "other"]
BookingStatus = Literal["pending", "confirmed", "in-progress", "completed", "cancelled"]
BookingPaymentStatus = Literal["pending", "paid", "refunded"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded"]
PaymentMethod = Literal["card", "upi", "netbanking", "wallet", "cash"]
PaymentGateway = Literal["razorpay", "stripe", "paypal", "manual"]

AVAILABILITY_VALUES = ("available", "busy", "unavailable")
BOOKING_STATUSES = ("pending", "confirmed", "in-progress", "completed", "cancelled")
TERMINAL_BOOKING_STATUSES = ("completed", "cancelled")
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "in-progress")


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "India"


class Certification(BaseModel):
    name: str
    issued_by: Optional[str] = None
    year: Optional[int] = None


class PatientDetails(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[str] = None
    medical_conditions: Optional[str] = None


class PaymentDetails(BaseModel):
    card_last4: Optional[str] = Field(None, max_length=4)
    card_brand: Optional[str] = None
    upi_id: Optional[str] = None
    bank_name: Optional[str] = None


class FeedbackCategories(BaseModel):
    professionalism: Optional[int] = Field(None, ge=1, le=5)
    punctuality: Optional[int] = Field(None, ge=1, le=5)
    communication: Optional[int] = Field(None, ge=1, le=5)
    care_quality: Optional[int] = Field(None, ge=1, le=5)


class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=400)
    role: Role = Field("user")
    is_active: bool = True


class Caretaker(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str
    age: int = Field(..., ge=18, le=70)
    gender: Gender
    address: Address = Field(default_factory=Address)
    specialization: Specialization
    experience: float = Field(..., ge=0)
    qualifications: Optional[str] = None
    certifications: List[Certification] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    availability: Availability = "available"
    # who set the flag last: the booking lifecycle or an admin
    availability_source: Optional[AvailabilitySource] = None
    hourly_rate: float = Field(..., ge=0)
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)
    bio: Optional[str] = Field(None, max_length=500)
    is_verified: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    is_active: bool = True


class Booking(BaseModel):
    user: str = Field(..., description="Reference to user _id")
    caretaker: str = Field(..., description="Reference to caretaker _id")
    service_type: ServiceType
    start_date: datetime
    end_date: datetime
    duration: float = Field(..., ge=1, description="Hours")
    total_amount: float = Field(..., ge=0)
    status: BookingStatus = "pending"
    payment_status: BookingPaymentStatus = "pending"
    special_requirements: Optional[str] = Field(None, max_length=500)
    patient_details: Optional[PatientDetails] = None
    address: Optional[Address] = None
    assigned_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Payment(BaseModel):
    user: str
    booking: str
    caretaker: str
    amount: float = Field(..., ge=0)
    currency: str = "INR"
    payment_method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    payment_gateway: PaymentGateway = "manual"
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    payment_details: Optional[PaymentDetails] = None
    paid_at: Optional[datetime] = None
    refund_amount: float = 0
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    failure_reason: Optional[str] = None


class Feedback(BaseModel):
    user: str
    caretaker: str
    booking: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    categories: Optional[FeedbackCategories] = None
    is_visible: bool = True


# Operation inputs

class BookingCreate(BaseModel):
    caretaker_id: str
    service_type: ServiceType
    start_date: datetime
    end_date: datetime
    duration: int = Field(..., ge=1)
    special_requirements: Optional[str] = Field(None, max_length=500)
    patient_details: Optional[PatientDetails] = None
    address: Optional[Address] = None


class PaymentCreate(BaseModel):
    booking_id: str
    payment_method: PaymentMethod
    payment_details: Optional[PaymentDetails] = None


class PaymentProcess(BaseModel):
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None


class RefundRequest(BaseModel):
    refund_amount: Optional[float] = Field(None, ge=0)
    refund_reason: Optional[str] = None


class FeedbackCreate(BaseModel):
    booking_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    categories: Optional[FeedbackCategories] = None


class FeedbackUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    categories: Optional[FeedbackCategories] = None


class CaretakerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    age: int = Field(..., ge=18, le=70)
    gender: Gender
    address: Address = Field(default_factory=Address)
    specialization: Specialization
    experience: float = Field(..., ge=0)
    qualifications: Optional[str] = None
    certifications: List[Certification] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    hourly_rate: float = Field(..., ge=0)
    bio: Optional[str] = Field(None, max_length=500)


class CaretakerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=70)
    gender: Optional[Gender] = None
    address: Optional[Address] = None
    specialization: Optional[Specialization] = None
    experience: Optional[float] = Field(None, ge=0)
    qualifications: Optional[str] = None
    certifications: Optional[List[Certification]] = None
    languages: Optional[List[str]] = None
    hourly_rate: Optional[float] = Field(None, ge=0)
    bio: Optional[str] = Field(None, max_length=500)
