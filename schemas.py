"""
Database Schemas for the Blood Donation API

Each record model maps to a MongoDB collection:
- User -> "user"
- DonationRequest -> "request"
- Payment -> "payments"
- Blog -> "blogs"

Request bodies are declared next to the record they write and reject
unknown fields.
"""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["donor", "volunteer", "admin"]
UserStatus = Literal["active", "blocked"]
DonationStatus = Literal["pending", "inprogress", "done", "canceled"]
BlogStatus = Literal["draft", "published"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Body(BaseModel):
    model_config = ConfigDict(extra="forbid")


# Users (registration + roles)
class User(BaseModel):
    email: EmailStr = Field(..., description="Unique email address")
    name: Optional[str] = None
    photoURL: Optional[str] = Field(None, description="Avatar image URL")
    blood_group: Optional[str] = None
    district: Optional[str] = None
    upazila: Optional[str] = Field(None, description="Sub-district")
    role: Role = Field("donor", description="Role-based access")
    status: UserStatus = "active"
    createdAt: datetime = Field(default_factory=utcnow)


class UserCreate(Body):
    email: EmailStr
    name: Optional[str] = None
    photoURL: Optional[str] = None
    blood_group: Optional[str] = None
    district: Optional[str] = None
    upazila: Optional[str] = None


class UserProfileUpdate(Body):
    name: Optional[str] = None
    photoURL: Optional[str] = None
    blood_group: Optional[str] = None
    district: Optional[str] = None
    upazila: Optional[str] = None


# Donation requests
class DonationRequest(BaseModel):
    requester_name: Optional[str] = None
    requester_email: EmailStr
    recipient_name: str
    recipient_district: str
    recipient_upazila: str
    hospital_name: str
    full_address: Optional[str] = None
    blood_group: str
    donation_date: str
    donation_time: str
    request_message: Optional[str] = None
    donor_name: Optional[str] = None
    donor_email: Optional[EmailStr] = None
    donation_status: DonationStatus = "pending"
    createdAt: datetime = Field(default_factory=utcnow)


class DonationRequestCreate(Body):
    requester_name: Optional[str] = None
    recipient_name: str
    recipient_district: str
    recipient_upazila: str
    hospital_name: str
    full_address: Optional[str] = None
    blood_group: str
    donation_date: str
    donation_time: str
    request_message: Optional[str] = None


class DonationRequestUpdate(Body):
    recipient_name: Optional[str] = None
    recipient_district: Optional[str] = None
    recipient_upazila: Optional[str] = None
    hospital_name: Optional[str] = None
    full_address: Optional[str] = None
    blood_group: Optional[str] = None
    donation_date: Optional[str] = None
    donation_time: Optional[str] = None
    request_message: Optional[str] = None


class DonationStatusUpdate(Body):
    donation_status: DonationStatus


class DonateClaim(Body):
    donor_name: str


# Payments (funding)
class Payment(BaseModel):
    amount: float = Field(..., gt=0, description="Amount in currency units")
    donorEmail: Optional[EmailStr] = None
    donorName: str = "Anonymous"
    transactionId: str = Field(..., description="Gateway payment intent id, unique")
    paidAt: datetime = Field(default_factory=utcnow)


class CheckoutCreate(Body):
    donateAmount: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    donorName: Optional[str] = None


class PaymentConfirm(Body):
    sessionId: str


# Blogs
class Blog(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str
    thumbnail: Optional[str] = None
    content: str
    authorEmail: Optional[EmailStr] = None
    status: BlogStatus = "draft"
    createdAt: datetime = Field(default_factory=utcnow)


class BlogCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str
    thumbnail: Optional[str] = None
    content: str


class BlogStatusUpdate(Body):
    status: BlogStatus
