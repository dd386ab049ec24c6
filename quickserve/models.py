import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    WORKER = "WORKER"
    ADMIN = "ADMIN"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"  # soft-deleted by an admin
    SUSPENDED = "SUSPENDED"


class VerificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    WORKER_EN_ROUTE = "WORKER_EN_ROUTE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    MTN_MOMO = "MTN_MOMO"
    VODAFONE_CASH = "VODAFONE_CASH"


class PaymentStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    phone = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.CUSTOMER.value)
    status = Column(String, nullable=False, default=UserStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    worker = relationship("Worker", back_populates="user", uselist=False)


class ServiceCategory(Base):
    __tablename__ = "service_categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)


class Worker(Base):
    __tablename__ = "workers"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    bio = Column(String, nullable=True)

    verification_status = Column(String, nullable=False, default=VerificationStatus.PENDING.value, index=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    is_online = Column(Boolean, nullable=False, default=False)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)

    # derived, recomputed from reviews / completions
    average_rating = Column(Float, nullable=False, default=0.0)
    total_reviews = Column(Integer, nullable=False, default=0)
    total_jobs_completed = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="worker")
    services = relationship("WorkerService", back_populates="worker")


class WorkerService(Base):
    __tablename__ = "worker_services"
    __table_args__ = (UniqueConstraint("worker_id", "category_id", name="uq_worker_services_worker_category"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    worker_id = Column(String(36), ForeignKey("workers.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("service_categories.id"), nullable=False, index=True)
    base_price = Column(Float, nullable=False)
    price_unit = Column(String, nullable=False, default="per_job")  # per_job/per_hour
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    worker = relationship("Worker", back_populates="services")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)

    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    # null only while PENDING; never reassigned once set
    worker_id = Column(String(36), ForeignKey("workers.id"), nullable=True, index=True)
    category_id = Column(String(36), ForeignKey("service_categories.id"), nullable=False, index=True)

    description = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String, nullable=False)

    status = Column(String, nullable=False, default=BookingStatus.PENDING.value, index=True)

    estimated_price = Column(Float, nullable=True)
    final_price = Column(Float, nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    payment = relationship("Payment", back_populates="booking", uselist=False)
    review = relationship("Review", back_populates="booking", uselist=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    booking_id = Column(String(36), ForeignKey("bookings.id"), unique=True, nullable=False)

    amount = Column(Float, nullable=False)
    method = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)  # PROCESSING/COMPLETED/FAILED

    provider_ref = Column(String, nullable=True, unique=True, index=True)
    provider_response = Column(JSON, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="payment")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    booking_id = Column(String(36), ForeignKey("bookings.id"), unique=True, nullable=False)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    worker_id = Column(String(36), ForeignKey("workers.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="review")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # BOOKING_ACCEPTED, SERVICE_COMPLETED, ...
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
