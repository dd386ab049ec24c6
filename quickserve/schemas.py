from datetime import datetime
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .models import BookingStatus, PaymentMethod, UserRole, UserStatus

T = TypeVar("T")


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


# ---- Categories ----

class CreateCategory(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    sort_order: int = 0


class UpdateCategory(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryResponse(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True
    active_workers_count: int = 0


# ---- Users ----

class UpdateProfile(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    avatar_url: Optional[str] = Field(default=None, max_length=500, pattern=r"^https?://")
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class AdminUpdateUser(BaseModel):
    status: Optional[UserStatus] = None
    role: Optional[UserRole] = None


class UserResponse(ORMModel):
    id: str
    phone: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    created_at: datetime


class WorkerSummary(ORMModel):
    id: str
    verification_status: str
    is_online: bool
    average_rating: float
    total_reviews: int
    total_jobs_completed: int


class ProfileResponse(UserResponse):
    worker: Optional[WorkerSummary] = None


# ---- Workers ----

class WorkerServiceIn(BaseModel):
    category_id: str
    base_price: float = Field(gt=0)
    price_unit: Literal["per_job", "per_hour"] = "per_job"
    description: Optional[str] = Field(default=None, max_length=200)


class RegisterWorker(BaseModel):
    bio: Optional[str] = Field(default=None, max_length=500)
    services: List[WorkerServiceIn] = Field(min_length=1)


class UpdateWorkerLocation(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    is_online: Optional[bool] = None


class RejectWorker(BaseModel):
    reason: Optional[str] = None


class WorkerServiceResponse(ORMModel):
    id: str
    category_id: str
    base_price: float
    price_unit: str
    description: Optional[str] = None
    is_active: bool


class WorkerResponse(ORMModel):
    id: str
    user_id: str
    bio: Optional[str] = None
    verification_status: str
    is_online: bool
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    average_rating: float
    total_reviews: int
    total_jobs_completed: int
    services: List[WorkerServiceResponse] = []


class MatchResult(BaseModel):
    id: str
    user_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    average_rating: float
    total_reviews: int
    total_jobs_completed: int
    current_latitude: float
    current_longitude: float
    distance_km: float


# ---- Bookings ----

class CreateBookingRequest(BaseModel):
    category_id: str
    worker_id: Optional[str] = None  # customer may request a specific worker
    description: str = Field(min_length=10, max_length=1000)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str = Field(min_length=5, max_length=500)
    scheduled_at: Optional[datetime] = None  # None = immediate


class UpdateBookingStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: BookingStatus
    final_price: Optional[float] = Field(default=None, alias="finalPrice")


class BookingResponse(ORMModel):
    id: str
    customer_id: str
    worker_id: Optional[str] = None
    category_id: str
    description: str
    latitude: float
    longitude: float
    address: str
    status: str
    estimated_price: Optional[float] = None
    final_price: Optional[float] = None
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


# ---- Payments ----

class InitiatePayment(BaseModel):
    booking_id: str
    method: PaymentMethod
    phone: Optional[str] = None  # required for mobile money


class PaymentResponse(ORMModel):
    id: str
    booking_id: str
    amount: float
    method: str
    status: str
    provider_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class InitiatePaymentResponse(BaseModel):
    payment: PaymentResponse
    message: str


class MomoWebhook(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_id: str = Field(alias="transactionId")
    status: str
    external_id: Optional[str] = Field(default=None, alias="externalId")


# ---- Reviews ----

class CreateReview(BaseModel):
    booking_id: str
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewResponse(ORMModel):
    id: str
    booking_id: str
    customer_id: str
    worker_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class WorkerReviewsPage(Page[ReviewResponse]):
    rating_distribution: dict[int, int]


class WorkerProfileResponse(WorkerResponse):
    reviews: List[ReviewResponse] = []


# ---- Notifications ----

class NotificationResponse(ORMModel):
    id: str
    type: str
    title: str
    body: str
    data: Optional[dict] = None
    is_read: bool
    created_at: datetime


class NotificationPage(Page[NotificationResponse]):
    unread_count: int


# ---- Admin ----

class CategoryDetailResponse(CategoryResponse):
    workers: List[WorkerResponse] = []


class AdminUserDetail(ProfileResponse):
    recent_bookings: List[BookingResponse] = []
    recent_reviews: List[ReviewResponse] = []


class AdminBookingDetail(BookingResponse):
    payment: Optional[PaymentResponse] = None
    review: Optional[ReviewResponse] = None


class AdminWorkerDetail(WorkerResponse):
    user: UserResponse
    recent_bookings: List[BookingResponse] = []
    recent_reviews: List[ReviewResponse] = []
