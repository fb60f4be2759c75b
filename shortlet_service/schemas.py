from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional
import datetime


# --- Bookings ---

class BookingBase(BaseModel):
    property_id: int
    check_in: datetime.date
    check_out: datetime.date


class BookingCreate(BookingBase):
    # guest_user_id will come from the JWT token
    pass


class BookingRead(BookingBase):
    id: int
    guest_user_id: int
    host_user_id: int
    nights: int
    nightly_price_minor: int
    cleaning_fee_minor: int
    deposit_minor: int
    total_amount_minor: int
    currency: str
    status: str
    respond_by: Optional[datetime.datetime] = None
    expires_at: Optional[datetime.datetime] = None
    refund_required: bool = False
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class HostInboxItem(BookingRead):
    inbox_filter: str


class BookingRespond(BaseModel):
    # 'approve' is the legacy spelling of 'accept'
    action: Literal["accept", "decline", "approve"]
    reason: Optional[str] = Field(default=None, max_length=280)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=280)


# --- Availability ---

class UnavailableRangeRead(BaseModel):
    start: datetime.date
    end: datetime.date
    source: str
    booking_id: Optional[int] = None

    class Config:
        from_attributes = True


class ConflictReportRead(BaseModel):
    has_conflict: bool
    conflicting_dates: List[datetime.date]
    conflicting_ranges: List[UnavailableRangeRead]
    prep_days: int
    messages: List[str] = []


class AvailabilityRead(BaseModel):
    property_id: int
    window_start: datetime.date
    window_end: datetime.date
    blocked_ranges: List[UnavailableRangeRead]
    booked_ranges: List[UnavailableRangeRead]
    prep_days: int
    min_nights: int
    max_nights: Optional[int] = None


class QuoteRead(BaseModel):
    property_id: int
    check_in: datetime.date
    check_out: datetime.date
    nights: int
    nightly_price_minor: int
    subtotal_minor: int
    cleaning_fee_minor: int
    deposit_minor: int
    total_amount_minor: int
    currency: str
    available: bool
    # Booking-rule code such as MIN_NIGHTS_NOT_MET or DATES_UNAVAILABLE
    unavailable_reason: Optional[str] = None
    next_valid_check_out: Optional[datetime.date] = None


# --- Host settings and blocks ---

class ShortletSettingsBase(BaseModel):
    booking_mode: Literal["instant", "request"] = "request"
    nightly_price_minor: Optional[int] = Field(default=None, ge=0)
    cleaning_fee_minor: int = Field(default=0, ge=0)
    deposit_minor: int = Field(default=0, ge=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    min_nights: int = Field(default=1, ge=1)
    max_nights: Optional[int] = Field(default=None, ge=1)
    advance_notice_hours: int = Field(default=0, ge=0)
    prep_days: int = Field(default=0, ge=0)
    cancellation_policy: Literal["flexible_24h", "flexible_48h", "moderate_5d", "strict"] = "flexible_48h"
    checkin_time: Optional[str] = None
    checkout_time: Optional[str] = None

    @model_validator(mode="after")
    def check_night_bounds(self):
        if self.max_nights is not None and self.max_nights < self.min_nights:
            raise ValueError("max_nights must be at least min_nights")
        return self


class ShortletSettingsUpdate(ShortletSettingsBase):
    pass


class ShortletSettingsRead(ShortletSettingsBase):
    property_id: int
    host_user_id: int
    cancellation_label: str
    free_cancellation: bool

    class Config:
        from_attributes = True


class BlockCreate(BaseModel):
    date_from: datetime.date
    date_to: datetime.date
    reason: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def check_range(self):
        if self.date_to <= self.date_from:
            raise ValueError("date_to must be after date_from")
        return self


class BlockRead(BlockCreate):
    id: int
    property_id: int

    class Config:
        from_attributes = True


# --- Search ---

class SearchResultItem(BaseModel):
    property_id: int
    booking_mode: str
    nightly_price_minor: Optional[int] = None
    currency: str
    cancellation_policy: str
    cancellation_label: str
    free_cancellation: bool
    min_nights: int
    total_amount_minor: Optional[int] = None


class SearchPage(BaseModel):
    items: List[SearchResultItem]
    total: int
    offset: int
    limit: int
    next_cursor: Optional[str] = None
    mode: str


# --- Payments ---

class PaymentWebhook(BaseModel):
    reference: str = Field(min_length=1, max_length=100)
    booking_id: int
    status: str
    amount_minor: int = Field(default=0, ge=0)
    provider: Optional[str] = None


class PaymentRead(BaseModel):
    reference: str
    booking_id: int
    status: str
    amount_minor: int
    provider: Optional[str] = None

    class Config:
        from_attributes = True


class ReturnStatusRead(BaseModel):
    booking_id: int
    booking_status: str
    payment_status: Optional[str] = None
    ui_state: str
    should_poll: bool
    stop_reason: str
    message: Optional[str] = None
