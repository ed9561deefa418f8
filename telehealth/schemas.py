from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Generic, TypeVar
from datetime import datetime
from math import ceil

T = TypeVar("T")


def _blank_to_none(v):
	if isinstance(v, str) and not v.strip():
		return None
	return v


class CamelModel(BaseModel):
	class Config:
		alias_generator = to_camel
		populate_by_name = True
		from_attributes = True


class Envelope(CamelModel, Generic[T]):
	success: bool = True
	data: Optional[T] = None
	message: Optional[str] = None


class Pagination(CamelModel):
	total: int
	page: int
	pages: int
	has_next: bool
	has_prev: bool


def page_info(total: int, page: int, limit: int) -> dict:
	pages = ceil(total / limit) if total else 0
	return {"total": total, "page": page, "pages": pages, "has_next": page < pages, "has_prev": page > 1}


# negotiation

class NegotiationMessageOut(CamelModel):
	sender: str
	message: str
	proposed_fee: Optional[float] = None
	currency: Optional[str] = None
	timestamp: datetime


class NegotiationSummary(CamelModel):
	id: int
	name: str
	email: Optional[str] = None
	proposed_fee: Optional[float] = None
	agreed_fee: Optional[float] = None
	currency: str
	commission: float
	earning_negotiation_status: str


class NegotiationOut(NegotiationSummary):
	earning_negotiation_history: List[NegotiationMessageOut] = []


class NegotiationPage(CamelModel):
	doctors: List[NegotiationSummary]
	total: int
	page: int
	pages: int


class NegotiationUpdate(CamelModel):
	message: Optional[str] = None
	proposed_fee: Optional[float] = None
	currency: Optional[str] = None
	commission: Optional[float] = None
	status: Optional[str] = None

	@field_validator("message", "proposed_fee", "currency", "commission", "status", mode="before")
	@classmethod
	def blank_to_none(cls, v):
		return _blank_to_none(v)


class AgreeIn(CamelModel):
	agreed_fee: float
	commission: Optional[float] = None

	@field_validator("commission", mode="before")
	@classmethod
	def blank_to_none(cls, v):
		return _blank_to_none(v)


# doctors

class DayAvailability(CamelModel):
	day: str
	slots: List[str] = []


class AvailabilityIn(CamelModel):
	availability: List[DayAvailability]


class TimezoneIn(CamelModel):
	timezone: str


class UserBrief(CamelModel):
	id: int
	name: str
	email: Optional[str] = None
	specialization: Optional[str] = None


class DoctorOut(CamelModel):
	id: int
	name: str
	email: Optional[str] = None
	specialization: Optional[str] = None
	qualifications: Optional[str] = None
	timezone: Optional[str] = None
	agreed_fee: Optional[float] = None
	currency: str
	earning_negotiation_status: str
	average_rating: float = 0
	total_reviews: int = 0
	rating_distribution: Optional[Dict[str, int]] = None


class DoctorProfileOut(DoctorOut):
	availability: List[DayAvailability] = []


# appointments and payments

class AppointmentDataIn(CamelModel):
	date: str
	slot: str
	patient_name: str = Field(min_length=1)
	age_group: str = Field(min_length=1)
	gender: str = Field(min_length=1)
	problem: str = Field(min_length=1)


class ConfirmAppointmentData(CamelModel):
	date: Optional[str] = None
	slot: Optional[str] = None
	patient_name: Optional[str] = None
	age_group: Optional[str] = None
	gender: Optional[str] = None
	problem: Optional[str] = None


class CreateIntentIn(CamelModel):
	amount: float = Field(gt=0)
	currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
	doctor_id: int
	appointment_data: AppointmentDataIn


class IntentOut(CamelModel):
	client_secret: str
	payment_intent_id: str
	amount: float
	currency: str
	doctor: UserBrief


class ConfirmIn(CamelModel):
	payment_intent_id: str = Field(min_length=1)
	appointment_data: Optional[ConfirmAppointmentData] = None


class BookingRequest(CamelModel):
	doctor_id: int
	appointment_data: AppointmentDataIn


class AppointmentOut(CamelModel):
	id: int
	patient_id: int
	doctor_id: int
	date: datetime
	end_date: datetime
	timezone: str
	status: str
	cancelled_by: Optional[int] = None
	cancellation_reason: Optional[str] = None
	video_call_link: Optional[str] = None
	notes: Optional[str] = None
	payment_status: str
	payment_intent_id: Optional[str] = None
	payment_method: str
	stripe_charge_id: Optional[str] = None
	payment_timestamp: Optional[datetime] = None
	refund_id: Optional[str] = None
	refund_timestamp: Optional[datetime] = None
	refund_reason: Optional[str] = None
	patient_name: str
	age_group: str
	gender: str
	problem: str
	fee: float
	currency: str
	doctor: Optional[UserBrief] = None
	patient: Optional[UserBrief] = None
	created_at: Optional[datetime] = None


class AppointmentPage(CamelModel):
	appointments: List[AppointmentOut]
	pagination: Pagination


class CancelIn(CamelModel):
	reason: Optional[str] = None


class NotesIn(CamelModel):
	notes: Optional[str] = None


class VideoCallOut(CamelModel):
	video_call_link: str


class RefundIn(CamelModel):
	appointment_id: int
	reason: Optional[str] = None


class RefundOut(CamelModel):
	refund_id: str
	amount: float
	currency: str


# reviews

class ReviewIn(CamelModel):
	doctor_id: int
	rating: int
	review: str
	appointment_id: Optional[int] = None
	is_anonymous: bool = False


class ReviewUpdate(CamelModel):
	rating: Optional[int] = None
	review: Optional[str] = None
	is_anonymous: Optional[bool] = None


class ModerateIn(CamelModel):
	is_approved: bool


class ReviewOut(CamelModel):
	id: int
	doctor_id: int
	patient_id: int
	appointment_id: Optional[int] = None
	rating: int
	review: str
	is_anonymous: bool
	is_approved: bool
	patient_name: Optional[str] = None
	created_at: Optional[datetime] = None


class RatingStats(CamelModel):
	average_rating: float
	total_reviews: int
	distribution: Dict[str, int]


class ReviewPage(CamelModel):
	reviews: List[ReviewOut]
	pagination: Pagination
	rating_stats: Optional[RatingStats] = None


class EligibleAppointmentsOut(CamelModel):
	eligible_appointments: List[AppointmentOut]
	has_general_review: bool
	can_give_general_review: bool


# notifications

class NotificationOut(CamelModel):
	id: int
	type: str
	message: str
	appointment_id: Optional[int] = None
	is_read: bool
	created_at: Optional[datetime] = None
