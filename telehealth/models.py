from sqlalchemy import Column, Integer, String, Float, Boolean, Text, ForeignKey, DateTime, JSON, Index, UniqueConstraint, func, text
from sqlalchemy.orm import relationship
from telehealth.db import Base

ROLES = ("patient", "doctor", "admin")
NEGOTIATION_STATUSES = ("pending", "negotiating", "agreed")
APPOINTMENT_STATUSES = ("requested", "accepted", "completed", "cancelled", "missed")
ACTIVE_APPOINTMENT_STATUSES = ("requested", "accepted")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

_ACTIVE_SLOT = text("status IN ('requested', 'accepted')")
_WITH_APPOINTMENT = text("appointment_id IS NOT NULL")
_WITHOUT_APPOINTMENT = text("appointment_id IS NULL")


def empty_distribution() -> dict:
	return {str(r): 0 for r in range(1, 6)}


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True)
	name = Column(String, nullable=False)
	email = Column(String, unique=True)
	phone = Column(String)
	role = Column(String, nullable=False, default="patient")
	gender = Column(String)
	specialization = Column(String)
	qualifications = Column(String)
	timezone = Column(String)

	proposed_fee = Column(Float)
	agreed_fee = Column(Float)
	currency = Column(String, nullable=False, default="PKR")
	commission = Column(Float, nullable=False, default=0)
	earning_negotiation_status = Column(String, nullable=False, default="pending")

	average_rating = Column(Float, nullable=False, default=0)
	total_reviews = Column(Integer, nullable=False, default=0)
	rating_distribution = Column(JSON, default=empty_distribution)

	created_at = Column(DateTime, server_default=func.now())

	earning_negotiation_history = relationship("NegotiationMessage", back_populates="doctor", order_by="NegotiationMessage.id")
	availability = relationship("DoctorAvailability", back_populates="doctor", cascade="all, delete-orphan", order_by="DoctorAvailability.id")


class NegotiationMessage(Base):
	__tablename__ = "negotiation_messages"
	id = Column(Integer, primary_key=True)
	doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	sender = Column(String, nullable=False)
	message = Column(Text, nullable=False, default="")
	proposed_fee = Column(Float)
	currency = Column(String)
	timestamp = Column(DateTime, nullable=False)

	doctor = relationship("User", back_populates="earning_negotiation_history")


class DoctorAvailability(Base):
	__tablename__ = "doctor_availability"
	__table_args__ = (UniqueConstraint("doctor_id", "day", "slot", name="uq_availability_slot"),)
	id = Column(Integer, primary_key=True)
	doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	day = Column(String, nullable=False)
	slot = Column(String, nullable=False)

	doctor = relationship("User", back_populates="availability")


class Appointment(Base):
	__tablename__ = "appointments"
	# at most one active appointment per doctor and slot start
	__table_args__ = (
		Index("uq_appointments_active_slot", "doctor_id", "date", unique=True,
			sqlite_where=_ACTIVE_SLOT, postgresql_where=_ACTIVE_SLOT),
	)
	id = Column(Integer, primary_key=True)
	patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	date = Column(DateTime, nullable=False)
	end_date = Column(DateTime, nullable=False)
	timezone = Column(String, nullable=False)
	status = Column(String, nullable=False, default="requested")
	cancelled_by = Column(Integer, ForeignKey("users.id"))
	cancellation_reason = Column(Text)
	video_call_link = Column(String)
	notes = Column(Text)
	prescription_id = Column(Integer)

	payment_status = Column(String, nullable=False, default="pending")
	payment_intent_id = Column(String, unique=True)
	payment_method = Column(String, nullable=False, default="stripe")
	stripe_charge_id = Column(String)
	payment_timestamp = Column(DateTime)
	refund_id = Column(String)
	refund_timestamp = Column(DateTime)
	refund_reason = Column(Text)

	patient_name = Column(String, nullable=False)
	age_group = Column(String, nullable=False)
	gender = Column(String, nullable=False)
	problem = Column(Text, nullable=False)
	fee = Column(Float, nullable=False, default=0)
	currency = Column(String, nullable=False, default="PKR")

	created_at = Column(DateTime, server_default=func.now())
	updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

	patient = relationship("User", foreign_keys=[patient_id])
	doctor = relationship("User", foreign_keys=[doctor_id])


class Review(Base):
	__tablename__ = "reviews"
	# one review per appointment, one general review per doctor/patient pair
	__table_args__ = (
		Index("uq_reviews_appointment", "doctor_id", "patient_id", "appointment_id", unique=True,
			sqlite_where=_WITH_APPOINTMENT, postgresql_where=_WITH_APPOINTMENT),
		Index("uq_reviews_general", "doctor_id", "patient_id", unique=True,
			sqlite_where=_WITHOUT_APPOINTMENT, postgresql_where=_WITHOUT_APPOINTMENT),
	)
	id = Column(Integer, primary_key=True)
	doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	appointment_id = Column(Integer, ForeignKey("appointments.id"))
	rating = Column(Integer, nullable=False)
	review = Column(Text, nullable=False)
	is_anonymous = Column(Boolean, nullable=False, default=False)
	is_approved = Column(Boolean, nullable=False, default=True)
	created_at = Column(DateTime, server_default=func.now())
	updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

	patient = relationship("User", foreign_keys=[patient_id])
	doctor = relationship("User", foreign_keys=[doctor_id])


class Notification(Base):
	__tablename__ = "notifications"
	id = Column(Integer, primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	type = Column(String, nullable=False, default="alert")
	message = Column(Text, nullable=False)
	appointment_id = Column(Integer, ForeignKey("appointments.id"))
	is_read = Column(Boolean, nullable=False, default=False)
	created_at = Column(DateTime, server_default=func.now())

	user = relationship("User")


class AuditLog(Base):
	__tablename__ = "audit_logs"
	id = Column(Integer, primary_key=True)
	user_id = Column(Integer, ForeignKey("users.id"))
	action = Column(String, nullable=False)
	target = Column(String, nullable=False)
	target_id = Column(Integer)
	details = Column(Text)
	created_at = Column(DateTime, server_default=func.now())


class PaymentEvent(Base):
	__tablename__ = "payment_events"
	id = Column(Integer, primary_key=True)
	event_id = Column(String, nullable=False, unique=True)
	type = Column(String, nullable=False)
	payment_intent_id = Column(String, index=True)
	received_at = Column(DateTime, server_default=func.now())
