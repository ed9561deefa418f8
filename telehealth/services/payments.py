"""Paid booking flow: payment intent, confirmation, webhook and refund.

The appointment context travels with the payment intent as provider metadata
so the confirm step can rebuild the booking from a trusted source instead of
the client's copy.
"""
from datetime import datetime
from pydantic import BaseModel, ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.config import settings
from telehealth.errors import (
	AuthorizationError, ConflictError, NotFoundError, PaymentNotCompletedError,
	SlotConflictError, ValidationError,
)
from telehealth.integrations.payments import ProviderIntent, StripeGateway
from telehealth.logger import get_logger
from telehealth.schemas import ConfirmAppointmentData, CreateIntentIn, page_info
from telehealth.services import booking
from telehealth.services.audit import record_audit
from telehealth.services.notifications import notify

log = get_logger("payments")

METADATA_VALUE_LIMIT = 500


class BookingMetadata(BaseModel):
	doctor_id: int
	doctor_name: str
	patient_id: int
	patient_name: str
	appointment_date: str
	appointment_slot: str
	appointment_problem: str
	appointment_patient_name: str
	appointment_age_group: str
	appointment_gender: str
	original_amount: float
	original_currency: str
	booking_timestamp: str

	class Config:
		alias_generator = to_camel
		populate_by_name = True

	def to_metadata(self) -> dict[str, str]:
		# provider metadata only holds short strings
		return {k: str(v)[:METADATA_VALUE_LIMIT] for k, v in self.model_dump(by_alias=True).items()}

	@classmethod
	def from_metadata(cls, data: dict) -> "BookingMetadata":
		try:
			return cls.model_validate(dict(data or {}))
		except PydanticValidationError as e:
			fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
			raise ValidationError(f"Payment intent is missing booking details: {fields}")


def _minor_units(amount: float) -> int:
	return int(round(amount * 100))


def create_intent(db: Session, caller: Caller, gateway: StripeGateway, body: CreateIntentIn) -> dict:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can pay for appointments")
	doctor = booking.get_doctor(db, body.doctor_id)
	patient = db.query(models.User).filter(models.User.id == caller.id).first()
	data = body.appointment_data
	booking.check_bookable(db, doctor, data.date, data.slot)

	currency = (body.currency or settings.default_currency).upper()
	meta = BookingMetadata(
		doctor_id=doctor.id,
		doctor_name=doctor.name,
		patient_id=patient.id,
		patient_name=patient.name,
		appointment_date=data.date,
		appointment_slot=booking.normalize_slot(data.slot),
		appointment_problem=data.problem,
		appointment_patient_name=data.patient_name,
		appointment_age_group=data.age_group,
		appointment_gender=data.gender,
		original_amount=body.amount,
		original_currency=currency,
		booking_timestamp=datetime.utcnow().isoformat(),
	)
	intent = gateway.create_payment_intent(
		_minor_units(body.amount),
		currency,
		meta.to_metadata(),
		f"Consultation with Dr. {doctor.name} on {data.date} at {data.slot}",
	)
	log.info("Created payment intent %s for patient %s with doctor %s", intent.id, caller.id, doctor.id)
	record_audit(db, caller.id, "payment_intent_created", "payment_intent", details={
		"paymentIntentId": intent.id, "doctorId": doctor.id, "amount": body.amount, "currency": currency,
	})
	return {
		"client_secret": intent.client_secret,
		"payment_intent_id": intent.id,
		"amount": body.amount,
		"currency": currency,
		"doctor": doctor,
	}


def _compensate(db: Session, gateway: StripeGateway, intent: ProviderIntent, meta: BookingMetadata, reason: str):
	"""Refund a captured payment whose booking cannot be created, then report the conflict."""
	try:
		refund = gateway.create_refund(intent.id, reason=settings.stripe_refund_reason)
	except Exception:
		log.exception("Compensating refund for payment intent %s failed", intent.id)
		record_audit(db, meta.patient_id, "compensating_refund_failed", "payment_intent", details={
			"paymentIntentId": intent.id, "doctorId": meta.doctor_id,
			"date": meta.appointment_date, "slot": meta.appointment_slot, "reason": reason,
		})
		raise SlotConflictError(f"{reason}. Automatic refund failed; our team has been alerted and will refund you manually.")
	log.info("Refunded payment intent %s (%s): %s", intent.id, refund.id, reason)
	raise SlotConflictError(f"{reason}. Payment has been refunded.", refunded=True, refund_id=refund.id)


def _by_intent(db: Session, payment_intent_id: str) -> models.Appointment | None:
	return db.query(models.Appointment).filter(models.Appointment.payment_intent_id == payment_intent_id).first()


def confirm_payment(db: Session, caller: Caller, gateway: StripeGateway, payment_intent_id: str, data: ConfirmAppointmentData | None = None) -> models.Appointment:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can confirm payments")

	existing = _by_intent(db, payment_intent_id)
	if existing:
		if existing.patient_id != caller.id:
			raise AuthorizationError("Payment intent does not belong to this patient")
		return existing

	intent = gateway.retrieve_payment_intent(payment_intent_id)
	if intent is None:
		raise NotFoundError("Payment intent not found")
	if intent.status != "succeeded":
		raise PaymentNotCompletedError(intent.status)

	meta = BookingMetadata.from_metadata(intent.metadata)
	if meta.patient_id != caller.id:
		raise AuthorizationError("Payment intent does not belong to this patient")
	if data is not None:
		if data.date and data.date[:10] != meta.appointment_date[:10]:
			raise ValidationError("appointmentData.date does not match the paid booking")
		if data.slot and booking.normalize_slot(data.slot) != booking.normalize_slot(meta.appointment_slot):
			raise ValidationError("appointmentData.slot does not match the paid booking")

	# availability is re-read only after the provider reports success
	doctor = booking.get_doctor(db, meta.doctor_id)
	start, end = booking.slot_window(meta.appointment_date, meta.appointment_slot, doctor.timezone)
	if not booking.is_slot_offered(db, doctor, meta.appointment_date, meta.appointment_slot):
		_compensate(db, gateway, intent, meta, "Selected slot is no longer available")

	try:
		appt = booking.reserve_appointment(
			db, doctor, start, end,
			patient_id=caller.id,
			status="requested",
			payment_status="paid",
			payment_intent_id=intent.id,
			payment_method="stripe",
			stripe_charge_id=intent.latest_charge,
			payment_timestamp=datetime.utcnow(),
			patient_name=meta.appointment_patient_name,
			age_group=meta.appointment_age_group,
			gender=meta.appointment_gender,
			problem=meta.appointment_problem,
			fee=meta.original_amount,
			currency=meta.original_currency,
		)
	except SlotConflictError:
		# a concurrent confirm of this same intent is not a conflict
		same = _by_intent(db, intent.id)
		if same:
			return same
		_compensate(db, gateway, intent, meta, "Slot is no longer available")

	log.info("Booked appointment %s for payment intent %s", appt.id, intent.id)
	record_audit(db, caller.id, "appointment_booked_with_payment", "appointment", appt.id, {
		"paymentIntentId": intent.id, "doctorId": doctor.id, "fee": appt.fee, "currency": appt.currency,
	})
	notify(
		db, doctor.id,
		f"New paid appointment booked by {meta.appointment_patient_name} for {meta.appointment_date} at {meta.appointment_slot}",
		type="appointment", appointment_id=appt.id,
	)
	return appt


def handle_webhook(db: Session, gateway: StripeGateway, payload: bytes, signature: str | None) -> dict:
	try:
		event = gateway.construct_event(payload, signature)
	except ValidationError as e:
		log.warning("Rejected webhook: %s", e.message)
		raise

	event_id = event.get("id")
	event_type = event.get("type", "")
	obj = (event.get("data") or {}).get("object") or {}
	intent_id = obj.get("id") if event_type.startswith("payment_intent.") else None

	try:
		if event_id and db.query(models.PaymentEvent).filter(models.PaymentEvent.event_id == event_id).first():
			log.info("Duplicate webhook delivery %s ignored", event_id)
			return {"received": True}
		if event_id:
			db.add(models.PaymentEvent(event_id=event_id, type=event_type, payment_intent_id=intent_id))
		_apply_event(db, event_type, obj)
		db.commit()
	except Exception:
		db.rollback()
		log.exception("Webhook %s (%s) processing failed", event_id, event_type)
	return {"received": True}


def _apply_event(db: Session, event_type: str, obj: dict):
	if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
		log.info("Unhandled webhook event type %s", event_type)
		return
	appt = _by_intent(db, obj.get("id"))
	if not appt:
		log.info("No appointment for payment intent %s (%s)", obj.get("id"), event_type)
		return
	if event_type == "payment_intent.succeeded":
		if appt.payment_status == "refunded":
			return
		appt.payment_status = "paid"
		charge = obj.get("latest_charge")
		if isinstance(charge, dict):
			charge = charge.get("id")
		appt.stripe_charge_id = charge or appt.stripe_charge_id
		appt.payment_timestamp = appt.payment_timestamp or datetime.utcnow()
	elif appt.payment_status not in ("paid", "refunded"):
		appt.payment_status = "failed"
	log.info("Appointment %s payment status is %s after %s", appt.id, appt.payment_status, event_type)


def refund_payment(db: Session, caller: Caller, gateway: StripeGateway, appointment_id: int, reason: str | None = None) -> dict:
	if not caller.is_admin:
		raise AuthorizationError("Only admins can issue refunds")
	appt = db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
	if not appt:
		raise NotFoundError("Appointment not found")
	if appt.payment_status == "refunded":
		raise ConflictError("Payment has already been refunded")
	if not appt.payment_intent_id or appt.payment_status in ("pending", "failed"):
		raise ValidationError("No payment found for this appointment")

	# claim the row before touching the provider; refund_timestamp on a paid row marks a refund in flight
	claimed_at = datetime.utcnow()
	claimed = db.query(models.Appointment).filter(
		models.Appointment.id == appt.id,
		models.Appointment.payment_status == "paid",
		models.Appointment.refund_timestamp.is_(None),
	).update({models.Appointment.refund_timestamp: claimed_at}, synchronize_session=False)
	db.commit()
	if not claimed:
		db.refresh(appt)
		if appt.payment_status == "refunded":
			raise ConflictError("Payment has already been refunded")
		raise ConflictError("A refund for this payment is already in progress")

	try:
		refund = gateway.create_refund(appt.payment_intent_id, reason=reason)
	except Exception:
		db.query(models.Appointment).filter(
			models.Appointment.id == appt.id,
			models.Appointment.payment_status == "paid",
			models.Appointment.refund_timestamp == claimed_at,
		).update({models.Appointment.refund_timestamp: None}, synchronize_session=False)
		db.commit()
		raise

	try:
		db.query(models.Appointment).filter(models.Appointment.id == appt.id).update({
			models.Appointment.payment_status: "refunded",
			models.Appointment.status: "cancelled",
			models.Appointment.refund_id: refund.id,
			models.Appointment.refund_reason: reason or "Refunded by admin",
			models.Appointment.cancelled_by: caller.id,
		}, synchronize_session=False)
		db.commit()
	except Exception:
		db.rollback()
		log.exception("Refund %s issued for appointment %s but it could not be recorded", refund.id, appt.id)
		raise
	db.refresh(appt)

	log.info("Refunded appointment %s (%s)", appt.id, refund.id)
	record_audit(db, caller.id, "payment_refunded", "appointment", appt.id, {
		"refundId": refund.id, "amount": refund.amount / 100, "currency": refund.currency, "reason": reason,
	})
	notify(db, appt.patient_id, f"Your payment for the appointment on {appt.date:%Y-%m-%d} has been refunded", type="payment", appointment_id=appt.id)
	return {"refund_id": refund.id, "amount": refund.amount / 100, "currency": refund.currency.upper()}


def payment_history(db: Session, caller: Caller, page: int = 1, limit: int = 10) -> dict:
	if caller.role != "patient":
		raise AuthorizationError("Only patients have a payment history")
	page = max(page, 1)
	limit = min(max(limit, 1), 100)
	q = db.query(models.Appointment).filter(
		models.Appointment.patient_id == caller.id,
		models.Appointment.payment_status == "paid",
	)
	total = q.count()
	rows = q.order_by(models.Appointment.payment_timestamp.desc(), models.Appointment.id.desc()).offset((page - 1) * limit).limit(limit).all()
	return {"appointments": rows, "pagination": page_info(total, page, limit)}
