"""Doctor earning negotiation between the admin team and a doctor.

The record lives on the doctor's user row; the transcript is an append-only
child table read back in insertion order. Admin and doctor writes are
last-write-wins per field, the transcript keeps every submission.
"""
from datetime import datetime
from math import ceil
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.config import settings
from telehealth.errors import AuthorizationError, NotFoundError, ValidationError
from telehealth.logger import get_logger
from telehealth.schemas import NegotiationUpdate

log = get_logger("negotiation")

PENDING = "pending"
NEGOTIATING = "negotiating"
AGREED = "agreed"


def _same_fee(a: float | None, b: float | None) -> bool:
	if a is None or b is None:
		return False
	return round(float(a), 2) == round(float(b), 2)


def next_status(current: str, agreed_fee: float | None, proposed_fee: float) -> str:
	"""Status after a fee update: only a fee that differs from the agreed one reopens talks."""
	if current == AGREED and agreed_fee and _same_fee(proposed_fee, agreed_fee):
		return AGREED
	return NEGOTIATING


def _format_fee(fee: float) -> str:
	return f"{fee:.2f}".rstrip("0").rstrip(".")


def _load_doctor(db: Session, doctor_id: int) -> models.User:
	doctor = db.query(models.User).filter(models.User.id == doctor_id, models.User.role == "doctor").first()
	if not doctor:
		raise NotFoundError("Doctor not found")
	return doctor


def _resolve_target(caller: Caller, doctor_id: int | None) -> int:
	if caller.role == "admin":
		if doctor_id is None:
			raise ValidationError("doctorId is required")
		return doctor_id
	if caller.role == "doctor":
		if doctor_id is not None and doctor_id != caller.id:
			raise AuthorizationError("Doctors can only access their own negotiation")
		return caller.id
	raise AuthorizationError("Only doctors and admins can access earning negotiations")


def get_negotiation(db: Session, caller: Caller, doctor_id: int | None = None) -> models.User:
	return _load_doctor(db, _resolve_target(caller, doctor_id))


def list_negotiations(db: Session, caller: Caller, status: str | None = None, page: int = 1, limit: int = 10) -> dict:
	if not caller.is_admin:
		raise AuthorizationError("Admin access required")
	if status and status not in models.NEGOTIATION_STATUSES:
		raise ValidationError(f"status must be one of {', '.join(models.NEGOTIATION_STATUSES)}")
	page = max(page, 1)
	limit = min(max(limit, 1), 100)
	q = db.query(models.User).filter(models.User.role == "doctor")
	if status:
		q = q.filter(models.User.earning_negotiation_status == status)
	total = q.count()
	doctors = q.order_by(models.User.name.asc(), models.User.id.asc()).offset((page - 1) * limit).limit(limit).all()
	return {"doctors": doctors, "total": total, "page": page, "pages": ceil(total / limit) if total else 1}


def post_update(db: Session, caller: Caller, doctor_id: int | None, update: NegotiationUpdate) -> models.User:
	"""Apply one admin or doctor submission and append exactly one transcript entry."""
	target_id = _resolve_target(caller, doctor_id)
	message = (update.message or "").strip()

	if caller.role == "doctor":
		if not message:
			raise ValidationError("Message is required")
		if update.commission is not None or update.status is not None:
			raise AuthorizationError("Only admins can change commission or status")
	elif not (message or update.proposed_fee is not None or update.currency or update.commission is not None or update.status):
		raise ValidationError("Nothing to update: provide message, proposedFee, currency, commission or status")

	if update.proposed_fee is not None and update.proposed_fee <= 0:
		raise ValidationError("proposedFee must be greater than 0")
	if update.commission is not None and not 0 <= update.commission <= 100:
		raise ValidationError("commission must be between 0 and 100")
	if update.status is not None and update.status != NEGOTIATING:
		raise ValidationError("status can only be set to 'negotiating'; use the agree action to settle")

	doctor = _load_doctor(db, target_id)
	before = doctor.earning_negotiation_status

	if update.currency and update.currency.upper() in settings.currencies:
		doctor.currency = update.currency.upper()
	elif update.currency:
		log.info("Ignoring unsupported currency %r for doctor %s", update.currency, doctor.id)

	if update.proposed_fee is not None:
		doctor.proposed_fee = float(update.proposed_fee)
		doctor.earning_negotiation_status = next_status(before, doctor.agreed_fee, doctor.proposed_fee)
	elif update.status == NEGOTIATING and before == PENDING:
		doctor.earning_negotiation_status = NEGOTIATING

	if update.commission is not None:
		doctor.commission = float(update.commission)

	if not message:
		if update.proposed_fee is not None:
			message = f"Proposed fee updated to {_format_fee(doctor.proposed_fee)} {doctor.currency}"
		else:
			message = "Negotiation terms updated"

	db.add(models.NegotiationMessage(
		doctor_id=doctor.id,
		sender=caller.role,
		message=message,
		proposed_fee=float(update.proposed_fee) if update.proposed_fee is not None else None,
		currency=doctor.currency,
		timestamp=datetime.utcnow(),
	))
	db.commit()
	db.refresh(doctor)
	if doctor.earning_negotiation_status != before:
		log.info("Negotiation for doctor %s: %s -> %s (%s)", doctor.id, before, doctor.earning_negotiation_status, caller.role)
	return doctor


def agree(db: Session, caller: Caller, doctor_id: int, agreed_fee: float, commission: float | None = None) -> models.User:
	if not caller.is_admin:
		raise AuthorizationError("Only admins can settle a negotiation")
	if agreed_fee is None or agreed_fee <= 0:
		raise ValidationError("agreedFee must be greater than 0")
	if commission is not None and not 0 <= commission <= 100:
		raise ValidationError("commission must be between 0 and 100")

	doctor = _load_doctor(db, doctor_id)
	before = doctor.earning_negotiation_status
	doctor.agreed_fee = float(agreed_fee)
	if commission is not None:
		doctor.commission = float(commission)
	doctor.earning_negotiation_status = AGREED
	db.add(models.NegotiationMessage(
		doctor_id=doctor.id,
		sender="admin",
		message=f"Agreed fee set to {_format_fee(doctor.agreed_fee)} {doctor.currency}",
		proposed_fee=doctor.agreed_fee,
		currency=doctor.currency,
		timestamp=datetime.utcnow(),
	))
	db.commit()
	db.refresh(doctor)
	log.info("Negotiation for doctor %s: %s -> agreed at %s %s", doctor.id, before, doctor.agreed_fee, doctor.currency)
	return doctor
