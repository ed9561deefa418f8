import uuid
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.config import settings
from telehealth.errors import AuthorizationError, NotFoundError, ValidationError
from telehealth.logger import get_logger
from telehealth.schemas import page_info
from telehealth.services.notifications import notify

log = get_logger("appointments")

UPCOMING = ("requested", "accepted")
PAST = ("completed", "cancelled", "missed")


def _load(db: Session, appointment_id: int) -> models.Appointment:
	appt = db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
	if not appt:
		raise NotFoundError("Appointment not found")
	return appt


def _as_doctor(db: Session, caller: Caller, appointment_id: int) -> models.Appointment:
	appt = _load(db, appointment_id)
	if caller.role != "doctor" or appt.doctor_id != caller.id:
		raise AuthorizationError("Only the appointment's doctor can do this")
	return appt


def _as_participant(db: Session, caller: Caller, appointment_id: int) -> models.Appointment:
	appt = _load(db, appointment_id)
	if caller.id not in (appt.patient_id, appt.doctor_id):
		raise AuthorizationError("You are not part of this appointment")
	return appt


def _when(appt: models.Appointment) -> str:
	return f"{appt.date:%Y-%m-%d %H:%M} UTC"


def new_video_link() -> str:
	return f"{settings.video_call_base_url.rstrip('/')}/telehealth-{uuid.uuid4().hex}"


def accept(db: Session, caller: Caller, appointment_id: int) -> models.Appointment:
	appt = _as_doctor(db, caller, appointment_id)
	if appt.status != "requested":
		raise ValidationError(f"Cannot accept an appointment that is {appt.status}")
	appt.status = "accepted"
	if not appt.video_call_link:
		appt.video_call_link = new_video_link()
	db.commit()
	db.refresh(appt)
	notify(db, appt.patient_id, f"Your appointment on {_when(appt)} was accepted", type="appointment", appointment_id=appt.id)
	return appt


def cancel(db: Session, caller: Caller, appointment_id: int, reason: str | None = None) -> models.Appointment:
	appt = _as_participant(db, caller, appointment_id)
	if appt.status not in UPCOMING:
		raise ValidationError(f"Cannot cancel an appointment that is {appt.status}")
	appt.status = "cancelled"
	appt.cancelled_by = caller.id
	appt.cancellation_reason = (reason or "").strip() or None
	db.commit()
	db.refresh(appt)
	other = appt.doctor_id if caller.id == appt.patient_id else appt.patient_id
	notify(db, other, f"The appointment on {_when(appt)} was cancelled", type="appointment", appointment_id=appt.id)
	log.info("Appointment %s cancelled by user %s", appt.id, caller.id)
	return appt


def complete(db: Session, caller: Caller, appointment_id: int, notes: str | None = None) -> models.Appointment:
	appt = _as_doctor(db, caller, appointment_id)
	if appt.status != "accepted":
		raise ValidationError(f"Cannot complete an appointment that is {appt.status}")
	appt.status = "completed"
	if notes:
		appt.notes = notes
	db.commit()
	db.refresh(appt)
	notify(db, appt.patient_id, f"Your appointment on {_when(appt)} is complete", type="appointment", appointment_id=appt.id)
	return appt


def set_notes(db: Session, caller: Caller, appointment_id: int, notes: str | None) -> models.Appointment:
	appt = _as_doctor(db, caller, appointment_id)
	if appt.status not in ("accepted", "completed"):
		raise ValidationError("Notes can only be added to accepted or completed appointments")
	appt.notes = notes
	db.commit()
	db.refresh(appt)
	return appt


def video_call(db: Session, caller: Caller, appointment_id: int) -> str:
	appt = _as_participant(db, caller, appointment_id)
	if appt.status not in UPCOMING:
		raise ValidationError(f"Video call is not available for a {appt.status} appointment")
	if not appt.video_call_link:
		raise ValidationError("Video call link is not available until the doctor accepts")
	return appt.video_call_link


def list_for_caller(db: Session, caller: Caller, statuses: tuple, page: int = 1, limit: int = 10) -> dict:
	if caller.role not in ("patient", "doctor"):
		raise AuthorizationError("Only patients and doctors have appointments")
	page = max(page, 1)
	limit = min(max(limit, 1), 100)
	side = models.Appointment.patient_id if caller.role == "patient" else models.Appointment.doctor_id
	q = db.query(models.Appointment).filter(side == caller.id, models.Appointment.status.in_(statuses))
	total = q.count()
	order = models.Appointment.date.asc() if statuses == UPCOMING else models.Appointment.date.desc()
	rows = q.order_by(order, models.Appointment.id.asc()).offset((page - 1) * limit).limit(limit).all()
	return {"appointments": rows, "pagination": page_info(total, page, limit)}
