import re
from datetime import datetime, date as dt_date, timedelta, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.errors import AuthorizationError, NotFoundError, SlotConflictError, ValidationError
from telehealth.logger import get_logger
from telehealth.schemas import AppointmentDataIn
from telehealth.services.notifications import notify

log = get_logger("booking")

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
SLOT_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})$")


def parse_slot(slot: str) -> tuple[tuple[int, int], tuple[int, int]]:
	m = SLOT_RE.match((slot or "").strip())
	if not m:
		raise ValidationError(f"Invalid slot '{slot}', expected HH:MM-HH:MM")
	sh, sm, eh, em = (int(g) for g in m.groups())
	# 24:00 is accepted as the end of the last slot of the day
	if sh > 23 or sm > 59 or em > 59 or eh > 24 or (eh == 24 and em):
		raise ValidationError(f"Invalid slot '{slot}'")
	if (sh, sm) >= (eh, em):
		raise ValidationError(f"Slot '{slot}' must end after it starts")
	return (sh, sm), (eh, em)


def normalize_slot(slot: str) -> str:
	(sh, sm), (eh, em) = parse_slot(slot)
	return f"{sh:02d}:{sm:02d}-{eh:02d}:{em:02d}"


def parse_date(value: str) -> dt_date:
	try:
		return datetime.strptime((value or "").strip()[:10], "%Y-%m-%d").date()
	except ValueError:
		raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")


def get_zone(name: str | None) -> ZoneInfo:
	if not name:
		raise ValidationError("Doctor timezone is not configured")
	try:
		return ZoneInfo(name)
	except (ZoneInfoNotFoundError, ValueError):
		raise ValidationError(f"Unknown timezone '{name}'")


def slot_window(date_str: str, slot: str, tz_name: str) -> tuple[datetime, datetime]:
	"""UTC instants (naive) for a slot on a calendar date in the doctor's zone."""
	day = parse_date(date_str)
	(sh, sm), (eh, em) = parse_slot(slot)
	tz = get_zone(tz_name)
	midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
	start = midnight + timedelta(hours=sh, minutes=sm)
	end = midnight + timedelta(hours=eh, minutes=em)
	return (
		start.astimezone(dt_timezone.utc).replace(tzinfo=None),
		end.astimezone(dt_timezone.utc).replace(tzinfo=None),
	)


def get_doctor(db: Session, doctor_id) -> models.User:
	doctor = db.query(models.User).filter(models.User.id == doctor_id, models.User.role == "doctor").first()
	if not doctor:
		raise NotFoundError("Doctor not found")
	return doctor


def is_slot_offered(db: Session, doctor: models.User, date_str: str, slot: str) -> bool:
	day_name = WEEKDAYS[parse_date(date_str).weekday()]
	wanted = normalize_slot(slot)
	rows = db.query(models.DoctorAvailability).filter(
		models.DoctorAvailability.doctor_id == doctor.id,
		models.DoctorAvailability.day == day_name,
	).all()
	return any(normalize_slot(r.slot) == wanted for r in rows)


def find_overlapping(db: Session, doctor_id: int, start: datetime, end: datetime) -> models.Appointment | None:
	return db.query(models.Appointment).filter(
		models.Appointment.doctor_id == doctor_id,
		models.Appointment.status.in_(models.ACTIVE_APPOINTMENT_STATUSES),
		models.Appointment.date < end,
		models.Appointment.end_date > start,
	).first()


def reserve_appointment(db: Session, doctor: models.User, start: datetime, end: datetime, **fields) -> models.Appointment:
	"""Check-then-insert under a doctor row lock, backed by the active-slot unique index."""
	# serializes concurrent reservations for one doctor where the backend supports row locks
	db.query(models.User).filter(models.User.id == doctor.id).with_for_update().first()
	if find_overlapping(db, doctor.id, start, end):
		db.rollback()
		raise SlotConflictError()
	appt = models.Appointment(doctor_id=doctor.id, date=start, end_date=end, timezone=doctor.timezone, **fields)
	db.add(appt)
	try:
		db.commit()
	except IntegrityError as e:
		db.rollback()
		log.info("Reservation for doctor %s at %s lost the race: %s", doctor.id, start, e.orig)
		raise SlotConflictError()
	db.refresh(appt)
	return appt


def check_bookable(db: Session, doctor: models.User, date_str: str, slot: str) -> tuple[datetime, datetime]:
	start, end = slot_window(date_str, slot, doctor.timezone)
	if not is_slot_offered(db, doctor, date_str, slot):
		raise ValidationError("Selected slot is not available")
	if start <= datetime.utcnow():
		raise ValidationError("Selected slot is in the past")
	if find_overlapping(db, doctor.id, start, end):
		raise SlotConflictError("Selected slot is already booked")
	return start, end


def book_direct(db: Session, caller: Caller, doctor_id: int, data: AppointmentDataIn) -> models.Appointment:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can book appointments")
	doctor = get_doctor(db, doctor_id)
	start, end = check_bookable(db, doctor, data.date, data.slot)
	appt = reserve_appointment(
		db, doctor, start, end,
		patient_id=caller.id,
		status="requested",
		payment_status="pending",
		payment_method="cash",
		patient_name=data.patient_name,
		age_group=data.age_group,
		gender=data.gender,
		problem=data.problem,
		fee=doctor.agreed_fee or 0,
		currency=doctor.currency,
	)
	notify(db, doctor.id, f"New appointment requested by {data.patient_name} for {data.date} at {data.slot}", appointment_id=appt.id)
	return appt
