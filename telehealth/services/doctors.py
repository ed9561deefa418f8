from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.errors import AuthorizationError, ValidationError
from telehealth.schemas import DayAvailability
from telehealth.services.booking import WEEKDAYS, get_doctor, get_zone, normalize_slot


def weekly_availability(doctor: models.User) -> list[dict]:
	by_day: dict[str, list[str]] = {}
	for row in doctor.availability:
		by_day.setdefault(row.day, []).append(row.slot)
	return [{"day": d, "slots": sorted(by_day[d])} for d in WEEKDAYS if d in by_day]


def set_availability(db: Session, caller: Caller, days: list[DayAvailability]) -> models.User:
	if caller.role != "doctor":
		raise AuthorizationError("Only doctors can set availability")
	rows = set()
	for entry in days:
		day = entry.day.strip().capitalize()
		if day not in WEEKDAYS:
			raise ValidationError(f"Unknown weekday '{entry.day}'")
		for slot in entry.slots:
			rows.add((day, normalize_slot(slot)))

	doctor = get_doctor(db, caller.id)
	doctor.availability.clear()
	db.flush()
	for day, slot in sorted(rows):
		doctor.availability.append(models.DoctorAvailability(day=day, slot=slot))
	db.commit()
	db.refresh(doctor)
	return doctor


def set_timezone(db: Session, caller: Caller, tz_name: str) -> models.User:
	if caller.role != "doctor":
		raise AuthorizationError("Only doctors can set a timezone")
	get_zone(tz_name.strip())
	doctor = get_doctor(db, caller.id)
	doctor.timezone = tz_name.strip()
	db.commit()
	db.refresh(doctor)
	return doctor


def list_doctors(db: Session, specialization: str | None = None) -> list[models.User]:
	q = db.query(models.User).filter(models.User.role == "doctor")
	if specialization:
		q = q.filter(models.User.specialization.ilike(f"%{specialization}%"))
	return q.order_by(models.User.name.asc()).all()


def profile(db: Session, doctor_id: int) -> dict:
	doctor = get_doctor(db, doctor_id)
	out = {c.name: getattr(doctor, c.name) for c in models.User.__table__.columns}
	out["availability"] = weekly_availability(doctor)
	return out
