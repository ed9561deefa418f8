from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.auth import Caller
from telehealth.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from telehealth.logger import get_logger
from telehealth.schemas import ReviewIn, ReviewUpdate, page_info
from telehealth.services.booking import get_doctor

log = get_logger("reviews")

DUPLICATE_APPOINTMENT = "You have already reviewed this appointment"
DUPLICATE_GENERAL = "You have already given a general review for this doctor"


def _check_rating(rating) -> int:
	if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
		raise ValidationError("Rating must be an integer between 1 and 5")
	return rating


def _check_text(text: str | None) -> str:
	text = (text or "").strip()
	if len(text) < 10:
		raise ValidationError("Review must be at least 10 characters long")
	if len(text) > 500:
		raise ValidationError("Review cannot exceed 500 characters")
	return text


def _eligible_filter(doctor_id: int):
	# completed, or cancelled by the doctor
	return and_(
		models.Appointment.doctor_id == doctor_id,
		or_(
			models.Appointment.status == "completed",
			and_(models.Appointment.status == "cancelled", models.Appointment.cancelled_by == doctor_id),
		),
	)


def _is_eligible(appt: models.Appointment) -> bool:
	return appt.status == "completed" or (appt.status == "cancelled" and appt.cancelled_by == appt.doctor_id)


def recompute_doctor_rating(db: Session, doctor_id: int) -> models.User:
	"""Refresh the stored rating summary from approved reviews."""
	ratings = [r for (r,) in db.query(models.Review.rating).filter(
		models.Review.doctor_id == doctor_id,
		models.Review.is_approved.is_(True),
	).all()]
	distribution = models.empty_distribution()
	for r in ratings:
		distribution[str(r)] += 1
	doctor = db.query(models.User).filter(models.User.id == doctor_id).first()
	doctor.total_reviews = len(ratings)
	doctor.average_rating = round(sum(ratings) / len(ratings), 1) if ratings else 0
	doctor.rating_distribution = distribution
	db.commit()
	db.refresh(doctor)
	return doctor


def create_review(db: Session, caller: Caller, body: ReviewIn) -> models.Review:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can create reviews")
	rating = _check_rating(body.rating)
	text = _check_text(body.review)
	doctor = get_doctor(db, body.doctor_id)

	existing = db.query(models.Review).filter(
		models.Review.doctor_id == doctor.id,
		models.Review.patient_id == caller.id,
	)
	if body.appointment_id is not None:
		appt = db.query(models.Appointment).filter(models.Appointment.id == body.appointment_id).first()
		if not appt or appt.patient_id != caller.id or appt.doctor_id != doctor.id:
			raise ValidationError("Invalid appointment for this review")
		if not _is_eligible(appt):
			raise ValidationError("You can only review completed appointments or appointments cancelled by the doctor")
		if existing.filter(models.Review.appointment_id == appt.id).first():
			raise ConflictError(DUPLICATE_APPOINTMENT)
		duplicate = DUPLICATE_APPOINTMENT
	else:
		eligible = db.query(models.Appointment).filter(
			models.Appointment.patient_id == caller.id, _eligible_filter(doctor.id),
		).first()
		if not eligible:
			raise ValidationError("You can only review doctors after completing an appointment or if the doctor cancelled your appointment")
		if existing.filter(models.Review.appointment_id.is_(None)).first():
			raise ConflictError(DUPLICATE_GENERAL)
		duplicate = DUPLICATE_GENERAL

	review = models.Review(
		doctor_id=doctor.id,
		patient_id=caller.id,
		appointment_id=body.appointment_id,
		rating=rating,
		review=text,
		is_anonymous=body.is_anonymous,
	)
	db.add(review)
	try:
		db.commit()
	except IntegrityError:
		db.rollback()
		raise ConflictError(duplicate)
	db.refresh(review)
	recompute_doctor_rating(db, doctor.id)
	return review


def _load(db: Session, review_id: int) -> models.Review:
	review = db.query(models.Review).filter(models.Review.id == review_id).first()
	if not review:
		raise NotFoundError("Review not found")
	return review


def update_review(db: Session, caller: Caller, review_id: int, body: ReviewUpdate) -> models.Review:
	review = _load(db, review_id)
	if review.patient_id != caller.id:
		raise AuthorizationError("You can only edit your own reviews")
	if body.rating is not None:
		review.rating = _check_rating(body.rating)
	if body.review is not None:
		review.review = _check_text(body.review)
	if body.is_anonymous is not None:
		review.is_anonymous = body.is_anonymous
	db.commit()
	db.refresh(review)
	recompute_doctor_rating(db, review.doctor_id)
	return review


def delete_review(db: Session, caller: Caller, review_id: int):
	review = _load(db, review_id)
	if review.patient_id != caller.id and not caller.is_admin:
		raise AuthorizationError("You can only delete your own reviews")
	doctor_id = review.doctor_id
	db.delete(review)
	db.commit()
	recompute_doctor_rating(db, doctor_id)


def moderate_review(db: Session, caller: Caller, review_id: int, is_approved: bool) -> models.Review:
	if not caller.is_admin:
		raise AuthorizationError("Admin access required")
	review = _load(db, review_id)
	review.is_approved = is_approved
	db.commit()
	db.refresh(review)
	log.info("Review %s %s by admin %s", review.id, "approved" if is_approved else "hidden", caller.id)
	recompute_doctor_rating(db, review.doctor_id)
	return review


def review_out(review: models.Review, mask: bool = True) -> dict:
	out = {c.name: getattr(review, c.name) for c in models.Review.__table__.columns}
	if mask and review.is_anonymous:
		out["patient_name"] = "Anonymous"
	else:
		out["patient_name"] = review.patient.name if review.patient else None
	return out


def list_doctor_reviews(db: Session, doctor_id: int, page: int = 1, limit: int = 10) -> dict:
	doctor = get_doctor(db, doctor_id)
	page = max(page, 1)
	limit = min(max(limit, 1), 50)
	q = db.query(models.Review).filter(models.Review.doctor_id == doctor.id, models.Review.is_approved.is_(True))
	total = q.count()
	rows = q.order_by(models.Review.id.desc()).offset((page - 1) * limit).limit(limit).all()
	return {
		"reviews": [review_out(r) for r in rows],
		"pagination": page_info(total, page, limit),
		"rating_stats": {
			"average_rating": doctor.average_rating,
			"total_reviews": doctor.total_reviews,
			"distribution": doctor.rating_distribution or models.empty_distribution(),
		},
	}


def list_patient_reviews(db: Session, caller: Caller, page: int = 1, limit: int = 10) -> dict:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can access this endpoint")
	page = max(page, 1)
	limit = min(max(limit, 1), 50)
	q = db.query(models.Review).filter(models.Review.patient_id == caller.id)
	total = q.count()
	rows = q.order_by(models.Review.id.desc()).offset((page - 1) * limit).limit(limit).all()
	return {"reviews": [review_out(r, mask=False) for r in rows], "pagination": page_info(total, page, limit)}


def eligible_appointments(db: Session, caller: Caller, doctor_id: int) -> dict:
	if caller.role != "patient":
		raise AuthorizationError("Only patients can access this endpoint")
	doctor = get_doctor(db, doctor_id)
	appts = db.query(models.Appointment).filter(
		models.Appointment.patient_id == caller.id, _eligible_filter(doctor.id),
	).order_by(models.Appointment.date.desc()).all()
	reviews = db.query(models.Review).filter(
		models.Review.doctor_id == doctor.id, models.Review.patient_id == caller.id,
	).all()
	reviewed = {r.appointment_id for r in reviews if r.appointment_id is not None}
	has_general = any(r.appointment_id is None for r in reviews)
	return {
		"eligible_appointments": [a for a in appts if a.id not in reviewed],
		"has_general_review": has_general,
		"can_give_general_review": bool(appts) and not has_general,
	}
