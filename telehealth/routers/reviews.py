from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from telehealth.auth import Caller, get_caller, require_role
from telehealth.db import get_db
from telehealth.schemas import EligibleAppointmentsOut, Envelope, ModerateIn, ReviewIn, ReviewOut, ReviewPage, ReviewUpdate
from telehealth.services import reviews

router = APIRouter(prefix="/reviews", tags=["reviews"])

@router.get("/doctor/{doctor_id}", response_model=Envelope[ReviewPage])

def doctor_reviews(doctor_id: int, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50), db: Session = Depends(get_db)):
	return {"success": True, "data": reviews.list_doctor_reviews(db, doctor_id, page, limit)}

@router.post("", response_model=Envelope[ReviewOut], status_code=201)

def create(body: ReviewIn, caller: Caller = Depends(require_role("patient")), db: Session = Depends(get_db)):
	review = reviews.create_review(db, caller, body)
	return {"success": True, "data": reviews.review_out(review, mask=False), "message": "Review created successfully"}

@router.get("/patient", response_model=Envelope[ReviewPage])

def my_reviews(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50), caller: Caller = Depends(require_role("patient")), db: Session = Depends(get_db)):
	return {"success": True, "data": reviews.list_patient_reviews(db, caller, page, limit)}

@router.get("/eligible-appointments/{doctor_id}", response_model=Envelope[EligibleAppointmentsOut])

def eligible(doctor_id: int, caller: Caller = Depends(require_role("patient")), db: Session = Depends(get_db)):
	return {"success": True, "data": reviews.eligible_appointments(db, caller, doctor_id)}

@router.put("/{review_id}", response_model=Envelope[ReviewOut])

def update(review_id: int, body: ReviewUpdate, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	review = reviews.update_review(db, caller, review_id, body)
	return {"success": True, "data": reviews.review_out(review, mask=False), "message": "Review updated successfully"}

@router.delete("/{review_id}")

def delete(review_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	reviews.delete_review(db, caller, review_id)
	return {"success": True, "message": "Review deleted successfully"}

@router.patch("/{review_id}/approve", response_model=Envelope[ReviewOut])

def moderate(review_id: int, body: ModerateIn, caller: Caller = Depends(require_role("admin")), db: Session = Depends(get_db)):
	review = reviews.moderate_review(db, caller, review_id, body.is_approved)
	return {"success": True, "data": reviews.review_out(review, mask=False)}
