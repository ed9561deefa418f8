from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from telehealth.auth import Caller, require_role
from telehealth.db import get_db
from telehealth.schemas import AgreeIn, Envelope, NegotiationOut, NegotiationPage, NegotiationUpdate
from telehealth.services import negotiation

router = APIRouter(tags=["negotiation"])

admin_only = require_role("admin")
doctor_only = require_role("doctor")

@router.get("/doctors/earning-negotiation", response_model=Envelope[NegotiationPage])

def list_negotiations(
	status: str | None = Query(None),
	page: int = Query(1, ge=1),
	limit: int = Query(10, ge=1, le=100),
	caller: Caller = Depends(admin_only),
	db: Session = Depends(get_db),
):
	return {"success": True, "data": negotiation.list_negotiations(db, caller, status, page, limit)}

@router.get("/doctors/{doctor_id}/earning-negotiation", response_model=Envelope[NegotiationOut])

def get_for_doctor(doctor_id: int, caller: Caller = Depends(admin_only), db: Session = Depends(get_db)):
	return {"success": True, "data": negotiation.get_negotiation(db, caller, doctor_id)}

@router.post("/doctors/{doctor_id}/earning-negotiation", response_model=Envelope[NegotiationOut])

def admin_update(doctor_id: int, body: NegotiationUpdate, caller: Caller = Depends(admin_only), db: Session = Depends(get_db)):
	doctor = negotiation.post_update(db, caller, doctor_id, body)
	return {"success": True, "data": doctor, "message": "Negotiation updated"}

@router.post("/doctors/{doctor_id}/earning-negotiation/agree", response_model=Envelope[NegotiationOut])

def admin_agree(doctor_id: int, body: AgreeIn, caller: Caller = Depends(admin_only), db: Session = Depends(get_db)):
	doctor = negotiation.agree(db, caller, doctor_id, body.agreed_fee, body.commission)
	return {"success": True, "data": doctor, "message": "Agreement finalized"}

@router.get("/doctor/earning-negotiation", response_model=Envelope[NegotiationOut])

def get_own(caller: Caller = Depends(doctor_only), db: Session = Depends(get_db)):
	return {"success": True, "data": negotiation.get_negotiation(db, caller)}

@router.post("/doctor/earning-negotiation", response_model=Envelope[NegotiationOut])

def doctor_update(body: NegotiationUpdate, caller: Caller = Depends(doctor_only), db: Session = Depends(get_db)):
	doctor = negotiation.post_update(db, caller, None, body)
	return {"success": True, "data": doctor, "message": "Message sent"}
