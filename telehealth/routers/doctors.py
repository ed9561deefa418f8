from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from telehealth.auth import Caller, require_role
from telehealth.db import get_db
from telehealth.schemas import AvailabilityIn, DoctorOut, DoctorProfileOut, Envelope, TimezoneIn
from telehealth.services import doctors

router = APIRouter(tags=["doctors"])

@router.get("/doctors", response_model=Envelope[list[DoctorOut]])

def list_doctors(specialization: str | None = Query(None), db: Session = Depends(get_db)):
	return {"success": True, "data": doctors.list_doctors(db, specialization)}

@router.get("/doctors/{doctor_id:int}", response_model=Envelope[DoctorProfileOut])

def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
	return {"success": True, "data": doctors.profile(db, doctor_id)}

@router.put("/doctor/availability", response_model=Envelope[DoctorProfileOut])

def set_availability(body: AvailabilityIn, caller: Caller = Depends(require_role("doctor")), db: Session = Depends(get_db)):
	doctors.set_availability(db, caller, body.availability)
	return {"success": True, "data": doctors.profile(db, caller.id), "message": "Availability updated"}

@router.put("/doctor/timezone", response_model=Envelope[DoctorProfileOut])

def set_timezone(body: TimezoneIn, caller: Caller = Depends(require_role("doctor")), db: Session = Depends(get_db)):
	doctors.set_timezone(db, caller, body.timezone)
	return {"success": True, "data": doctors.profile(db, caller.id), "message": "Timezone updated"}
