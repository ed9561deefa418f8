from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session
from telehealth.auth import Caller, get_caller, require_role
from telehealth.db import get_db
from telehealth.schemas import AppointmentOut, AppointmentPage, BookingRequest, CancelIn, Envelope, NotesIn, VideoCallOut
from telehealth.services import appointments
from telehealth.services.booking import book_direct

router = APIRouter(prefix="/appointments", tags=["appointments"])

@router.post("/book", response_model=Envelope[AppointmentOut])

def book(body: BookingRequest, caller: Caller = Depends(require_role("patient")), db: Session = Depends(get_db)):
	appt = book_direct(db, caller, body.doctor_id, body.appointment_data)
	return {"success": True, "data": appt, "message": "Appointment requested"}

@router.get("/upcoming", response_model=Envelope[AppointmentPage])

def upcoming(
	page: int = Query(1, ge=1),
	limit: int = Query(10, ge=1, le=100),
	caller: Caller = Depends(get_caller),
	db: Session = Depends(get_db),
):
	return {"success": True, "data": appointments.list_for_caller(db, caller, appointments.UPCOMING, page, limit)}

@router.get("/history", response_model=Envelope[AppointmentPage])

def history(
	page: int = Query(1, ge=1),
	limit: int = Query(10, ge=1, le=100),
	caller: Caller = Depends(get_caller),
	db: Session = Depends(get_db),
):
	return {"success": True, "data": appointments.list_for_caller(db, caller, appointments.PAST, page, limit)}

@router.post("/{appointment_id}/accept", response_model=Envelope[AppointmentOut])

def accept(appointment_id: int, caller: Caller = Depends(require_role("doctor")), db: Session = Depends(get_db)):
	return {"success": True, "data": appointments.accept(db, caller, appointment_id), "message": "Appointment accepted"}

@router.post("/{appointment_id}/cancel", response_model=Envelope[AppointmentOut])

def cancel(appointment_id: int, body: CancelIn | None = Body(None), caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	appt = appointments.cancel(db, caller, appointment_id, body.reason if body else None)
	return {"success": True, "data": appt, "message": "Appointment cancelled"}

@router.post("/{appointment_id}/complete", response_model=Envelope[AppointmentOut])

def complete(appointment_id: int, body: NotesIn | None = Body(None), caller: Caller = Depends(require_role("doctor")), db: Session = Depends(get_db)):
	appt = appointments.complete(db, caller, appointment_id, body.notes if body else None)
	return {"success": True, "data": appt, "message": "Appointment completed"}

@router.post("/{appointment_id}/notes", response_model=Envelope[AppointmentOut])

def notes(appointment_id: int, body: NotesIn, caller: Caller = Depends(require_role("doctor")), db: Session = Depends(get_db)):
	return {"success": True, "data": appointments.set_notes(db, caller, appointment_id, body.notes)}

@router.get("/{appointment_id}/video-call", response_model=Envelope[VideoCallOut])

def video_call(appointment_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	return {"success": True, "data": {"video_call_link": appointments.video_call(db, caller, appointment_id)}}
