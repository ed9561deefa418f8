from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from telehealth.auth import Caller, require_role
from telehealth.db import get_db
from telehealth.integrations.payments import StripeGateway, get_payment_gateway
from telehealth.schemas import AppointmentOut, AppointmentPage, ConfirmIn, CreateIntentIn, Envelope, IntentOut, RefundIn, RefundOut
from telehealth.services import payments

router = APIRouter(prefix="/payments", tags=["payments"])

@router.post("/create-intent", response_model=Envelope[IntentOut])

def create_intent(
	body: CreateIntentIn,
	caller: Caller = Depends(require_role("patient")),
	gateway: StripeGateway = Depends(get_payment_gateway),
	db: Session = Depends(get_db),
):
	return {"success": True, "data": payments.create_intent(db, caller, gateway, body)}

@router.post("/confirm", response_model=Envelope[AppointmentOut])

def confirm(
	body: ConfirmIn,
	caller: Caller = Depends(require_role("patient")),
	gateway: StripeGateway = Depends(get_payment_gateway),
	db: Session = Depends(get_db),
):
	appt = payments.confirm_payment(db, caller, gateway, body.payment_intent_id, body.appointment_data)
	return {"success": True, "data": appt, "message": "Appointment booked successfully"}

@router.post("/webhook")
async def webhook(
	request: Request,
	stripe_signature: str | None = Header(None),
	gateway: StripeGateway = Depends(get_payment_gateway),
	db: Session = Depends(get_db),
):
	payload = await request.body()
	return await run_in_threadpool(payments.handle_webhook, db, gateway, payload, stripe_signature)

@router.post("/refund", response_model=Envelope[RefundOut])

def refund(
	body: RefundIn,
	caller: Caller = Depends(require_role("admin")),
	gateway: StripeGateway = Depends(get_payment_gateway),
	db: Session = Depends(get_db),
):
	receipt = payments.refund_payment(db, caller, gateway, body.appointment_id, body.reason)
	return {"success": True, "data": receipt, "message": "Refund processed successfully"}

@router.get("/history", response_model=Envelope[AppointmentPage])

def history(
	page: int = Query(1, ge=1),
	limit: int = Query(10, ge=1, le=100),
	caller: Caller = Depends(require_role("patient")),
	db: Session = Depends(get_db),
):
	return {"success": True, "data": payments.payment_history(db, caller, page, limit)}
