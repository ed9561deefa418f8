from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from telehealth.auth import Caller, get_caller
from telehealth.db import get_db
from telehealth.errors import NotFoundError
from telehealth.schemas import Envelope, NotificationOut
from telehealth.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("", response_model=Envelope[list[NotificationOut]])

def list_notifications(limit: int = Query(50, ge=1, le=200), caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	return {"success": True, "data": notifications.list_for_user(db, caller.id, limit)}

@router.post("/{notification_id}/read", response_model=Envelope[NotificationOut])

def mark_read(notification_id: int, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
	n = notifications.mark_read(db, caller.id, notification_id)
	if not n:
		raise NotFoundError("Notification not found")
	return {"success": True, "data": n}
