from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from telehealth.auth import Caller, require_role
from telehealth.db import get_db
from telehealth import models
import pandas as pd
from io import StringIO
from fastapi.responses import StreamingResponse
from datetime import datetime

router = APIRouter(prefix="/admin", tags=["admin"])

PAYMENT_COLUMNS = [
	"appointment_id", "doctor_id", "doctor_name", "patient_id", "patient_name", "date", "status",
	"payment_status", "fee", "currency", "payment_intent_id", "refund_id",
]

@router.get("/export/payments.csv")

def export_payments(caller: Caller = Depends(require_role("admin")), db: Session = Depends(get_db)):
	rows = db.query(models.Appointment).filter(models.Appointment.payment_intent_id.isnot(None)).order_by(models.Appointment.id.asc()).all()
	# prefetch users
	users = {u.id: u for u in db.query(models.User).all()}
	data = []
	for a in rows:
		d = users.get(a.doctor_id)
		p = users.get(a.patient_id)
		data.append({
			"appointment_id": a.id,
			"doctor_id": a.doctor_id,
			"doctor_name": d.name if d else None,
			"patient_id": a.patient_id,
			"patient_name": p.name if p else a.patient_name,
			"date": a.date.isoformat(),
			"status": a.status,
			"payment_status": a.payment_status,
			"fee": a.fee,
			"currency": a.currency,
			"payment_intent_id": a.payment_intent_id,
			"refund_id": a.refund_id,
		})
	df = pd.DataFrame(data, columns=PAYMENT_COLUMNS)
	output = StringIO()
	df.to_csv(output, index=False)
	output.seek(0)
	fname = f"payments_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
	return StreamingResponse(iter([output.getvalue()]), media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={fname}"})
