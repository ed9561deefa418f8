import asyncio
import json
from telehealth import models
from scripts.helpers import appointment_data, as_user, next_weekday, sign, webhook_body

WEDNESDAY = 2
SATURDAY = 5


def _create_intent(client, user, doctor, day, slot="10:00-10:30", amount=45, currency="usd"):
	r = client.post("/payments/create-intent", json={
		"amount": amount,
		"currency": currency,
		"doctorId": doctor.id,
		"appointmentData": appointment_data(day, slot, name=user.name),
	}, headers=as_user(user))
	assert r.status_code == 200, r.text
	return r.json()["data"]["paymentIntentId"]


def _confirm(client, user, pi_id, **data):
	body = {"paymentIntentId": pi_id}
	if data:
		body["appointmentData"] = data
	return client.post("/payments/confirm", json=body, headers=as_user(user))


def _paid_booking(client, gateway, user, doctor, day, slot="10:00-10:30"):
	pi_id = _create_intent(client, user, doctor, day, slot)
	gateway.succeed(pi_id)
	r = _confirm(client, user, pi_id)
	assert r.status_code == 200, r.text
	return r.json()["data"]


def test_create_intent_carries_booking_metadata(client, gateway, patient, doctor):
	day = next_weekday(WEDNESDAY)
	r = client.post("/payments/create-intent", json={
		"amount": 45.5, "currency": "usd", "doctorId": doctor.id, "appointmentData": appointment_data(day),
	}, headers=as_user(patient))
	assert r.status_code == 200
	data = r.json()["data"]
	assert data["clientSecret"].startswith(data["paymentIntentId"])
	assert data["currency"] == "USD"
	assert data["doctor"]["name"] == doctor.name

	intent = gateway.intents[data["paymentIntentId"]]
	assert intent.amount == 4550
	assert intent.metadata["doctorId"] == str(doctor.id)
	assert intent.metadata["patientId"] == str(patient.id)
	assert intent.metadata["appointmentSlot"] == "10:00-10:30"
	assert intent.metadata["originalAmount"] == "45.5"
	assert all(isinstance(v, str) for v in intent.metadata.values())


def test_create_intent_validation(client, patient, doctor, admin):
	day = next_weekday(WEDNESDAY)
	r = client.post("/payments/create-intent", json={
		"amount": 0, "doctorId": doctor.id, "appointmentData": appointment_data(day),
	}, headers=as_user(patient))
	assert r.status_code == 400
	assert "amount" in r.json()["message"]

	r = client.post("/payments/create-intent", json={
		"amount": 45, "doctorId": admin.id, "appointmentData": appointment_data(day),
	}, headers=as_user(patient))
	assert r.status_code == 404
	assert r.json()["message"] == "Doctor not found"

	r = client.post("/payments/create-intent", json={
		"amount": 45, "doctorId": doctor.id, "appointmentData": appointment_data(next_weekday(SATURDAY)),
	}, headers=as_user(patient))
	assert r.status_code == 400
	assert r.json()["message"] == "Selected slot is not available"


def test_confirm_creates_paid_appointment(client, gateway, db, patient, doctor, dispatched):
	day = next_weekday(WEDNESDAY)
	pi_id = _create_intent(client, patient, doctor, day)
	gateway.succeed(pi_id)

	r = _confirm(client, patient, pi_id, date=day, slot="10:00-10:30")
	assert r.status_code == 200
	appt = r.json()["data"]
	assert appt["status"] == "requested"
	assert appt["paymentStatus"] == "paid"
	assert appt["paymentIntentId"] == pi_id
	assert appt["stripeChargeId"] == f"ch_{pi_id}"
	assert appt["fee"] == 45
	assert appt["currency"] == "USD"
	assert appt["timezone"] == "Asia/Karachi"
	# 10:00 in Karachi is 05:00 UTC
	assert appt["date"].startswith(f"{day}T05:00")
	assert appt["doctor"]["id"] == doctor.id

	note = db.query(models.Notification).filter(models.Notification.user_id == doctor.id).one()
	assert note.message == f"New paid appointment booked by {patient.name} for {day} at 10:00-10:30"
	assert dispatched.calls == [(note.id,)]
	assert db.query(models.AuditLog).filter(models.AuditLog.action == "appointment_booked_with_payment").count() == 1

	again = _confirm(client, patient, pi_id)
	assert again.status_code == 200
	assert again.json()["data"]["id"] == appt["id"]
	assert db.query(models.Appointment).count() == 1


def test_unpaid_intent_never_books_or_refunds(client, gateway, db, patient, doctor):
	pi_id = _create_intent(client, patient, doctor, next_weekday(WEDNESDAY))
	r = _confirm(client, patient, pi_id)
	assert r.status_code == 400
	assert r.json() == {"success": False, "message": "Payment not completed. Status: requires_payment_method"}
	assert db.query(models.Appointment).count() == 0
	assert gateway.refunds == []


def test_confirm_rejects_other_patients_intent(client, gateway, patient, other_patient, doctor):
	pi_id = _create_intent(client, patient, doctor, next_weekday(WEDNESDAY))
	gateway.succeed(pi_id)
	r = _confirm(client, other_patient, pi_id)
	assert r.status_code == 403


def test_confirm_rejects_mismatched_slot(client, gateway, db, patient, doctor):
	day = next_weekday(WEDNESDAY)
	pi_id = _create_intent(client, patient, doctor, day)
	gateway.succeed(pi_id)
	r = _confirm(client, patient, pi_id, date=day, slot="11:00-11:30")
	assert r.status_code == 400
	assert db.query(models.Appointment).count() == 0


def test_conflict_refunds_the_loser(client, gateway, db, patient, other_patient, doctor):
	day = next_weekday(WEDNESDAY)
	first = _create_intent(client, patient, doctor, day)
	second = _create_intent(client, other_patient, doctor, day)
	gateway.succeed(first)
	gateway.succeed(second)

	assert _confirm(client, patient, first).status_code == 200
	r = _confirm(client, other_patient, second)
	assert r.status_code == 409
	body = r.json()
	assert body["success"] is False
	assert body["message"] == "Slot is no longer available. Payment has been refunded."
	assert body["refunded"] is True
	assert gateway.refunds == [(second, "requested_by_customer")]
	assert db.query(models.Appointment).count() == 1


def test_partially_overlapping_paid_slot_is_refunded(client, gateway, db, patient, other_patient, doctor):
	r = client.put("/doctor/availability", json={"availability": [
		{"day": "Wednesday", "slots": ["10:00-11:00", "10:30-11:00", "11:00-11:30"]},
	]}, headers=as_user(doctor))
	assert r.status_code == 200
	day = next_weekday(WEDNESDAY)
	first = _create_intent(client, patient, doctor, day, slot="10:00-11:00")
	second = _create_intent(client, other_patient, doctor, day, slot="10:30-11:00")
	adjacent = _create_intent(client, other_patient, doctor, day, slot="11:00-11:30")
	for pi_id in (first, second, adjacent):
		gateway.succeed(pi_id)

	assert _confirm(client, patient, first).status_code == 200
	r = _confirm(client, other_patient, second)
	assert r.status_code == 409
	assert r.json()["refunded"] is True
	assert _confirm(client, other_patient, adjacent).status_code == 200
	assert gateway.refunds == [(second, "requested_by_customer")]
	assert db.query(models.Appointment).count() == 2


def test_conflict_when_refund_fails(client, gateway, db, patient, other_patient, doctor):
	day = next_weekday(WEDNESDAY)
	first = _create_intent(client, patient, doctor, day)
	second = _create_intent(client, other_patient, doctor, day)
	gateway.succeed(first)
	gateway.succeed(second)
	assert _confirm(client, patient, first).status_code == 200

	gateway.fail_refunds = True
	r = _confirm(client, other_patient, second)
	assert r.status_code == 409
	assert r.json()["refunded"] is False
	assert "Automatic refund failed" in r.json()["message"]
	audit = db.query(models.AuditLog).filter(models.AuditLog.action == "compensating_refund_failed").one()
	assert json.loads(audit.details)["paymentIntentId"] == second
	assert db.query(models.Appointment).count() == 1


def test_concurrent_confirms_have_one_winner(client, gateway, db, patient, other_patient, doctor, monkeypatch):
	day = next_weekday(WEDNESDAY)
	first = _create_intent(client, patient, doctor, day)
	second = _create_intent(client, other_patient, doctor, day)
	gateway.succeed(first)
	gateway.succeed(second)

	# both confirms pass the read-side check, as if they interleaved
	monkeypatch.setattr("telehealth.services.booking.find_overlapping", lambda *a, **k: None)

	results = [_confirm(client, patient, first), _confirm(client, other_patient, second)]
	assert sorted(r.status_code for r in results) == [200, 409]
	assert db.query(models.Appointment).count() == 1
	assert gateway.refunds == [(second, "requested_by_customer")]


def test_slot_removed_after_payment_is_refunded(client, gateway, db, patient, doctor):
	day = next_weekday(WEDNESDAY)
	pi_id = _create_intent(client, patient, doctor, day)
	gateway.succeed(pi_id)
	r = client.put("/doctor/availability", json={"availability": [{"day": "Monday", "slots": ["10:00-10:30"]}]}, headers=as_user(doctor))
	assert r.status_code == 200

	r = _confirm(client, patient, pi_id)
	assert r.status_code == 409
	assert r.json()["message"] == "Selected slot is no longer available. Payment has been refunded."
	assert gateway.refunds == [(pi_id, "requested_by_customer")]
	assert db.query(models.Appointment).count() == 0


def test_refund_twice(client, gateway, db, patient, doctor, admin):
	appt = _paid_booking(client, gateway, patient, doctor, next_weekday(WEDNESDAY))

	r = client.post("/payments/refund", json={"appointmentId": appt["id"], "reason": "duplicate"}, headers=as_user(admin))
	assert r.status_code == 200
	receipt = r.json()["data"]
	assert receipt == {"refundId": "re_test_1", "amount": 45.0, "currency": "USD"}

	r = client.post("/payments/refund", json={"appointmentId": appt["id"]}, headers=as_user(admin))
	assert r.status_code == 409
	assert r.json()["message"] == "Payment has already been refunded"
	assert len(gateway.refunds) == 1

	row = db.get(models.Appointment, appt["id"])
	assert row.payment_status == "refunded"
	assert row.status == "cancelled"
	assert row.refund_id == "re_test_1"
	assert row.cancelled_by == admin.id
	assert row.refund_reason == "duplicate"


def test_overlapping_refunds_reach_the_provider_once(client, gateway, patient, doctor, admin, monkeypatch):
	from telehealth.auth import Caller
	from telehealth.db import SessionLocal
	from telehealth.errors import ConflictError
	from telehealth.services import payments
	appt = _paid_booking(client, gateway, patient, doctor, next_weekday(WEDNESDAY))
	provider_refund = gateway.create_refund
	seen = []

	def create_refund(payment_intent_id, reason=None):
		# a second admin refunds the same appointment while the provider call is in flight
		other = SessionLocal()
		try:
			payments.refund_payment(other, Caller(admin.id, "admin"), gateway, appt["id"])
		except ConflictError as e:
			seen.append(e.message)
		finally:
			other.close()
		return provider_refund(payment_intent_id, reason)

	monkeypatch.setattr(gateway, "create_refund", create_refund)
	r = client.post("/payments/refund", json={"appointmentId": appt["id"]}, headers=as_user(admin))
	assert r.status_code == 200
	assert seen == ["A refund for this payment is already in progress"]
	assert len(gateway.refunds) == 1


def test_failed_provider_refund_releases_the_claim(client, gateway, db, patient, doctor, admin):
	appt = _paid_booking(client, gateway, patient, doctor, next_weekday(WEDNESDAY))
	gateway.fail_refunds = True
	r = client.post("/payments/refund", json={"appointmentId": appt["id"]}, headers=as_user(admin))
	assert r.status_code == 502
	row = db.get(models.Appointment, appt["id"])
	db.refresh(row)
	assert (row.payment_status, row.refund_timestamp) == ("paid", None)

	gateway.fail_refunds = False
	r = client.post("/payments/refund", json={"appointmentId": appt["id"]}, headers=as_user(admin))
	assert r.status_code == 200
	assert len(gateway.refunds) == 1


def test_refund_rules(client, gateway, patient, doctor, admin):
	r = client.post("/appointments/book", json={"doctorId": doctor.id, "appointmentData": appointment_data(next_weekday(WEDNESDAY))}, headers=as_user(patient))
	cash = r.json()["data"]
	r = client.post("/payments/refund", json={"appointmentId": cash["id"]}, headers=as_user(admin))
	assert r.status_code == 400
	assert r.json()["message"] == "No payment found for this appointment"

	r = client.post("/payments/refund", json={"appointmentId": 9999}, headers=as_user(admin))
	assert r.status_code == 404

	r = client.post("/payments/refund", json={"appointmentId": cash["id"]}, headers=as_user(patient))
	assert r.status_code == 403
	assert gateway.refunds == []


def test_payment_history(client, gateway, patient, doctor):
	_paid_booking(client, gateway, patient, doctor, next_weekday(WEDNESDAY))
	_paid_booking(client, gateway, patient, doctor, next_weekday(WEDNESDAY), slot="11:00-11:30")
	r = client.get("/payments/history", params={"limit": 1}, headers=as_user(patient))
	assert r.status_code == 200
	data = r.json()["data"]
	assert len(data["appointments"]) == 1
	assert data["pagination"] == {"total": 2, "page": 1, "pages": 2, "hasNext": True, "hasPrev": False}


def _pending_stripe_appointment(db, patient, doctor, pi_id="pi_hook_1", status="pending", hours=0):
	from datetime import datetime, timedelta
	start = datetime.utcnow().replace(microsecond=0) + timedelta(days=3, hours=hours)
	appt = models.Appointment(
		patient_id=patient.id, doctor_id=doctor.id, date=start, end_date=start + timedelta(minutes=30),
		timezone=doctor.timezone, payment_status=status, payment_intent_id=pi_id, patient_name=patient.name,
		age_group="25-34", gender="male", problem="Back pain", fee=20, currency="USD",
	)
	db.add(appt)
	db.commit()
	return appt


def _post_webhook(client, body, signature=None):
	return client.post("/payments/webhook", content=body, headers={
		"Stripe-Signature": signature if signature is not None else sign(body),
		"Content-Type": "application/json",
	})


def test_webhook_requires_valid_signature(client, db, patient, doctor):
	appt = _pending_stripe_appointment(db, patient, doctor)
	body = webhook_body("evt_1", "payment_intent.succeeded", "pi_hook_1")
	r = _post_webhook(client, body, signature=sign(body, secret="whsec_wrong"))
	assert r.status_code == 400
	assert r.json()["message"].startswith("Webhook Error:")
	db.expire_all()
	assert appt.payment_status == "pending"


def test_webhook_updates_payment_status_once(client, db, patient, doctor):
	appt = _pending_stripe_appointment(db, patient, doctor)
	body = webhook_body("evt_1", "payment_intent.succeeded", "pi_hook_1", latest_charge="ch_hook_1")
	r = _post_webhook(client, body)
	assert r.status_code == 200
	assert r.json() == {"received": True}
	db.expire_all()
	assert appt.payment_status == "paid"
	assert appt.stripe_charge_id == "ch_hook_1"

	assert _post_webhook(client, body).status_code == 200
	assert db.query(models.PaymentEvent).filter(models.PaymentEvent.event_id == "evt_1").count() == 1

	failed = webhook_body("evt_2", "payment_intent.payment_failed", "pi_hook_1")
	assert _post_webhook(client, failed).status_code == 200
	db.expire_all()
	assert appt.payment_status == "paid"


def test_webhook_failed_and_refunded(client, db, patient, doctor):
	pending = _pending_stripe_appointment(db, patient, doctor, "pi_hook_2")
	refunded = _pending_stripe_appointment(db, patient, doctor, "pi_hook_3", status="refunded", hours=2)

	assert _post_webhook(client, webhook_body("evt_3", "payment_intent.payment_failed", "pi_hook_2")).status_code == 200
	assert _post_webhook(client, webhook_body("evt_4", "payment_intent.succeeded", "pi_hook_3")).status_code == 200
	assert _post_webhook(client, webhook_body("evt_5", "charge.refunded", "ch_x")).status_code == 200
	db.expire_all()
	assert pending.payment_status == "failed"
	assert refunded.payment_status == "refunded"


def test_webhook_is_processed_off_the_event_loop(client, monkeypatch):
	threads = []

	def handle_webhook(db, gateway, payload, signature):
		try:
			asyncio.get_running_loop()
			threads.append("event loop")
		except RuntimeError:
			threads.append("worker")
		return {"received": True}

	monkeypatch.setattr("telehealth.services.payments.handle_webhook", handle_webhook)
	body = webhook_body("evt_9", "payment_intent.succeeded", "pi_hook_9")
	assert _post_webhook(client, body).json() == {"received": True}
	assert threads == ["worker"]
