from telehealth import models
from telehealth.workers import celery_app


def test_imports():
	import telehealth.main  # noqa: F401
	import telehealth.models  # noqa: F401
	import telehealth.routers.negotiation  # noqa: F401
	import telehealth.routers.payments  # noqa: F401
	import telehealth.routers.appointments  # noqa: F401
	import telehealth.routers.doctors  # noqa: F401
	import telehealth.routers.reviews  # noqa: F401
	import telehealth.routers.admin  # noqa: F401
	import telehealth.client.negotiation_poller  # noqa: F401


def test_seed_is_idempotent(db):
	from scripts.seed import seed
	seed(db)
	seed(db)
	assert db.query(models.User).filter(models.User.role == "doctor").count() == 2
	assert db.query(models.DoctorAvailability).count() == 50


def test_root(client):
	r = client.get("/")
	assert r.json()["status"] == "ok"


def test_notifications(client, db, patient):
	from scripts.helpers import as_user
	first = models.Notification(user_id=patient.id, message="old", is_read=True)
	second = models.Notification(user_id=patient.id, message="new")
	db.add_all([first, second])
	db.commit()
	r = client.get("/notifications", headers=as_user(patient))
	assert [n["message"] for n in r.json()["data"]] == ["new", "old"]
	r = client.post(f"/notifications/{second.id}/read", headers=as_user(patient))
	assert r.json()["data"]["isRead"] is True
	assert client.post("/notifications/9999/read", headers=as_user(patient)).status_code == 404


def test_delivery_task_without_channels(db, patient):
	n = models.Notification(user_id=patient.id, message="Your appointment was accepted")
	db.add(n)
	db.commit()
	# no Gmail token and no WhatsApp credentials configured
	result = celery_app.deliver_notification_task(n.id)
	assert result["status"] == "delivered"
	assert result["email"] is False
	assert result["whatsapp"] == 400
	assert celery_app.deliver_notification_task(9999)["status"] == "missing"


def test_payments_csv_export(client, db, admin, patient, doctor):
	from scripts.helpers import as_user
	from datetime import datetime, timedelta
	start = datetime.utcnow().replace(microsecond=0) + timedelta(days=2)
	db.add(models.Appointment(
		patient_id=patient.id, doctor_id=doctor.id, date=start, end_date=start + timedelta(minutes=30),
		timezone=doctor.timezone, payment_status="paid", payment_intent_id="pi_csv", patient_name=patient.name,
		age_group="18-24", gender="female", problem="Cough", fee=25, currency="USD",
	))
	db.commit()
	r = client.get("/admin/export/payments.csv", headers=as_user(admin))
	assert r.status_code == 200
	lines = r.text.strip().splitlines()
	assert lines[0].startswith("appointment_id,doctor_id,doctor_name")
	assert "pi_csv" in lines[1]
	assert client.get("/admin/export/payments.csv", headers=as_user(patient)).status_code == 403


def test_unexpected_error_is_enveloped(patient, monkeypatch):
	from fastapi.testclient import TestClient
	from telehealth.main import app
	from scripts.helpers import as_user

	def broken(*args, **kwargs):
		raise RuntimeError("connection reset")

	monkeypatch.setattr("telehealth.services.notifications.list_for_user", broken)
	with TestClient(app, raise_server_exceptions=False) as c:
		r = c.get("/notifications", headers=as_user(patient))
	assert r.status_code == 500
	assert r.json() == {"success": False, "message": "Internal server error"}


def test_run_serves_the_app(monkeypatch):
	import uvicorn
	from telehealth import main
	calls = []
	monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
	main.run()
	assert calls == [(main.app, {"host": "0.0.0.0", "port": 8000})]
