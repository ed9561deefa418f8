import os

# must be set before telehealth.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GOOGLE_TOKEN_FILE"] = ""
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"

import pytest
from fastapi.testclient import TestClient
from telehealth.db import SessionLocal, Base, engine
from telehealth.integrations.payments import get_payment_gateway
from telehealth.main import app
from scripts.helpers import FakeGateway, FakeTask
from scripts.seed import seed


@pytest.fixture(autouse=True)
def fresh_db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	yield


@pytest.fixture(autouse=True)
def dispatched(monkeypatch):
	task = FakeTask()
	monkeypatch.setattr("telehealth.services.notifications.deliver_notification_task", task)
	return task


@pytest.fixture
def db():
	s = SessionLocal()
	yield s
	s.close()


@pytest.fixture
def seeded(db):
	data = seed(db)
	return data


@pytest.fixture
def admin(seeded):
	return seeded["admin"]


@pytest.fixture
def doctor(seeded):
	# Dr. Ayesha Khan: Asia/Karachi, weekday slots, PKR
	return seeded["doctors"][0]


@pytest.fixture
def patient(seeded):
	return seeded["patients"][0]


@pytest.fixture
def other_patient(seeded):
	return seeded["patients"][1]


@pytest.fixture
def gateway():
	return FakeGateway()


@pytest.fixture
def client(gateway):
	app.dependency_overrides[get_payment_gateway] = lambda: gateway
	with TestClient(app) as c:
		yield c
	app.dependency_overrides.clear()

