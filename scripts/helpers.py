import hashlib
import hmac
import json
import os
import time
from datetime import date, timedelta
from telehealth.errors import ExternalProviderError
from telehealth.integrations.payments import ProviderIntent, ProviderRefund, StripeGateway

WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

class FakeGateway(StripeGateway):
	"""In-memory payment provider; webhook signatures are still verified by the real SDK."""

	def __init__(self):
		super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)
		self.intents: dict[str, ProviderIntent] = {}
		self.refunds: list[tuple[str, str | None]] = []
		self.fail_refunds = False

	def create_payment_intent(self, amount_minor, currency, metadata, description):
		pi_id = f"pi_test_{len(self.intents) + 1}"
		intent = ProviderIntent(id=pi_id, status="requires_payment_method", amount=amount_minor,
								currency=currency.lower(), client_secret=f"{pi_id}_secret", metadata=dict(metadata))
		self.intents[pi_id] = intent
		return intent

	def retrieve_payment_intent(self, payment_intent_id):
		return self.intents.get(payment_intent_id)

	def succeed(self, payment_intent_id: str):
		intent = self.intents[payment_intent_id]
		intent.status = "succeeded"
		intent.latest_charge = f"ch_{payment_intent_id}"
		return intent

	def create_refund(self, payment_intent_id, reason=None):
		if self.fail_refunds:
			raise ExternalProviderError()
		self.refunds.append((payment_intent_id, reason))
		intent = self.intents.get(payment_intent_id)
		return ProviderRefund(id=f"re_test_{len(self.refunds)}", amount=intent.amount if intent else 0,
							  currency=intent.currency if intent else "usd", status="succeeded")

class FakeTask:
	def __init__(self):
		self.calls = []

	def delay(self, *args, **kwargs):
		self.calls.append(args)

def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
	t = timestamp or int(time.time())
	mac = hmac.new(secret.encode(), f"{t}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
	return f"t={t},v1={mac}"

def webhook_body(event_id: str, event_type: str, intent_id: str, **obj) -> bytes:
	return json.dumps({
		"id": event_id,
		"object": "event",
		"type": event_type,
		"data": {"object": {"id": intent_id, "object": "payment_intent", **obj}},
	}).encode()

def as_user(user) -> dict:
	return {"X-User-Id": str(user.id), "X-User-Role": user.role}

def next_weekday(weekday: int, weeks_ahead: int = 1) -> str:
	"""ISO date of a future weekday (0 = Monday)."""
	today = date.today()
	days = (weekday - today.weekday()) % 7 + 7 * weeks_ahead
	return (today + timedelta(days=days)).isoformat()

def appointment_data(day: str, slot: str = "10:00-10:30", name: str = "Patient One") -> dict:
	return {"date": day, "slot": slot, "patientName": name, "ageGroup": "25-34", "gender": "female", "problem": "Recurring headaches"}
