import json
from dataclasses import dataclass, field
import stripe
from telehealth.config import settings
from telehealth.errors import ExternalProviderError, ValidationError
from telehealth.logger import get_logger

log = get_logger("stripe")


@dataclass
class ProviderIntent:
	id: str
	status: str
	amount: int
	currency: str
	client_secret: str | None = None
	latest_charge: str | None = None
	metadata: dict = field(default_factory=dict)


REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


@dataclass
class ProviderRefund:
	id: str
	amount: int
	currency: str
	status: str | None = None


def _intent(obj) -> ProviderIntent:
	charge = obj.get("latest_charge")
	if charge is not None and not isinstance(charge, str):
		charge = charge.get("id")
	return ProviderIntent(
		id=obj["id"],
		status=obj["status"],
		amount=obj["amount"],
		currency=obj["currency"],
		client_secret=obj.get("client_secret"),
		latest_charge=charge,
		metadata=dict(obj.get("metadata") or {}),
	)


def _provider_error(exc: stripe.StripeError, action: str) -> ExternalProviderError:
	log.error("Stripe %s failed: %s (request %s)", action, exc, getattr(exc, "request_id", None))
	if isinstance(exc, stripe.CardError):
		return ExternalProviderError(f"Card error: {exc.user_message or 'your card was declined'}")
	return ExternalProviderError()


class StripeGateway:
	def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
		self.api_key = api_key or settings.stripe_secret_key
		self.webhook_secret = webhook_secret or settings.stripe_webhook_secret

	def create_payment_intent(self, amount_minor: int, currency: str, metadata: dict, description: str) -> ProviderIntent:
		try:
			pi = stripe.PaymentIntent.create(
				api_key=self.api_key,
				amount=amount_minor,
				currency=currency.lower(),
				automatic_payment_methods={"enabled": True},
				metadata=metadata,
				description=description,
			)
		except stripe.StripeError as e:
			raise _provider_error(e, "payment intent creation")
		return _intent(pi)

	def retrieve_payment_intent(self, payment_intent_id: str) -> ProviderIntent | None:
		try:
			pi = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
		except stripe.InvalidRequestError as e:
			if e.code == "resource_missing":
				return None
			raise _provider_error(e, "payment intent retrieval")
		except stripe.StripeError as e:
			raise _provider_error(e, "payment intent retrieval")
		return _intent(pi)

	def create_refund(self, payment_intent_id: str, reason: str | None = None) -> ProviderRefund:
		try:
			r = stripe.Refund.create(
				api_key=self.api_key,
				payment_intent=payment_intent_id,
				reason=reason if reason in REFUND_REASONS else settings.stripe_refund_reason,
			)
		except stripe.StripeError as e:
			raise _provider_error(e, "refund")
		return ProviderRefund(id=r["id"], amount=r["amount"], currency=r["currency"], status=r.get("status"))

	def construct_event(self, payload: bytes, signature: str | None) -> dict:
		if not self.webhook_secret:
			raise ValidationError("Webhook Error: signing secret is not configured")
		try:
			stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
		except (ValueError, stripe.SignatureVerificationError) as e:
			raise ValidationError(f"Webhook Error: {e}")
		return json.loads(payload)


_gateway: StripeGateway | None = None


def get_payment_gateway() -> StripeGateway:
	global _gateway
	if _gateway is None:
		_gateway = StripeGateway()
	return _gateway
