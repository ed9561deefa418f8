"""Polling client for the admin negotiation panel.

Keeps a local view of one doctor's negotiation in sync with the API on a fixed
interval, without overwriting inputs the admin is editing.
"""
import threading
import time
from dataclasses import dataclass, field
import requests
from telehealth.config import settings
from telehealth.errors import ValidationError
from telehealth.logger import get_logger

log = get_logger("poller")

EDITABLE_FIELDS = ("proposedFee", "commission")


class TypingGuard:
	"""Per-field "user is typing" flag with idle timeouts after input and blur."""

	def __init__(self, blur_idle: float = 1.0, input_idle: float = 2.0, clock=time.monotonic):
		self.blur_idle = blur_idle
		self.input_idle = input_idle
		self.clock = clock
		self._until: dict[str, float] = {}
		self._lock = threading.Lock()

	def on_focus(self, name: str):
		with self._lock:
			self._until[name] = float("inf")

	def on_input(self, name: str):
		with self._lock:
			self._until[name] = self.clock() + self.input_idle

	def on_blur(self, name: str):
		with self._lock:
			self._until[name] = self.clock() + self.blur_idle

	def is_typing(self, name: str) -> bool:
		with self._lock:
			return self.clock() < self._until.get(name, 0.0)

	def any_typing(self) -> bool:
		return any(self.is_typing(n) for n in list(self._until))


@dataclass
class NegotiationPanel:
	doctor_id: int
	status: str | None = None
	doctor_proposed_fee: float | None = None
	agreed_fee: float | None = None
	currency: str | None = None
	transcript: list = field(default_factory=list)
	inputs: dict = field(default_factory=lambda: {name: None for name in EDITABLE_FIELDS})
	connection: str = "idle"
	last_synced: float | None = None


class NegotiationPoller:
	def __init__(self, base_url: str, doctor_id: int, headers: dict | None = None, interval: float | None = None,
				 session: requests.Session | None = None, guard: TypingGuard | None = None, timeout: float = 10):
		self.base_url = base_url.rstrip("/")
		self.doctor_id = doctor_id
		self.headers = dict(headers or {})
		self.interval = interval if interval is not None else settings.negotiation_poll_seconds
		self.session = session or requests.Session()
		self.guard = guard or TypingGuard()
		self.timeout = timeout
		self.panel = NegotiationPanel(doctor_id=doctor_id)
		self._stop = threading.Event()
		self._thread: threading.Thread | None = None
		self._lock = threading.Lock()

	@property
	def record_url(self) -> str:
		return f"{self.base_url}/doctors/{self.doctor_id}/earning-negotiation"

	def apply(self, record: dict):
		"""Merge a server record into the panel, leaving fields under edit alone."""
		with self._lock:
			p = self.panel
			p.status = record.get("earningNegotiationStatus")
			p.doctor_proposed_fee = record.get("proposedFee")
			p.agreed_fee = record.get("agreedFee")
			p.currency = record.get("currency")
			history = record.get("earningNegotiationHistory") or []
			if len(history) != len(p.transcript):
				p.transcript = list(history)

			fee = p.agreed_fee if p.status == "agreed" else p.doctor_proposed_fee
			incoming = {"proposedFee": fee, "commission": record.get("commission")}
			for name, value in incoming.items():
				if not self.guard.is_typing(name):
					p.inputs[name] = value

	def refresh(self) -> bool:
		self.panel.connection = "syncing"
		try:
			r = self.session.get(self.record_url, headers=self.headers, timeout=self.timeout)
			r.raise_for_status()
			record = (r.json() or {}).get("data")
		except (requests.RequestException, ValueError) as e:
			log.warning("Negotiation refresh for doctor %s failed: %s", self.doctor_id, e)
			self.panel.connection = "error"
			return False
		if not record:
			self.panel.connection = "error"
			return False
		self.apply(record)
		self.panel.connection = "synced"
		self.panel.last_synced = time.time()
		return True

	def _post(self, url: str, body: dict) -> dict:
		try:
			r = self.session.post(url, json=body, headers=self.headers, timeout=self.timeout)
		except requests.RequestException as e:
			raise ValidationError(f"Could not reach the server: {e}")
		try:
			payload = r.json()
		except ValueError:
			payload = {}
		if not r.ok or not payload.get("success", False):
			raise ValidationError(payload.get("message") or f"Request failed with status {r.status_code}")
		self.refresh()
		return payload.get("data") or {}

	def post_update(self, body: dict) -> dict:
		return self._post(self.record_url, body)

	def agree(self, body: dict) -> dict:
		return self._post(f"{self.record_url}/agree", body)

	def fetch_negotiations(self, status: str | None = None, page: int = 1) -> dict:
		params = {"page": page}
		if status:
			params["status"] = status
		r = self.session.get(f"{self.base_url}/doctors/earning-negotiation", params=params, headers=self.headers, timeout=self.timeout)
		r.raise_for_status()
		return r.json().get("data") or {"doctors": [], "total": 0, "page": 1, "pages": 1}

	def _run(self):
		while not self._stop.wait(self.interval):
			self.refresh()

	def start(self):
		if self._thread and self._thread.is_alive():
			return
		self._stop.clear()
		self.refresh()
		self._thread = threading.Thread(target=self._run, name=f"negotiation-poller-{self.doctor_id}", daemon=True)
		self._thread.start()

	def stop(self):
		self._stop.set()
		if self._thread:
			self._thread.join(timeout=self.interval + self.timeout)
			self._thread = None
