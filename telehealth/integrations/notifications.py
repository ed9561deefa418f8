import base64
from email.mime.text import MIMEText
import requests
from telehealth.config import settings
from telehealth.logger import get_logger

log = get_logger("delivery")

SCOPES = ['https://www.googleapis.com/auth/gmail.send']

def _gmail_service():
	if not settings.google_token_file:
		return None
	try:
		from googleapiclient.discovery import build
		from google.oauth2.credentials import Credentials
		creds = Credentials.from_authorized_user_file(settings.google_token_file, SCOPES)
		return build('gmail', 'v1', credentials=creds)
	except Exception as e:
		log.debug("Gmail delivery unavailable: %s", e)
		return None


def send_email(to_email: str, subject: str, body: str) -> bool:
	service = _gmail_service()
	if not service:
		return False
	msg = MIMEText(body)
	msg['to'] = to_email
	msg['subject'] = subject
	raw = base64.urlsafe_b64encode(msg.as_bytes()).decode()
	try:
		service.users().messages().send(userId='me', body={'raw': raw}).execute()
		return True
	except Exception:
		log.exception("Gmail send to %s failed", to_email)
		return False


def whatsapp_send_text(message: str, to: str | None = None) -> tuple[int, str]:
	token = settings.whatsapp_token
	phone_id = settings.whatsapp_phone_id
	if not (token and phone_id and to):
		return (400, 'missing-config')
	headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
	payload = {"messaging_product": "whatsapp", "to": to, "type": "text", "text": {"body": message[:1000]}}
	try:
		r = requests.post(f"https://graph.facebook.com/v22.0/{phone_id}/messages", headers=headers, json=payload, timeout=10)
		if r.status_code == 200:
			return (200, r.text[:300])
		# outside the 24h window only templates are accepted
		payload_tpl = {"messaging_product": "whatsapp", "to": to, "type": "template", "template": {"name": settings.whatsapp_template, "language": {"code": settings.whatsapp_lang}}}
		rt = requests.post(f"https://graph.facebook.com/v22.0/{phone_id}/messages", headers=headers, json=payload_tpl, timeout=10)
		return (rt.status_code, rt.text[:300])
	except requests.RequestException as e:
		log.warning("WhatsApp send failed: %s", e)
		return (500, str(e))
