from celery import Celery
from telehealth.config import settings
from telehealth.logger import get_logger

log = get_logger("worker")

celery_app = Celery(
	"telehealth",
	broker=settings.celery_broker_url,
	backend=settings.celery_result_backend,
)
celery_app.conf.task_always_eager = settings.celery_task_always_eager
celery_app.conf.task_ignore_result = True

@celery_app.task

def deliver_notification_task(notification_id: int) -> dict:
	from telehealth.db import SessionLocal
	from telehealth import models
	from telehealth.integrations.notifications import send_email, whatsapp_send_text

	db = SessionLocal()
	try:
		n = db.query(models.Notification).filter(models.Notification.id == notification_id).first()
		if not n:
			return {"status": "missing", "notification_id": notification_id}
		user = n.user
		result = {"status": "delivered", "notification_id": notification_id, "email": False, "whatsapp": None}
		if user and user.email:
			result["email"] = send_email(user.email, "Telehealth notification", n.message)
		if user and user.phone:
			code, _ = whatsapp_send_text(n.message, to=user.phone)
			result["whatsapp"] = code
		log.info("Notification %s delivered: %s", notification_id, result)
		return result
	finally:
		db.close()
