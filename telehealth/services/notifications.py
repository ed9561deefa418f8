from sqlalchemy.orm import Session
from telehealth import models
from telehealth.logger import get_logger
from telehealth.workers.celery_app import deliver_notification_task

log = get_logger("notifications")


def notify(db: Session, user_id: int, message: str, type: str = "alert", appointment_id: int | None = None) -> models.Notification | None:
	try:
		n = models.Notification(user_id=user_id, type=type, message=message, appointment_id=appointment_id)
		db.add(n)
		db.commit()
		db.refresh(n)
	except Exception:
		db.rollback()
		log.exception("Failed to store notification for user %s", user_id)
		return None
	try:
		deliver_notification_task.delay(n.id)
	except Exception:
		log.exception("Failed to dispatch notification %s", n.id)
	return n


def list_for_user(db: Session, user_id: int, limit: int = 50) -> list[models.Notification]:
	return (
		db.query(models.Notification)
		.filter(models.Notification.user_id == user_id)
		.order_by(models.Notification.is_read.asc(), models.Notification.id.desc())
		.limit(limit)
		.all()
	)


def mark_read(db: Session, user_id: int, notification_id: int) -> models.Notification | None:
	n = db.query(models.Notification).filter(
		models.Notification.id == notification_id,
		models.Notification.user_id == user_id,
	).first()
	if not n:
		return None
	n.is_read = True
	db.commit()
	db.refresh(n)
	return n
