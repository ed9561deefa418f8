import json
from sqlalchemy.orm import Session
from telehealth import models
from telehealth.logger import get_logger

log = get_logger("audit")


def record_audit(db: Session, user_id: int | None, action: str, target: str, target_id: int | None = None, details: dict | None = None) -> bool:
	try:
		db.add(models.AuditLog(
			user_id=user_id,
			action=action,
			target=target,
			target_id=target_id,
			details=json.dumps(details or {}, default=str),
		))
		db.commit()
		return True
	except Exception:
		# never fails the operation being audited
		db.rollback()
		log.exception("Failed to write audit log %s for %s %s", action, target, target_id)
		return False
