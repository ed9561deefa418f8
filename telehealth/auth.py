from dataclasses import dataclass
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from telehealth.db import get_db
from telehealth import models
from telehealth.errors import AuthenticationError, AuthorizationError


@dataclass(frozen=True)
class Caller:
	id: int
	role: str

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"


def get_caller(
	x_user_id: int | None = Header(None),
	x_user_role: str | None = Header(None),
	db: Session = Depends(get_db),
) -> Caller:
	# identity is established by the upstream gateway and forwarded as headers
	if x_user_id is None or not x_user_role:
		raise AuthenticationError()
	user = db.query(models.User).filter(models.User.id == x_user_id).first()
	if not user:
		raise AuthenticationError("Unknown user")
	if user.role != x_user_role:
		raise AuthorizationError("Role does not match the authenticated user")
	return Caller(id=user.id, role=user.role)


def require_role(*roles: str):
	def dependency(caller: Caller = Depends(get_caller)) -> Caller:
		if caller.role not in roles:
			raise AuthorizationError(f"Only {' or '.join(roles)} users can access this endpoint")
		return caller
	return dependency
