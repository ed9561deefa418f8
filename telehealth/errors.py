class AppError(Exception):
	status_code = 500
	default_message = "Internal server error"

	def __init__(self, message: str | None = None):
		self.message = message or self.default_message
		super().__init__(self.message)


class ValidationError(AppError):
	status_code = 400
	default_message = "Invalid request"


class PaymentNotCompletedError(ValidationError):
	def __init__(self, status: str):
		self.payment_status = status
		super().__init__(f"Payment not completed. Status: {status}")


class AuthenticationError(AppError):
	status_code = 401
	default_message = "Authentication required"


class AuthorizationError(AppError):
	status_code = 403
	default_message = "You are not allowed to perform this action"


class NotFoundError(AppError):
	status_code = 404
	default_message = "Not found"


class ConflictError(AppError):
	status_code = 409
	default_message = "Conflict"


class SlotConflictError(ConflictError):
	default_message = "Slot is no longer available"

	def __init__(self, message: str | None = None, refunded: bool = False, refund_id: str | None = None):
		self.refunded = refunded
		self.refund_id = refund_id
		super().__init__(message)


class ExternalProviderError(AppError):
	status_code = 502
	default_message = "Payment provider error. Please try again."


class InternalError(AppError):
	pass
