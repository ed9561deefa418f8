from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
	app_env: str = Field(default="development")
	database_url: str = Field(default="sqlite:///./telehealth.db")
	timezone: str = Field(default="UTC")

	stripe_secret_key: str | None = None
	stripe_webhook_secret: str | None = None
	stripe_refund_reason: str = Field(default="requested_by_customer")
	default_currency: str = Field(default="USD")
	supported_currencies: str = Field(default="USD,PKR")

	video_call_base_url: str = Field(default="https://meet.jit.si")
	negotiation_poll_seconds: float = Field(default=5.0)

	google_token_file: str | None = Field(default="token.json")

	whatsapp_token: str | None = None
	whatsapp_phone_id: str | None = None
	whatsapp_template: str = Field(default="hello_world")
	whatsapp_lang: str = Field(default="en_US")

	celery_broker_url: str = Field(default="redis://localhost:6379/0")
	celery_result_backend: str = Field(default="redis://localhost:6379/1")
	celery_task_always_eager: bool = Field(default=False)

	class Config:
		env_file = ".env"
		env_file_encoding = "utf-8"

	@property
	def currencies(self) -> tuple[str, ...]:
		return tuple(c.strip().upper() for c in self.supported_currencies.split(",") if c.strip())

settings = Settings()
