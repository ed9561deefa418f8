from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from telehealth.config import settings
from telehealth.db import engine, Base
from telehealth.routers import negotiation, doctors, appointments, payments, reviews, notifications, admin
from telehealth.errors import AppError, InternalError, SlotConflictError
from fastapi.responses import JSONResponse
from telehealth.logger import get_logger

app = FastAPI(title="Telehealth Booking API", version="1.0.0")
log = get_logger("api")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

# negotiation first: /doctors/earning-negotiation must win over /doctors/{id}
app.include_router(negotiation.router)
app.include_router(doctors.router)
app.include_router(appointments.router)
app.include_router(payments.router)
app.include_router(reviews.router)
app.include_router(notifications.router)
app.include_router(admin.router)

@app.get("/")

def root():
	return {"status": "ok", "env": settings.app_env}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
	content = {"success": False, "message": exc.message}
	if isinstance(exc, SlotConflictError):
		content["refunded"] = exc.refunded
		if exc.refund_id:
			content["refundId"] = exc.refund_id
	if exc.status_code >= 500:
		log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	problems = []
	for err in exc.errors():
		loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
		problems.append(f"{'.'.join(loc) or 'request'}: {err.get('msg')}")
	return JSONResponse(status_code=400, content={"success": False, "message": "; ".join(problems) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
	log.exception("Unhandled error: %s", exc)
	return await app_error_handler(request, InternalError())


def run():
	import uvicorn
	uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
	run()
