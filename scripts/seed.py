from telehealth.db import SessionLocal, Base, engine
from telehealth import models

Base.metadata.create_all(bind=engine)

WEEKDAY_SLOTS = ["09:00-09:30", "10:00-10:30", "11:00-11:30", "15:00-15:30", "16:00-16:30"]

DOCTORS = [
	{"name": "Dr. Ayesha Khan", "email": "ayesha.khan@example.com", "specialization": "General Medicine", "timezone": "Asia/Karachi", "currency": "PKR"},
	{"name": "Dr. John Miller", "email": "john.miller@example.com", "specialization": "Dermatology", "timezone": "America/New_York", "currency": "USD"},
]

def upsert_user(db, email: str, **fields):
	u = db.query(models.User).filter(models.User.email == email).first()
	if not u:
		u = models.User(email=email, **fields)
		db.add(u); db.commit(); db.refresh(u)
	return u

def seed(db=None):
	own = db is None
	db = db or SessionLocal()
	try:
		admin = upsert_user(db, "admin@example.com", name="Platform Admin", role="admin")
		doctors = []
		for info in DOCTORS:
			d = upsert_user(db, info["email"], name=info["name"], role="doctor", specialization=info["specialization"],
							timezone=info["timezone"], currency=info["currency"], earning_negotiation_status="pending")
			if not d.availability:
				for day in ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday"):
					for slot in WEEKDAY_SLOTS:
						d.availability.append(models.DoctorAvailability(day=day, slot=slot))
				db.commit()
			doctors.append(d)
		patients = [
			upsert_user(db, f"patient{i}@example.com", name=f"Patient {i}", role="patient", phone=f"+9230000{i:05d}")
			for i in range(1, 6)
		]
		return {"admin": admin, "doctors": doctors, "patients": patients}
	finally:
		if own:
			db.close()

if __name__ == "__main__":
	seed()
	print("Seeded sample data.")
