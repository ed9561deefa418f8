from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from telehealth.config import settings


def _engine_kwargs(url: str) -> dict:
	if not url.startswith("sqlite"):
		return {"pool_pre_ping": True}
	kwargs = {"connect_args": {"check_same_thread": False}}
	# in-memory databases live inside one connection
	if url in ("sqlite://", "sqlite:///:memory:"):
		kwargs["poolclass"] = StaticPool
	return kwargs


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

if settings.database_url.startswith("sqlite"):
	@event.listens_for(engine, "connect")
	def _sqlite_pragmas(dbapi_conn, _record):
		cur = dbapi_conn.cursor()
		cur.execute("PRAGMA foreign_keys=ON")
		cur.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()
