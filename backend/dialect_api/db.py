from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./dialect.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind=None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "voice_sessions" in tables:
		cols = {c["name"] for c in inspector.get_columns("voice_sessions")}
		with bind.begin() as conn:
			if "lesson_id" not in cols:
				conn.exec_driver_sql("ALTER TABLE voice_sessions ADD COLUMN lesson_id VARCHAR(64)")
			if "updated_at" not in cols:
				conn.exec_driver_sql("ALTER TABLE voice_sessions ADD COLUMN updated_at DATETIME")
