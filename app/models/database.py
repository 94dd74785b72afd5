from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings


def _normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+psycopg://", 1)

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)

    return database_url


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # Stock and order rows are locked with SELECT ... FOR UPDATE, so the pool
    # must hand out live connections to the webhook, API and sweeper threads.
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 5}


_database_url = _normalize_database_url(settings.DATABASE_URL)
engine = create_engine(_database_url, **_engine_options(_database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
