"""Database sessions for request handlers."""

from typing import Generator

from sqlalchemy.orm import Session

from bndy_api.config.env import get_database_url
from bndy_api.db.engine import build_engine, build_sessionmaker

# Fails fast at import in production when DATABASE_URL is missing
engine = build_engine(get_database_url())

SessionLocal = build_sessionmaker(engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
