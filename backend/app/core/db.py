"""
Database engine

Creates the shared engine (connection pool) used by the API and the
scheduler process.

Notes:
- Tables are managed with Alembic migrations, not created here
- Import app.models before use so every table is registered on the metadata
"""
from sqlmodel import Session, create_engine

from app.core.config import settings

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)


def get_session() -> Session:
    """Open a standalone session for job runs outside a request."""
    return Session(engine)
