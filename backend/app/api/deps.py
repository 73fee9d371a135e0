"""
FastAPI dependencies

Reusable dependencies injected into route handlers.
"""
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from app.core.db import engine


def get_db() -> Generator[Session, None, None]:
    """
    Database session per request

    The session is closed once the request finishes.

    Yields:
        Session: database session
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
