"""FastAPI dependencies for authentication, database access, and ticket collaborators."""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.db.session import SessionLocal


AUTH_HEADER = "Authorization"
BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(request: Request) -> UUID:
    """
    Resolve the caller's user id from the bearer token.

    Workspace membership is checked by the ticket services, not here.

    Raises:
        HTTPException 401: Missing, invalid or expired token
    """
    header = request.headers.get(AUTH_HEADER, "")
    if not header.lower().startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = header[len(BEARER_PREFIX):].strip()
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid user token")

    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user token")


def get_provider_registry():
    """Provider registry used to resolve ticket provider clients."""
    from app.services.providers.registry import default_registry

    return default_registry


def get_sentiment_analyzer():
    """Sentiment analyzer used to enrich ticket pages."""
    from app.services.sentiment_service import build_sentiment_analyzer

    return build_sentiment_analyzer()

