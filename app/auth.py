"""
Bearer JWT authentication dependency. Tokens are issued by the dashboard auth service;
this API only verifies them and loads the user for tenant scoping.
"""
import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import User

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT; raises JWTError on bad signature or expiry."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.AUTH_ALGORITHM])


def create_access_token(user_id: str, tenant_id: str) -> str:
    """Issue a token for a user (used by tooling and tests)."""
    return jwt.encode({"sub": user_id, "tenant_id": tenant_id}, settings.JWT_SECRET, algorithm=settings.AUTH_ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated user from the Authorization header"""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not credentials or not credentials.credentials:
        raise unauthorized
    try:
        payload = decode_token(credentials.credentials)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise unauthorized
    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id:
        raise unauthorized
    user = db.query(User).filter(User.id == str(user_id)).first()
    if not user:
        raise unauthorized
    return user
