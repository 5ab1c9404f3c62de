from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import JWTError, jwt
from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import models
from config import get_settings
from database import get_db
from services.notification_service import NotificationService

settings = get_settings()

NOT_AUTHORIZED = "Not authorized to access this route"

# Security scheme
# Use auto_error=False to handle missing/invalid tokens ourselves
security = HTTPBearer(auto_error=False)

# Salted pbkdf2_sha256 for passwords and passkeys; verify() compares in constant time
_password_context = CryptContext(schemes=["pbkdf2_sha256"], default="pbkdf2_sha256", deprecated="auto")


def hash_secret(secret: str) -> str:
    return _password_context.hash(secret)


def verify_secret(secret: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash:
        return False
    try:
        return _password_context.verify(secret, stored_hash)
    except (ValueError, TypeError):
        # Unrecognised or corrupt hash
        return False


def create_access_token(user_id: int, remember_me: bool = False) -> str:
    """
    Create a signed JWT access token.

    Args:
        user_id: Account the token is issued for
        remember_me: Extend the lifetime to REMEMBER_ME_DAYS

    Returns:
        Encoded JWT token string
    """
    if remember_me:
        expires_delta = timedelta(days=settings.remember_me_days)
    else:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "user_id": user_id,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """
    Verify and decode a JWT token.

    Raises:
        HTTPException: 401 for any bad signature, expiry or malformed token
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """
    Dependency for getting the current authenticated user from JWT token.

    Raises:
        HTTPException: 401 when the token is missing or invalid, 404 when the
            account it names no longer exists
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(credentials.credentials)

    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    return user


def get_notifier(request: Request) -> NotificationService:
    """Notification service built at start-up (see main.py)"""
    return request.app.state.notifier


def success_body(message: Optional[str] = None, data: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
