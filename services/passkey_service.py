"""
Passkey grants: short-lived tokens handed out after a successful passkey check
and consumed by a password reset.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session

import models
from models import utcnow
from services.otp_service import generate_token

logger = logging.getLogger(__name__)

PASSKEY_GRANT_MINUTES = 15


@dataclass
class PasskeyGrant:
    token: str
    expires_at: datetime
    expires_in: int = PASSKEY_GRANT_MINUTES * 60  # seconds


class PasskeyGrantError(Exception):
    """Raised when a passkey token cannot be used for a reset."""


class PasskeyGrantInvalid(PasskeyGrantError):
    pass


class PasskeyGrantExpired(PasskeyGrantError):
    pass


class PasskeyService:
    def __init__(self, db: Session):
        self.db = db

    def issue_grant(self, email: str) -> PasskeyGrant:
        grant = PasskeyGrant(
            token=generate_token(),
            expires_at=utcnow() + timedelta(minutes=PASSKEY_GRANT_MINUTES),
        )
        self.db.add(models.PasskeyVerification(
            email=email,
            passkey_token=grant.token,
            expires_at=grant.expires_at,
            is_used=False,
        ))
        self.db.commit()
        logger.info("Issued passkey grant")
        return grant

    def validate_grant(self, email: str, token: str) -> models.PasskeyVerification:
        """
        Return the latest unused grant for (email, token) without spending it.

        Raises:
            PasskeyGrantInvalid: No unused grant matches
            PasskeyGrantExpired: The grant is past its expiry
        """
        record: Optional[models.PasskeyVerification] = (
            self.db.query(models.PasskeyVerification)
            .filter(
                models.PasskeyVerification.email == email,
                models.PasskeyVerification.passkey_token == token,
                models.PasskeyVerification.is_used == False,
            )
            .order_by(models.PasskeyVerification.created_at.desc(), models.PasskeyVerification.id.desc())
            .first()
        )
        if not record:
            raise PasskeyGrantInvalid("Invalid request. Please verify passkey first.")

        if utcnow() > record.expires_at:
            raise PasskeyGrantExpired("Session expired. Please start the password reset process again.")
        return record

    def consume_grant(self, email: str, token: str) -> models.PasskeyVerification:
        """Validate the grant, then mark it used. Raises like validate_grant."""
        record = self.validate_grant(email, token)

        consumed = (
            self.db.query(models.PasskeyVerification)
            .filter(
                models.PasskeyVerification.id == record.id,
                models.PasskeyVerification.is_used == False,
            )
            .update({models.PasskeyVerification.is_used: True}, synchronize_session=False)
        )
        self.db.commit()
        if not consumed:
            raise PasskeyGrantInvalid("Invalid request. Please verify passkey first.")
        return record
