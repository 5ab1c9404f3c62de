"""
OTP Service
Issues, verifies and expires one-time codes for the sms, email and custom channels
"""
import secrets
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Type, Union
from sqlalchemy import case, func
from sqlalchemy.orm import Session

import models
from models import utcnow
from schemas import OTPChannel, OTPResultCode

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
OTP_EXPIRY_MINUTES = 10
MAX_ATTEMPTS = 5
GRANT_MAX_AGE_MINUTES = 15
SWEEP_AFTER = timedelta(days=1)
STATISTICS_WINDOW = timedelta(days=7)

CHANNEL_MODELS: Dict[OTPChannel, Type[models.OTPCodeMixin]] = {
    OTPChannel.sms: models.SMSOTPCode,
    OTPChannel.email: models.EmailOTPCode,
    OTPChannel.custom: models.CustomOTPCode,
}


def resolve_channel(channel: Union[OTPChannel, str]) -> OTPChannel:
    """Map a channel tag to its channel; anything other than sms/email is custom."""
    try:
        return OTPChannel(channel)
    except ValueError:
        return OTPChannel.custom


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Independent uniform digits, so leading zeros are as likely as any other digit."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def generate_token() -> str:
    """256-bit random hex token"""
    return secrets.token_hex(32)


@dataclass
class IssuedOTP:
    otp: str
    token: str
    expires_at: datetime
    expires_in: int = OTP_EXPIRY_MINUTES * 60  # seconds


@dataclass
class OTPVerification:
    code: OTPResultCode
    message: str
    remaining_attempts: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.code == OTPResultCode.verified


class OTPService:
    """One generic OTP state machine shared by all channel tables"""

    def __init__(self, db: Session):
        self.db = db

    def _model(self, channel: Union[OTPChannel, str]):
        return CHANNEL_MODELS[resolve_channel(channel)]

    def issue(self, channel: Union[OTPChannel, str], identifier: str) -> IssuedOTP:
        """
        Generate and store a new code for the identifier.

        Args:
            channel: sms, email or any other tag (custom)
            identifier: Mobile number or email the code is bound to

        Returns:
            IssuedOTP with the code (for out-of-band delivery only) and its token
        """
        model = self._model(channel)
        issued = IssuedOTP(
            otp=generate_otp(),
            token=generate_token(),
            expires_at=utcnow() + timedelta(minutes=OTP_EXPIRY_MINUTES),
        )
        record = model(
            identifier=identifier,
            otp=issued.otp,
            otp_token=issued.token,
            expires_at=issued.expires_at,
            attempts=0,
            is_used=False,
        )
        self.db.add(record)
        self.db.commit()
        logger.info(f"Issued {resolve_channel(channel).value} OTP, expires at {issued.expires_at.isoformat()}")
        return issued

    def verify(
        self,
        channel: Union[OTPChannel, str],
        identifier: str,
        otp: str,
        token: str,
    ) -> OTPVerification:
        """
        Check a claimed code against the latest unused record for (identifier, token).

        The attempt cap is checked before the code itself, so a record that has
        collected MAX_ATTEMPTS wrong guesses rejects even the correct code.
        """
        model = self._model(channel)
        record = (
            self.db.query(model)
            .filter(
                model.identifier == identifier,
                model.otp_token == token,
                model.is_used == False,
            )
            .order_by(model.created_at.desc(), model.id.desc())
            .first()
        )

        if not record:
            return OTPVerification(OTPResultCode.invalid, "Invalid or expired verification code")

        if utcnow() > record.expires_at:
            return OTPVerification(
                OTPResultCode.expired,
                "Verification code has expired. Please request a new one.",
            )

        if record.attempts >= MAX_ATTEMPTS:
            return _max_attempts()

        if record.otp != otp:
            # Compare-and-increment so concurrent guesses cannot exceed the cap
            updated = (
                self.db.query(model)
                .filter(model.id == record.id, model.attempts < MAX_ATTEMPTS)
                .update({model.attempts: model.attempts + 1}, synchronize_session=False)
            )
            self.db.commit()
            if not updated:
                return _max_attempts()

            attempts = self.db.query(model.attempts).filter(model.id == record.id).scalar()
            remaining = max(MAX_ATTEMPTS - attempts, 0)
            logger.info(f"Wrong OTP for record {record.id}, {remaining} attempts remaining")
            return OTPVerification(
                OTPResultCode.wrong,
                f"Invalid verification code. {remaining} attempts remaining.",
                remaining_attempts=remaining,
            )

        # Only one concurrent caller can flip is_used
        consumed = (
            self.db.query(model)
            .filter(
                model.id == record.id,
                model.is_used == False,
                model.attempts < MAX_ATTEMPTS,
            )
            .update({model.is_used: True, model.verified_at: utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        if not consumed:
            return OTPVerification(OTPResultCode.invalid, "Invalid or expired verification code")

        logger.info(f"OTP record {record.id} verified")
        return OTPVerification(OTPResultCode.verified, "Verification code verified successfully")

    def is_grant_valid(
        self,
        channel: Union[OTPChannel, str],
        identifier: str,
        token: str,
        max_age_minutes: int = GRANT_MAX_AGE_MINUTES,
    ) -> bool:
        """True if (identifier, token) was verified no more than max_age_minutes ago."""
        model = self._model(channel)
        record = (
            self.db.query(model)
            .filter(
                model.identifier == identifier,
                model.otp_token == token,
                model.is_used == True,
                model.verified_at.isnot(None),
            )
            .order_by(model.verified_at.desc())
            .first()
        )
        if not record:
            return False
        return utcnow() - record.verified_at <= timedelta(minutes=max_age_minutes)

    def consume_grant(
        self,
        channel: Union[OTPChannel, str],
        identifier: str,
        token: str,
        max_age_minutes: int = GRANT_MAX_AGE_MINUTES,
    ) -> bool:
        """
        Spend a verified grant. Clearing verified_at makes every later
        is_grant_valid/consume_grant for the same token fail.

        Returns:
            True if this call consumed a live grant
        """
        model = self._model(channel)
        cutoff = utcnow() - timedelta(minutes=max_age_minutes)
        consumed = (
            self.db.query(model)
            .filter(
                model.identifier == identifier,
                model.otp_token == token,
                model.is_used == True,
                model.verified_at.isnot(None),
                model.verified_at >= cutoff,
            )
            .update({model.verified_at: None}, synchronize_session=False)
        )
        self.db.commit()
        return bool(consumed)

    def invalidate_all(self, channel: Union[OTPChannel, str], identifier: str) -> int:
        """Mark every record for the identifier as used, whatever its state."""
        model = self._model(channel)
        count = (
            self.db.query(model)
            .filter(model.identifier == identifier)
            .update({model.is_used: True}, synchronize_session=False)
        )
        self.db.commit()
        return count

    def sweep_expired(self, channel: Optional[Union[OTPChannel, str]] = None) -> int:
        """
        Delete records that expired more than a day ago.

        Args:
            channel: Sweep only this channel's table; None sweeps every OTP
                table plus passkey grants
        """
        cutoff = utcnow() - SWEEP_AFTER
        if channel is None:
            targets = list(CHANNEL_MODELS.values()) + [models.PasskeyVerification]
        else:
            targets = [self._model(channel)]

        deleted = 0
        for model in targets:
            deleted += (
                self.db.query(model)
                .filter(model.expires_at < cutoff)
                .delete(synchronize_session=False)
            )
        self.db.commit()
        if deleted:
            logger.info(f"Swept {deleted} expired verification records")
        return deleted

    def statistics(self, channel: Union[OTPChannel, str]) -> Dict[str, Any]:
        """Usage counts for records created in the last 7 days"""
        model = self._model(channel)
        now = utcnow()
        total, verified, expired, maxed = (
            self.db.query(
                func.count(model.id),
                func.sum(case((model.is_used == True, 1), else_=0)),
                func.sum(case((model.expires_at < now, 1), else_=0)),
                func.sum(case((model.attempts >= MAX_ATTEMPTS, 1), else_=0)),
            )
            .filter(model.created_at > now - STATISTICS_WINDOW)
            .one()
        )
        total = total or 0
        verified = verified or 0
        return {
            "total": total,
            "verified": verified,
            "expired": expired or 0,
            "maxAttemptsExceeded": maxed or 0,
            "verificationRate": f"{verified / total * 100:.2f}" if total > 0 else 0,
        }


def _max_attempts() -> OTPVerification:
    return OTPVerification(
        OTPResultCode.max_attempts,
        "Maximum verification attempts exceeded. Please request a new code.",
    )
