from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging
import models
from schemas import (
    ForgotPasswordEmailRequest,
    ForgotPasswordRequest,
    OTPChannel,
    PasskeyRequest,
    ResetPasswordRequest,
    VerifyOTPRequest,
)
from database import get_db
from routers.utils import get_current_user, get_notifier, hash_secret, verify_secret, success_body
from services.notification_service import NotificationService
from services.otp_service import OTPService, GRANT_MAX_AGE_MINUTES
from services.passkey_service import PasskeyService, PasskeyGrantError

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 8
MIN_PASSKEY_LENGTH = 8


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _issue_and_send(
    db: Session,
    notifier: NotificationService,
    channel: OTPChannel,
    identifier: str,
) -> dict:
    """Store a fresh code, deliver it out of band and return the client handle."""
    issued = OTPService(db).issue(channel, identifier)
    notifier.send_code(channel, identifier, issued.otp)
    # The code itself never goes back to the client
    return {"otpToken": issued.token, "expiresIn": issued.expires_in}


# ============ OTP ISSUANCE ============
# Plain def: delivery does blocking Twilio/SMTP I/O, so these run in the threadpool

@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Send a reset code to the account's mobile number."""
    mobile = (payload.mobile or "").strip()
    if not mobile:
        raise _bad_request("Mobile number is required")

    user = db.query(models.User).filter(models.User.mobile == mobile).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this mobile number",
        )

    data = _issue_and_send(db, notifier, OTPChannel.sms, mobile)
    return success_body("Verification code sent successfully to your mobile number", data)


@router.post("/forgot-password-email")
def forgot_password_email(
    payload: ForgotPasswordEmailRequest,
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Send a reset code to the account's email address."""
    if not payload.email:
        raise _bad_request("Email address is required")

    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this email address",
        )

    data = _issue_and_send(db, notifier, OTPChannel.email, payload.email)
    return success_body("Verification code sent successfully to your email", data)


# ============ VERIFICATION ============

@router.post("/verify-otp")
async def verify_otp(payload: VerifyOTPRequest, db: Session = Depends(get_db)):
    """
    Check a code sent by SMS (mobile) or email.

    Failures answer 400 with a machine-readable `code`
    (INVALID_OTP, EXPIRED_OTP, MAX_ATTEMPTS_EXCEEDED, WRONG_OTP).
    """
    if not payload.otp or not payload.otp_token:
        raise _bad_request("Verification code and token are required")

    if payload.mobile:
        channel, identifier = OTPChannel.sms, payload.mobile.strip()
    elif payload.email:
        channel, identifier = OTPChannel.email, payload.email
    else:
        raise _bad_request("Either mobile or email is required")

    result = OTPService(db).verify(channel, identifier, payload.otp.strip(), payload.otp_token)

    if result.success:
        return success_body(result.message)

    body = {"success": False, "message": result.message, "code": result.code.value}
    if result.remaining_attempts is not None:
        body["remainingAttempts"] = result.remaining_attempts
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


@router.post("/verify-passkey")
async def verify_passkey(payload: PasskeyRequest, db: Session = Depends(get_db)):
    """Check the account's security passkey and hand out a 15 minute reset grant."""
    if not payload.email or not payload.passkey:
        raise _bad_request("Email and passkey are required")

    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this email",
        )

    if not user.passkey:
        raise _bad_request("No passkey configured for this account. Please use SMS verification.")

    if not verify_secret(payload.passkey, user.passkey):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid passkey. Please try again.",
        )

    grant = PasskeyService(db).issue_grant(payload.email)
    return success_body(
        "Passkey verified successfully",
        {"passkeyToken": grant.token, "expiresIn": grant.expires_in},
    )


# ============ RESET ============

SESSION_EXPIRED = "Invalid or expired session. Please verify your code again."


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    """
    Set a new password after an SMS/email OTP or passkey verification.

    Accepted combinations, checked in order:
    - mobile + otpToken (SMS grant)
    - email + otpToken, without passkeyToken (email grant)
    - email + passkeyToken (passkey grant)

    The grant is spent only once the account is found, and cannot be reused.
    """
    if not payload.new_password or len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise _bad_request("Password must be at least 8 characters")

    otp_service = OTPService(db)
    passkey_service = PasskeyService(db)

    if payload.mobile and payload.otp_token:
        channel, identifier = OTPChannel.sms, payload.mobile.strip()
        account_filter = models.User.mobile == identifier
    elif payload.email and payload.otp_token and not payload.passkey_token:
        channel, identifier = OTPChannel.email, payload.email
        account_filter = models.User.email == identifier
    elif payload.email and payload.passkey_token:
        channel, identifier = None, payload.email
        account_filter = models.User.email == identifier
    else:
        raise _bad_request(
            "Invalid reset method. Please provide either mobile+otpToken or email+passkeyToken."
        )

    if channel is None:
        try:
            passkey_service.validate_grant(identifier, payload.passkey_token)
        except PasskeyGrantError as e:
            raise _bad_request(str(e))
    elif not otp_service.is_grant_valid(channel, identifier, payload.otp_token, GRANT_MAX_AGE_MINUTES):
        raise _bad_request(SESSION_EXPIRED)

    user = db.query(models.User).filter(account_filter).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if channel is None:
        try:
            passkey_service.consume_grant(identifier, payload.passkey_token)
        except PasskeyGrantError as e:
            raise _bad_request(str(e))
    else:
        # A concurrent reset may have spent the grant since the check above
        if not otp_service.consume_grant(channel, identifier, payload.otp_token, GRANT_MAX_AGE_MINUTES):
            raise _bad_request(SESSION_EXPIRED)
        otp_service.invalidate_all(channel, identifier)

    user.password = hash_secret(payload.new_password)
    db.commit()
    logger.info(f"Password reset for user {user.id}")

    return success_body("Password reset successfully")


@router.post("/set-passkey")
async def set_passkey(
    payload: PasskeyRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Set or replace the signed-in user's security passkey."""
    if not payload.passkey:
        raise _bad_request("Passkey is required")

    if len(payload.passkey) < MIN_PASSKEY_LENGTH:
        raise _bad_request("Passkey must be at least 8 characters")

    if payload.email and payload.email != current_user.email:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only set the passkey for your own account",
        )

    current_user.passkey = hash_secret(payload.passkey)
    db.commit()
    logger.info(f"Passkey updated for user {current_user.id}")

    return success_body("Security passkey set successfully")
