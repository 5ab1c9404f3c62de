"""
Notification Service
Delivers OTP codes by SMS (Twilio) or email (SMTP), logging to the console
when a provider is disabled or fails
"""
import smtplib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Callable, Optional, Union
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from config import Settings
from schemas import OTPChannel

logger = logging.getLogger(__name__)

OTP_EMAIL_HTML = """\
<!DOCTYPE html>
<html>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f8fafc;">
  <table width="100%" cellpadding="0" cellspacing="0" style="padding: 40px 0;">
    <tr><td align="center">
      <table width="600" cellpadding="0" cellspacing="0" style="background-color: #ffffff; border-radius: 12px;">
        <tr><td style="padding: 40px 40px 20px; text-align: center;">
          <h1 style="color: #6366f1; margin: 0;">{app_name}</h1>
        </td></tr>
        <tr><td style="padding: 0 40px 40px;">
          <h2 style="color: #1e293b;">Verification Code</h2>
          <p style="color: #64748b;">Use the verification code below to complete your request:</p>
          <p style="font-size: 42px; font-weight: bold; letter-spacing: 12px; text-align: center;">{otp}</p>
          <p style="color: #64748b;">This code will expire in <strong>10 minutes</strong>.</p>
          <p style="color: #64748b;">If you didn't request this code, please ignore this email.</p>
        </td></tr>
        <tr><td style="padding: 24px 40px; text-align: center; color: #94a3b8; font-size: 12px;">
          &copy; {year} {app_name}. All rights reserved.
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""


@dataclass
class DeliveryResult:
    """Outcome of a send. success is always True; callers never branch on delivery."""
    channel: str
    success: bool = True
    message_id: Optional[str] = None
    fallback: bool = False


class NotificationService:
    """
    Built once at start-up from Settings and shared through app.state.

    Args:
        settings: Provider toggles and credentials
        sms_client: Twilio client; created from settings when SMS is enabled
        smtp_factory: Returns a connected SMTP object; defaults to settings-based SMTP
    """

    def __init__(
        self,
        settings: Settings,
        sms_client: Optional[Client] = None,
        smtp_factory: Optional[Callable[[], smtplib.SMTP]] = None,
    ):
        self.settings = settings
        self.sms_client = sms_client
        self.smtp_factory = smtp_factory or self._default_smtp
        self.email_enabled = settings.enable_email and bool(settings.smtp_host or smtp_factory)

        if self.sms_client is None and settings.enable_sms:
            if settings.twilio_account_sid and settings.twilio_auth_token:
                self.sms_client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
                logger.info("Twilio SMS service initialized")
            else:
                logger.warning("ENABLE_SMS is set but Twilio credentials are missing")

        if settings.enable_email and not self.email_enabled:
            logger.warning("ENABLE_EMAIL is set but SMTP_HOST is missing")

    # ============ PUBLIC API ============

    def send_code(self, channel: Union[OTPChannel, str], endpoint: str, otp: str) -> DeliveryResult:
        """Deliver an OTP to a mobile number or email address. Never raises."""
        if channel == OTPChannel.email or channel == "email":
            return self.send_otp_email(endpoint, otp)
        return self.send_otp_sms(endpoint, otp)

    def send_otp_sms(self, mobile: str, otp: str) -> DeliveryResult:
        message = (
            f"Your {self.settings.app_name} verification code is {otp}. "
            "Valid for 10 minutes. Do not share this code with anyone."
        )
        return self.send_sms(mobile, message)

    def send_otp_email(self, email: str, otp: str) -> DeliveryResult:
        subject = f"{self.settings.app_name} - Verification Code"
        text = (
            f"Your {self.settings.app_name} verification code is {otp}. "
            "It expires in 10 minutes."
        )
        html = OTP_EMAIL_HTML.format(app_name=self.settings.app_name, otp=otp, year=datetime.now().year)
        return self.send_email(email, subject, text, html)

    def send_sms(self, mobile: str, message: str) -> DeliveryResult:
        if not self.sms_client:
            self._log_sms(mobile, message)
            return DeliveryResult(channel="sms", fallback=True)

        try:
            result = self.sms_client.messages.create(
                body=message,
                to=mobile,
                from_=self.settings.twilio_phone_number,
            )
        except (TwilioException, OSError) as e:
            logger.error(f"SMS delivery failed, falling back to console: {e}")
            self._log_sms(mobile, message)
            return DeliveryResult(channel="sms", fallback=True)

        logger.info(f"SMS sent to {mobile} - SID: {result.sid}")
        return DeliveryResult(channel="sms", message_id=result.sid)

    def send_email(self, email: str, subject: str, text: str, html: str) -> DeliveryResult:
        if not self.email_enabled:
            self._log_email(email, subject, text)
            return DeliveryResult(channel="email", fallback=True)

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f'"{self.settings.app_name}" <{self.settings.email_from}>'
        msg["To"] = email
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            with self._smtp_connection() as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email delivery failed, falling back to console: {e}")
            self._log_email(email, subject, text)
            return DeliveryResult(channel="email", fallback=True)

        logger.info(f"Email sent to {email}")
        return DeliveryResult(channel="email", message_id=msg.get("Message-ID"))

    # ============ INTERNALS ============

    def _default_smtp(self) -> smtplib.SMTP:
        s = self.settings
        if s.smtp_use_ssl:
            server = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=15)
        else:
            server = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=15)
            server.starttls()
        if s.smtp_user and s.smtp_password:
            server.login(s.smtp_user, s.smtp_password)
        return server

    @contextmanager
    def _smtp_connection(self):
        server = self.smtp_factory()
        try:
            yield server
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                logger.debug("SMTP quit failed", exc_info=True)

    def _log_sms(self, mobile: str, message: str) -> None:
        logger.warning(
            f"SMS to: {mobile} | Message: {message} "
            "(set ENABLE_SMS=true with Twilio credentials to send real SMS)"
        )

    def _log_email(self, email: str, subject: str, text: str) -> None:
        logger.warning(
            f"Email to: {email} | Subject: {subject} | {text} "
            "(set ENABLE_EMAIL=true with SMTP settings to send real email)"
        )
