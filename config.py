import os
import secrets
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    app_name: str = "Fincoach"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./fincoach.db"
    instance_connection_name: str = ""
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""

    # JWT
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7
    remember_me_days: int = 30

    # SMS (Twilio)
    enable_sms: bool = False
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # Email (SMTP)
    enable_email: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = False
    email_from: str = "noreply@fincoach.com"

    cors_origins: List[str] = field(default_factory=list)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        jwt_secret = os.getenv("JWT_SECRET", "")
        if not jwt_secret:
            # Tokens signed with this secret stop validating on restart
            jwt_secret = secrets.token_hex(32)
            logger.warning("JWT_SECRET is not set, using a random per-process secret")

        return cls(
            environment=os.getenv("ENVIRONMENT", "development").strip().lower(),
            app_name=os.getenv("APP_NAME", "Fincoach"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./fincoach.db"),
            instance_connection_name=os.getenv("INSTANCE_CONNECTION_NAME", ""),
            db_user=os.getenv("DB_USER", ""),
            db_password=os.getenv("DB_PASSWORD", ""),
            db_name=os.getenv("DB_NAME", ""),
            jwt_secret=jwt_secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7))),
            remember_me_days=int(os.getenv("REMEMBER_ME_DAYS", "30")),
            enable_sms=_env_bool("ENABLE_SMS"),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
            enable_email=_env_bool("ENABLE_EMAIL"),
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            smtp_use_ssl=_env_bool("SMTP_USE_SSL"),
            email_from=os.getenv("EMAIL_FROM", "noreply@fincoach.com"),
            cors_origins=_env_list(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once"""
    return Settings.from_env()
