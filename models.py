from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, JSON, Numeric
from sqlalchemy.orm import relationship
from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column here stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def money_column(**kwargs):
    return Column(Numeric(12, 2, asdecimal=False), **kwargs)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    mobile = Column(String, unique=True, nullable=True, index=True)
    password = Column(String, nullable=False)  # passlib hash
    passkey = Column(String, nullable=True)  # passlib hash, optional recovery secret
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_login = Column(DateTime, nullable=True)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    financial_profile = relationship(
        "FinancialProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class UserSession(Base):
    """Append-only login log"""
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    login_time = Column(DateTime, nullable=False, default=utcnow)
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)

    user = relationship("User", back_populates="sessions")


class OTPCodeMixin:
    """Columns shared by the per-channel OTP tables."""

    id = Column(Integer, primary_key=True, index=True)
    identifier = Column(String, nullable=False, index=True)  # mobile number or email
    otp = Column(String, nullable=False)
    otp_token = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class SMSOTPCode(OTPCodeMixin, Base):
    __tablename__ = "otp_codes"


class EmailOTPCode(OTPCodeMixin, Base):
    __tablename__ = "email_otp_codes"


class CustomOTPCode(OTPCodeMixin, Base):
    __tablename__ = "custom_otp_codes"


class PasskeyVerification(Base):
    __tablename__ = "passkey_verifications"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)
    passkey_token = Column(String, nullable=False, index=True)
    is_used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


class FinancialProfile(Base):
    __tablename__ = "financial_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    employment_status = Column(String, nullable=False)
    monthly_income = money_column(nullable=False)
    additional_income = Column(String, nullable=True)  # income type, e.g. "freelance"
    additional_income_amount = money_column(nullable=False, default=0)

    # Monthly expenses
    housing_cost = money_column(nullable=False)
    utilities = money_column(nullable=False)
    transportation = money_column(nullable=False)
    groceries = money_column(nullable=False)
    other_expenses = money_column(nullable=False, default=0)

    # Debt and savings
    total_debt = money_column(nullable=False, default=0)
    monthly_debt_payment = money_column(nullable=False, default=0)
    current_savings = money_column(nullable=False, default=0)
    emergency_fund = money_column(nullable=False, default=0)

    # Goals
    goals = Column(JSON, nullable=False, default=list)
    savings_goal = money_column(nullable=False, default=0)
    time_horizon = Column(String, nullable=True)
    risk_tolerance = Column(String, nullable=True)

    # Totals as submitted by the client
    total_income = money_column(nullable=True)
    total_expenses = money_column(nullable=True)
    net_income = money_column(nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="financial_profile")
