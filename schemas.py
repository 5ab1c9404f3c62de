from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

# ============ ENUMS ============
class OTPChannel(str, Enum):
    sms = "sms"
    email = "email"
    custom = "custom"


class OTPResultCode(str, Enum):
    invalid = "INVALID_OTP"
    expired = "EXPIRED_OTP"
    max_attempts = "MAX_ATTEMPTS_EXCEEDED"
    wrong = "WRONG_OTP"
    verified = "VERIFIED"


def _normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


# ============ AUTH SCHEMAS ============
class UserSignup(BaseModel):
    name: str = Field(..., min_length=1, description="Display name")
    email: EmailStr = Field(..., description="User's email address")
    mobile: str = Field(..., min_length=1, description="Mobile number, used for SMS recovery")
    password: str = Field(..., min_length=8, description="Password (at least 8 characters)")
    passkey: Optional[str] = Field(None, description="Optional recovery passkey (stored only if 8+ characters)")

    @field_validator("name", "mobile", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    remember_me: bool = Field(False, alias="rememberMe")

    class Config:
        populate_by_name = True

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============ PASSWORD RECOVERY SCHEMAS ============
# Fields are optional so each endpoint can answer with its own message
class ForgotPasswordRequest(BaseModel):
    mobile: Optional[str] = None


class ForgotPasswordEmailRequest(BaseModel):
    email: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


class VerifyOTPRequest(BaseModel):
    mobile: Optional[str] = None
    email: Optional[str] = None
    otp: Optional[str] = None
    otp_token: Optional[str] = Field(None, alias="otpToken")

    class Config:
        populate_by_name = True

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


class PasskeyRequest(BaseModel):
    email: Optional[str] = None
    passkey: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


class ResetPasswordRequest(BaseModel):
    mobile: Optional[str] = None
    email: Optional[str] = None
    new_password: Optional[str] = Field(None, alias="newPassword")
    otp_token: Optional[str] = Field(None, alias="otpToken")
    passkey_token: Optional[str] = Field(None, alias="passkeyToken")

    class Config:
        populate_by_name = True

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email_field(cls, value):
        return _normalize_email(value)


# ============ FINANCIAL PROFILE SCHEMAS ============
class FinancialProfileCreate(BaseModel):
    employment_status: str = Field(..., min_length=1, alias="employmentStatus")
    monthly_income: float = Field(..., ge=0, alias="monthlyIncome")
    additional_income: Optional[str] = Field(None, alias="additionalIncome")
    additional_income_amount: float = Field(0, ge=0, alias="additionalIncomeAmount")
    housing_cost: float = Field(..., ge=0, alias="housingCost")
    utilities: float = Field(..., ge=0)
    transportation: float = Field(..., ge=0)
    groceries: float = Field(..., ge=0)
    other_expenses: float = Field(0, ge=0, alias="otherExpenses")
    total_debt: float = Field(0, ge=0, alias="totalDebt")
    monthly_debt_payment: float = Field(0, ge=0, alias="monthlyDebtPayment")
    current_savings: float = Field(0, ge=0, alias="currentSavings")
    emergency_fund: float = Field(0, ge=0, alias="emergencyFund")
    goals: List[str] = Field(default_factory=list)
    savings_goal: float = Field(0, ge=0, alias="savingsGoal")
    time_horizon: Optional[str] = Field(None, alias="timeHorizon")
    risk_tolerance: Optional[str] = Field(None, alias="riskTolerance")
    # Totals computed by the client; derived from the itemised fields when omitted
    total_income: Optional[float] = Field(None, alias="totalIncome")
    total_expenses: Optional[float] = Field(None, alias="totalExpenses")
    net_income: Optional[float] = Field(None, alias="netIncome")

    class Config:
        populate_by_name = True

    @field_validator(
        "additional_income_amount", "other_expenses", "total_debt", "monthly_debt_payment",
        "current_savings", "emergency_fund", "savings_goal",
        mode="before",
    )
    @classmethod
    def _none_to_zero(cls, value):
        return 0 if value is None or value == "" else value

    @field_validator("goals", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return [] if value is None else value


class FinancialProfileResponse(BaseModel):
    id: int
    user_id: int
    employment_status: str
    monthly_income: float
    additional_income: Optional[str] = None
    additional_income_amount: float = 0
    housing_cost: float
    utilities: float
    transportation: float
    groceries: float
    other_expenses: float = 0
    total_debt: float = 0
    monthly_debt_payment: float = 0
    current_savings: float = 0
    emergency_fund: float = 0
    goals: List[str] = []
    savings_goal: float = 0
    time_horizon: Optional[str] = None
    risk_tolerance: Optional[str] = None
    total_income: Optional[float] = None
    total_expenses: Optional[float] = None
    net_income: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
