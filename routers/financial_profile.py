# ============ IMPORTS ============
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional, Union
import logging
import models
import schemas
from database import get_db
from routers.utils import get_current_user, success_body

logger = logging.getLogger(__name__)

# ============ ROUTER SETUP ============
# Note: No prefix here since it's added in main.py
router = APIRouter()

# Recommendation thresholds
EMERGENCY_FUND_MONTHS = 3
DEBT_INCOME_MONTHS = 12

# ============ HELPER FUNCTIONS ============

def percentage(part: Optional[float], whole: Optional[float]) -> Union[str, int]:
    """part / whole * 100 with two decimals, or 0 when whole is zero or missing."""
    if not whole or whole <= 0:
        return 0
    return f"{(part or 0) / whole * 100:.2f}"


def derive_totals(profile: schemas.FinancialProfileCreate) -> dict:
    """
    Totals for a submission.

    Client-supplied totals are stored as given; only the ones left out are
    derived from the itemised fields.
    """
    total_income = profile.total_income
    if total_income is None:
        total_income = profile.monthly_income + profile.additional_income_amount

    total_expenses = profile.total_expenses
    if total_expenses is None:
        total_expenses = (
            profile.housing_cost
            + profile.utilities
            + profile.transportation
            + profile.groceries
            + profile.other_expenses
            + profile.monthly_debt_payment
        )

    net_income = profile.net_income
    if net_income is None:
        net_income = total_income - total_expenses

    return {
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net_income": net_income,
    }


def build_ai_summary(profile: models.FinancialProfile) -> dict:
    """
    Reshape a stored profile into income/expenses/health/goals groups and flag
    the areas that need advice.
    """
    summary = {
        "income": {
            "employment": profile.employment_status,
            "monthly": profile.monthly_income,
            "additional": profile.additional_income_amount,
            "total": profile.total_income,
        },
        "expenses": {
            "housing": profile.housing_cost,
            "utilities": profile.utilities,
            "transportation": profile.transportation,
            "groceries": profile.groceries,
            "other": profile.other_expenses,
            "debt_payment": profile.monthly_debt_payment,
            "total": profile.total_expenses,
        },
        "financial_health": {
            "net_income": profile.net_income,
            "savings_rate": percentage(profile.net_income, profile.total_income),
            "debt_to_income": percentage(profile.monthly_debt_payment, profile.total_income),
        },
        "assets_liabilities": {
            "current_savings": profile.current_savings,
            "emergency_fund": profile.emergency_fund,
            "total_debt": profile.total_debt,
        },
        "goals": {
            "primary_goals": profile.goals or [],
            "monthly_savings_target": profile.savings_goal,
            "time_horizon": profile.time_horizon,
            "risk_tolerance": profile.risk_tolerance,
        },
        "recommendations_needed": [],
    }

    emergency_fund = profile.emergency_fund or 0
    total_expenses = profile.total_expenses or 0
    net_income = profile.net_income or 0
    total_debt = profile.total_debt or 0
    monthly_income = profile.monthly_income or 0

    if emergency_fund < total_expenses * EMERGENCY_FUND_MONTHS:
        summary["recommendations_needed"].append("emergency_fund")
    if net_income < 0:
        summary["recommendations_needed"].append("expense_reduction")
    if total_debt > monthly_income * DEBT_INCOME_MONTHS:
        summary["recommendations_needed"].append("debt_management")

    return summary


def _get_profile(db: Session, user_id: int) -> models.FinancialProfile:
    profile = db.query(models.FinancialProfile).filter(models.FinancialProfile.user_id == user_id).first()
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Financial profile not found")
    return profile


# ============ ENDPOINTS ============

@router.post("")
async def save_financial_profile(
    profile_data: schemas.FinancialProfileCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create or fully overwrite the current user's financial profile.
    """
    values = profile_data.model_dump(exclude={"total_income", "total_expenses", "net_income"})
    totals = derive_totals(profile_data)
    values.update(totals)

    profile = db.query(models.FinancialProfile).filter(
        models.FinancialProfile.user_id == current_user.id
    ).first()

    if profile:
        for key, value in values.items():
            setattr(profile, key, value)
    else:
        profile = models.FinancialProfile(user_id=current_user.id, **values)
        db.add(profile)

    db.commit()
    db.refresh(profile)
    logger.info(f"Saved financial profile {profile.id} for user {current_user.id}")

    return success_body(
        "Financial profile saved successfully",
        {
            "profileId": profile.id,
            "summary": {
                "totalIncome": totals["total_income"],
                "totalExpenses": totals["total_expenses"],
                "netIncome": totals["net_income"],
                "savingsRate": percentage(totals["net_income"], totals["total_income"]),
            },
        },
    )


@router.get("")
async def get_financial_profile(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Retrieve the current user's financial profile"""
    profile = _get_profile(db, current_user.id)
    data = schemas.FinancialProfileResponse.model_validate(profile).model_dump(mode="json")
    return success_body(data=data)


@router.get("/ai-summary")
async def get_ai_summary(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """AI-ready view of the current user's financial profile"""
    profile = _get_profile(db, current_user.id)
    return success_body(data=build_ai_summary(profile))
