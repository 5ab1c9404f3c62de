from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging
import models
from models import utcnow
from schemas import UserLogin, UserResponse, UserSignup
from database import get_db
from routers.utils import (
    get_current_user,
    create_access_token,
    hash_secret,
    verify_secret,
    success_body,
)

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSKEY_LENGTH = 8


def find_duplicate_message(db: Session, email: str, mobile: str):
    """
    Return the duplicate-account message for this email/mobile, or None.

    Email is checked first so a request colliding on both reports the email.
    """
    if db.query(models.User.id).filter(models.User.email == email).first():
        return "User with this email already exists"
    if mobile and db.query(models.User.id).filter(models.User.mobile == mobile).first():
        return "User with this mobile number already exists"
    return None


# Endpoints


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(user_data: UserSignup, db: Session = Depends(get_db)):
    """
    Register a new user account.

    Returns a JWT token for immediate login after signup.
    """
    duplicate = find_duplicate_message(db, user_data.email, user_data.mobile)
    if duplicate:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=duplicate)

    hashed_passkey = None
    if user_data.passkey and len(user_data.passkey) >= MIN_PASSKEY_LENGTH:
        hashed_passkey = hash_secret(user_data.passkey)

    new_user = models.User(
        name=user_data.name,
        email=user_data.email,
        mobile=user_data.mobile,
        password=hash_secret(user_data.password),
        passkey=hashed_passkey,
        is_active=True,
    )
    db.add(new_user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email/mobile
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=find_duplicate_message(db, user_data.email, user_data.mobile)
            or "User with this email already exists",
        )
    db.refresh(new_user)
    logger.info(f"Registered user {new_user.id}")

    return success_body(
        "User registered successfully",
        {
            "userId": new_user.id,
            "name": new_user.name,
            "email": new_user.email,
            "token": create_access_token(new_user.id),
        },
    )


@router.post("/signin")
async def signin(user_data: UserLogin, request: Request, db: Session = Depends(get_db)):
    """
    Authenticate user and return JWT token.

    The token should be included in subsequent requests as:
    Authorization: Bearer <token>
    """
    user = db.query(models.User).filter(models.User.email == user_data.email).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    # Deactivated accounts are rejected before the password is checked
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated. Please contact support.",
        )

    if not verify_secret(user_data.password, user.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    user.last_login = utcnow()
    db.add(models.UserSession(
        user_id=user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    ))
    db.commit()

    return success_body(
        "Login successful",
        {
            "userId": user.id,
            "name": user.name,
            "email": user.email,
            "token": create_access_token(user.id, remember_me=user_data.remember_me),
        },
    )


@router.get("/verify")
async def verify(current_user: models.User = Depends(get_current_user)):
    """
    Validate the bearer token and return the account it belongs to.
    """
    return success_body(data=UserResponse.model_validate(current_user).model_dump(mode="json"))
