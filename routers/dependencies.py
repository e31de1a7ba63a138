import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from auth import validate_descope_jwt
from core.db import get_db
from models import USER_TYPE_SEEKER, User, Wallet

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def resolve_user(db: Session, user_info: dict, *, create: bool = True) -> Optional[User]:
    """
    Find the local user for validated Descope claims, linking by email or
    creating a new seeker account on first sight.
    """
    user = db.query(User).filter(User.descope_user_id == user_info["userId"]).first()
    if user:
        return user

    email = user_info["loginIds"][0] if user_info.get("loginIds") else user_info.get("email")
    display_name = user_info.get("name") or user_info.get("displayName") or email
    existing_user = db.query(User).filter(User.email == email).first() if email else None
    if existing_user:
        existing_user.descope_user_id = user_info["userId"]
        if not existing_user.username:
            existing_user.username = display_name
        db.commit()
        db.refresh(existing_user)
        return existing_user

    if not create:
        return None

    user = User(
        descope_user_id=user_info["userId"],
        email=email,
        username=display_name,
        user_type=USER_TYPE_SEEKER,
    )
    db.add(user)
    db.flush()
    db.add(Wallet(user_id=user.account_id, credit_balance=0, available_earnings_minor=0))
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.account_id} for Descope user {user_info['userId']}")
    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Extracts and validates the Descope JWT from the Authorization header and
    returns the matching User.
    """
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization token missing.")
    user_info = validate_descope_jwt(token)
    return resolve_user(db, user_info)
