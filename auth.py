import base64
import json
import logging
from typing import Optional

from descope.descope_client import DescopeClient
from fastapi import HTTPException

from core.config import (
    DESCOPE_JWT_LEEWAY,
    DESCOPE_JWT_LEEWAY_FALLBACK,
    DESCOPE_MANAGEMENT_KEY,
    DESCOPE_PROJECT_ID,
)

logger = logging.getLogger(__name__)

_client: Optional[DescopeClient] = None


def get_descope_client(leeway: int = DESCOPE_JWT_LEEWAY) -> DescopeClient:
    """Descope client with configurable leeway for time sync issues"""
    global _client
    if leeway != DESCOPE_JWT_LEEWAY:
        return DescopeClient(project_id=DESCOPE_PROJECT_ID, jwt_validation_leeway=leeway)
    if _client is None:
        _client = DescopeClient(project_id=DESCOPE_PROJECT_ID, jwt_validation_leeway=leeway)
        logger.info(f"Descope client initialized with JWT leeway: {leeway}s")
    return _client


def decode_jwt_payload(token: str) -> dict:
    """Decode JWT payload without verification (expiry checks and debugging only)."""
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return {}

        payload = parts[1]
        padding = len(payload) % 4
        if padding:
            payload += "=" * (4 - padding)

        decoded_bytes = base64.urlsafe_b64decode(payload)
        return json.loads(decoded_bytes.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Failed to decode JWT payload: {e}")
        return {}


def _load_login_ids_from_management(user_id: str) -> dict:
    if not DESCOPE_MANAGEMENT_KEY:
        return {}
    try:
        mgmt_client = DescopeClient(
            project_id=DESCOPE_PROJECT_ID,
            management_key=DESCOPE_MANAGEMENT_KEY,
            jwt_validation_leeway=DESCOPE_JWT_LEEWAY,
        )
        user_details = mgmt_client.mgmt.user.load(user_id)
    except Exception as e:
        logger.warning(f"Could not fetch user details from management API: {e}")
        return {}
    if not isinstance(user_details, dict):
        return {}
    return user_details.get("user", user_details)


def _extract_user_info(session: dict) -> dict:
    if not isinstance(session, dict):
        logger.error("Descope session validation failed: session is not a dictionary")
        raise HTTPException(status_code=401, detail="Invalid session format")

    user_info = {
        "userId": session.get("userId") or session.get("sub"),
        "sub": session.get("sub"),
        "loginIds": [],
        "email": None,
        "name": session.get("name"),
        "displayName": session.get("displayName"),
    }
    if not user_info["userId"]:
        logger.error("Descope JWT validation failed: missing userId in session")
        raise HTTPException(status_code=401, detail="Invalid token: missing user ID")

    email = None
    login_ids = session.get("loginIds")
    if isinstance(login_ids, list) and login_ids:
        email = login_ids[0]
        user_info["loginIds"] = login_ids
    elif session.get("email"):
        email = session["email"]
        user_info["loginIds"] = [email]

    if not email:
        user_data = _load_login_ids_from_management(user_info["userId"])
        login_ids = user_data.get("loginIds")
        if isinstance(login_ids, list) and login_ids:
            email = login_ids[0]
            user_info["loginIds"] = login_ids
        elif user_data.get("email"):
            email = user_data["email"]
            user_info["loginIds"] = [email]
        user_info["name"] = user_info["name"] or user_data.get("name")
        user_info["displayName"] = user_info["displayName"] or user_data.get("displayName")

    if not email:
        email = f"user_{user_info['userId']}@descope.local"
        user_info["loginIds"] = [email]
        logger.warning(f"No email found for user {user_info['userId']}, using placeholder: {email}")

    user_info["email"] = email
    return user_info


def validate_descope_jwt(token: str) -> dict:
    """
    Validate Descope session JWT and return user info.
    In case of time skew issues, retry with a higher leeway.

    Args:
        token (str): Descope session JWT token

    Returns:
        dict: userId, sub, loginIds, email, name, displayName

    Raises:
        HTTPException: If token validation fails or user info is missing
    """
    try:
        session = get_descope_client().validate_session(token)
    except Exception as e:
        logger.error(f"Descope JWT validation failed: {e}")
        try:
            logger.info(f"Retrying JWT validation with fallback leeway: {DESCOPE_JWT_LEEWAY_FALLBACK}s")
            session = get_descope_client(DESCOPE_JWT_LEEWAY_FALLBACK).validate_session(token)
        except Exception as e2:
            logger.error(f"High leeway validation also failed: {e2}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")

    return _extract_user_info(session)
