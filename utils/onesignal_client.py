import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from core.config import (
    NOTIFICATION_ACTIVITY_THRESHOLD_SECONDS,
    ONESIGNAL_APP_ID,
    ONESIGNAL_ENABLED,
    ONESIGNAL_REST_API_KEY,
)
from models import OneSignalPlayer

logger = logging.getLogger(__name__)

ONESIGNAL_API_URL = "https://onesignal.com/api/v1/notifications"


def build_notification_payload(
    player_ids: List[str],
    heading: str,
    content: str,
    data: Optional[Dict[str, Any]] = None,
    is_in_app_notification: bool = False,
) -> Dict[str, Any]:
    notification_data = dict(data or {})
    if is_in_app_notification:
        # Frontend shows these as a toast instead of a system notification
        notification_data["show_as_in_app"] = True

    payload: Dict[str, Any] = {
        "app_id": ONESIGNAL_APP_ID,
        "include_player_ids": player_ids,
        "headings": {"en": heading},
        "contents": {"en": content},
    }
    if notification_data:
        payload["data"] = notification_data
    return payload


def send_push_notification(
    player_ids: List[str],
    heading: str,
    content: str,
    data: Optional[Dict[str, Any]] = None,
    is_in_app_notification: bool = False,
    db: Optional[Session] = None,
) -> bool:
    """
    Send a push notification via OneSignal. Runs in background tasks and the
    chat worker, so a blocking client is used. Returns False on any failure.

    When a session is given, player ids OneSignal reports as invalid are
    marked so they are skipped next time.
    """
    if not ONESIGNAL_ENABLED:
        logger.debug("OneSignal not enabled, notification not sent")
        return False

    if not player_ids:
        return False

    if not all([ONESIGNAL_APP_ID, ONESIGNAL_REST_API_KEY]):
        logger.warning("OneSignal credentials not fully configured")
        return False

    payload = build_notification_payload(
        player_ids, heading, content, data, is_in_app_notification
    )
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Basic {ONESIGNAL_REST_API_KEY}",
    }

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(ONESIGNAL_API_URL, json=payload, headers=headers)
            response.raise_for_status()
            result = response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"OneSignal API error: {e.response.status_code} - {e.response.text}")
        return False
    except Exception as e:
        logger.error(f"Failed to send OneSignal notification: {e}")
        return False

    invalid_ids = []
    if isinstance(result, dict):
        invalid_ids = result.get("invalid_player_ids") or []
    if invalid_ids:
        logger.warning(f"OneSignal reported invalid player IDs: {invalid_ids}")
        if db is not None:
            for player_id in invalid_ids:
                mark_player_invalid(player_id, db)

    logger.info(f"OneSignal notification sent to {len(player_ids)} players")
    return True


def is_user_active(user_id: int, db: Session) -> bool:
    """True when one of the user's devices checked in within the activity threshold."""
    threshold_time = datetime.utcnow() - timedelta(seconds=NOTIFICATION_ACTIVITY_THRESHOLD_SECONDS)

    active_player = (
        db.query(OneSignalPlayer.id)
        .filter(
            OneSignalPlayer.user_id == user_id,
            OneSignalPlayer.is_valid.is_(True),
            OneSignalPlayer.last_active >= threshold_time,
        )
        .first()
    )
    return active_player is not None


def mark_player_invalid(player_id: str, db: Session) -> None:
    """Mark a OneSignal player as invalid (e.g., app uninstalled)"""
    player = db.query(OneSignalPlayer).filter(OneSignalPlayer.player_id == player_id).first()
    if player:
        player.is_valid = False
        player.last_failure_at = datetime.utcnow()
        db.commit()
        logger.info(f"Marked OneSignal player {player_id} as invalid")


def get_user_player_ids(user_id: int, db: Session, valid_only: bool = True) -> List[str]:
    """Get all player IDs for a user"""
    query = db.query(OneSignalPlayer.player_id).filter(OneSignalPlayer.user_id == user_id)

    if valid_only:
        query = query.filter(OneSignalPlayer.is_valid.is_(True))

    return [p[0] for p in query.all()]
