"""Push notification service using Firebase Cloud Messaging."""

import logging
from typing import List, Optional, Dict, Any
from sqlalchemy.orm import Session

from app.models.device_token import DeviceToken
from app.schemas.notification import PushNotificationPayload

logger = logging.getLogger(__name__)


def _is_fcm_available() -> bool:
    """Check if Firebase Cloud Messaging is available."""
    try:
        import firebase_admin
        # Check if Firebase app is initialized
        firebase_admin.get_app()
        return True
    except Exception:
        return False


def _convert_data_to_strings(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Convert data payload values to strings (FCM requirement)."""
    if not data:
        return {}
    return {k: str(v) for k, v in data.items()}


class PushNotificationService:
    """Service for sending push notifications via FCM."""

    @staticmethod
    def active_tokens(db: Session, user_id: str) -> List[str]:
        tokens = db.query(DeviceToken).filter(
            DeviceToken.user_id == user_id,
            DeviceToken.is_active.is_(True)
        ).all()
        return [t.fcm_token for t in tokens]

    @staticmethod
    def send_to_user(
        db: Session,
        user_id: str,
        payload: PushNotificationPayload
    ) -> Dict[str, Any]:
        """Send push notification to all devices of a specific user.

        Returns:
            Dict with success/failure counts. ``configured`` is False when FCM
            isn't initialised, which callers treat as "channel skipped".
        """
        fcm_tokens = PushNotificationService.active_tokens(db, user_id)
        if not fcm_tokens:
            logger.info(f"No active device tokens for user {user_id}")
            return {"success_count": 0, "failure_count": 0, "configured": True, "message": "No registered devices"}

        if not _is_fcm_available():
            logger.warning("FCM not available - push notification skipped")
            return {"success_count": 0, "failure_count": 0, "configured": False, "message": "FCM not configured"}

        return PushNotificationService._send_multicast(db, fcm_tokens, payload)

    @staticmethod
    def _send_multicast(
        db: Session,
        fcm_tokens: List[str],
        payload: PushNotificationPayload
    ) -> Dict[str, Any]:
        """Send to multiple tokens using multicast.

        FCM supports up to 500 tokens per multicast.
        """
        from firebase_admin import messaging
        from firebase_admin.exceptions import FirebaseError

        notification = messaging.Notification(
            title=payload.title,
            body=payload.body,
            image=payload.image_url
        )

        # Platform-specific configurations
        android_config = messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                sound=payload.sound or "default",
                channel_id=payload.channel_id or "default",
                click_action=payload.click_action
            )
        )

        apns_config = messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    sound=payload.sound or "default",
                    badge=payload.badge
                )
            )
        )

        message = messaging.MulticastMessage(
            tokens=fcm_tokens[:500],
            notification=notification,
            data=_convert_data_to_strings(payload.data),
            android=android_config,
            apns=apns_config
        )

        try:
            response = messaging.send_each_for_multicast(message)
            logger.info(
                f"Multicast result: {response.success_count} success, "
                f"{response.failure_count} failures"
            )

            # Handle failed tokens (invalid/expired)
            if response.failure_count > 0:
                for idx, send_response in enumerate(response.responses):
                    if not send_response.success:
                        error = send_response.exception
                        if error and ("UNREGISTERED" in str(error) or "INVALID" in str(error)):
                            PushNotificationService._deactivate_token(db, fcm_tokens[idx])
                            logger.warning(f"Deactivated invalid token: {fcm_tokens[idx][:20]}...")

            return {
                "success_count": response.success_count,
                "failure_count": response.failure_count,
                "configured": True,
            }
        except FirebaseError as e:
            logger.error(f"Multicast send failed: {e}")
            return {"success_count": 0, "failure_count": len(fcm_tokens), "configured": True, "error": str(e)}

    @staticmethod
    def _deactivate_token(db: Session, fcm_token: str):
        """Mark a token as inactive (invalid/expired). Committed with the caller's unit of work."""
        token = db.query(DeviceToken).filter(
            DeviceToken.fcm_token == fcm_token
        ).first()
        if token:
            token.is_active = False
            db.flush()
            logger.info(f"Deactivated token for user {token.user_id}")


# Convenience builders for the assignment notification types

def assignment_submitted_payload(client_name: str, assignment_name: str, assignment_id: str) -> PushNotificationPayload:
    return PushNotificationPayload(
        title="Assignment Submitted",
        body=f"{client_name} submitted {assignment_name} for review",
        data={
            "type": "assignment_submitted",
            "screen": "staff_assignment_scoring",
            "assignment_id": assignment_id,
        }
    )


def assignment_graded_payload(assignment_name: str, assignment_id: str, result_label: Optional[str]) -> PushNotificationPayload:
    body = f"Your {assignment_name} has been reviewed"
    if result_label:
        body = f"{body}: {result_label}"
    return PushNotificationPayload(
        title="Assignment Reviewed",
        body=body,
        data={
            "type": "assignment_graded",
            "screen": "assignment_feedback",
            "assignment_id": assignment_id,
        }
    )
