"""Notification collaborator - fire-and-forget delivery hand-off."""

from typing import Any, Protocol

from src.models.notification import NotificationType
from src.services.supabase_client import insert_notification
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

TITLES = {
    NotificationType.AUCTION_BID: "You have been outbid",
    NotificationType.AUCTION_ENDED: "Your auction has ended",
    NotificationType.AUCTION_WON: "You won the auction",
    NotificationType.RENTAL_REQUEST: "New rental request",
    NotificationType.RENTAL_CONFIRMED: "Rental confirmed",
    NotificationType.RENTAL_CANCELLED: "Rental cancelled",
    NotificationType.RENTAL_COMPLETED: "Rental completed",
    NotificationType.REFUND_PROCESSED: "Refund processed",
    NotificationType.PAYMENT_FAILED: "Payment failed",
}

# Events the recipient should see first
HIGH_PRIORITY = {
    NotificationType.AUCTION_WON,
    NotificationType.PAYMENT_FAILED,
}


class Notifier(Protocol):
    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Notifier that only logs; used when no delivery backend is configured."""

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(
            "Notification emitted",
            recipient_id=mask_user_id(user_id),
            event_type=event_type,
            listing_id=payload.get("listing_id")
        )


class SupabaseNotifier:
    """Writes notification rows; delivery channels (email, push, SMS) read them from there."""

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        notification_type = NotificationType(event_type)
        await insert_notification({
            "recipient": user_id,
            "type": notification_type.value,
            "title": TITLES[notification_type],
            "message": TITLES[notification_type],
            "data": payload,
            "listing_id": payload.get("listing_id"),
            "priority": "high" if notification_type in HIGH_PRIORITY else "medium",
            "read": False,
            "delivery_status": "pending",
        })
        logger.debug(
            "Notification queued",
            recipient_id=mask_user_id(user_id),
            event_type=notification_type.value
        )
