"""Fire-and-forget patient notifications.

Messages are pushed onto a Redis list for the delivery worker and, when a
webhook is configured, POSTed to it. Delivery problems are logged and never
reach the queue operation that triggered them.
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..core.clock import utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE_KEY = "mzansicare:notifications"


@dataclass
class Notification:
    user_id: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    push_token: Optional[str] = None


def called_notification(ticket, facility_name: str, push_token: Optional[str] = None) -> Notification:
    """The message a patient receives when their ticket is called."""
    return Notification(
        user_id=ticket.user_id,
        title="MzansiCare: You are being called",
        body=f"Please proceed to reception at {facility_name}.",
        data={
            "type": "queue_called",
            "facility_id": ticket.facility_id,
            "ticket_id": ticket.id,
            "ticket_number": ticket.number,
        },
        push_token=push_token,
    )


class NotificationDispatcher:
    def __init__(self, redis_client=None, webhook_url: Optional[str] = None,
                 timeout: float = 5.0, http_client: Optional[httpx.Client] = None):
        self.redis = redis_client
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._http_client = http_client

    def dispatch(self, notification: Notification) -> bool:
        """Queue ``notification`` for delivery; returns False if every channel failed."""
        payload = asdict(notification)
        payload["queued_at"] = utcnow().isoformat()
        message = json.dumps(payload)
        delivered = False

        if self.redis is not None:
            try:
                self.redis.lpush(NOTIFICATION_QUEUE_KEY, message)
                delivered = True
            except Exception as e:
                logger.warning(f"Failed to queue notification for {notification.user_id}: {e}")

        if self.webhook_url:
            delivered = self._post_webhook(payload) or delivered

        if delivered:
            logger.info(f"Queued '{notification.data.get('type', 'message')}' notification for {notification.user_id}")
        return delivered

    def _post_webhook(self, payload: Dict[str, Any]) -> bool:
        try:
            if self._http_client is not None:
                response = self._http_client.post(self.webhook_url, json=payload, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Notification webhook delivery failed: {e}")
            return False
