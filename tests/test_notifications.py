import json

import httpx
import pytest

from mzansicare.core.database import redis_client
from mzansicare.models.ticket import Ticket
from mzansicare.services.notifications import (
    NOTIFICATION_QUEUE_KEY, Notification, NotificationDispatcher, called_notification,
)

WEBHOOK_URL = "https://push.example/notify"


@pytest.fixture
def redis():
    redis_client.flushall()
    yield redis_client
    redis_client.flushall()


def webhook_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def sample():
    return Notification(user_id="user-1", title="Hello", body="World", data={"type": "test"})


def test_called_notification_content():
    ticket = Ticket(id="t-1", facility_id="soweto-clinic", user_id="user-1", sequence=7)

    message = called_notification(ticket, "Soweto Community Clinic", push_token="device-1")

    assert message.user_id == "user-1"
    assert message.title == "MzansiCare: You are being called"
    assert message.body == "Please proceed to reception at Soweto Community Clinic."
    assert message.data == {
        "type": "queue_called",
        "facility_id": "soweto-clinic",
        "ticket_id": "t-1",
        "ticket_number": "SOW-007",
    }
    assert message.push_token == "device-1"


def test_dispatch_queues_on_redis(redis):
    assert NotificationDispatcher(redis).dispatch(sample()) is True

    queued = redis.lrange(NOTIFICATION_QUEUE_KEY, 0, -1)
    assert len(queued) == 1
    payload = json.loads(queued[0])
    assert payload["user_id"] == "user-1"
    assert payload["data"] == {"type": "test"}
    assert "queued_at" in payload


def test_dispatch_posts_to_webhook():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(202)

    dispatcher = NotificationDispatcher(webhook_url=WEBHOOK_URL, http_client=webhook_client(handler))

    assert dispatcher.dispatch(sample()) is True
    assert received[0]["title"] == "Hello"


def test_webhook_failure_is_swallowed(redis):
    dispatcher = NotificationDispatcher(
        redis,
        webhook_url=WEBHOOK_URL,
        http_client=webhook_client(lambda request: httpx.Response(503)),
    )

    assert dispatcher.dispatch(sample()) is True
    assert len(redis.lrange(NOTIFICATION_QUEUE_KEY, 0, -1)) == 1


def test_webhook_timeout_reports_failure():
    def handler(request):
        raise httpx.ReadTimeout("gateway slow", request=request)

    dispatcher = NotificationDispatcher(webhook_url=WEBHOOK_URL, http_client=webhook_client(handler))

    assert dispatcher.dispatch(sample()) is False


def test_broken_redis_is_swallowed():
    class BrokenRedis:
        def lpush(self, key, *values):
            raise ConnectionError("redis down")

    assert NotificationDispatcher(BrokenRedis()).dispatch(sample()) is False
