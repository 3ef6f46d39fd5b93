"""Notification hub fan-out and the WebSocket endpoint."""

import json
from types import SimpleNamespace

import pytest
from app.main import app
from app.models.user import UserRole
from app.services.notifications import STAFF_TOPIC, NotificationHub, topics_for_user, user_topic
from fastapi.testclient import TestClient


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, payload: str):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(payload))


def test_topics_for_user():
    staff = SimpleNamespace(id=7, role=UserRole.STAFF, is_staff=True)
    customer = SimpleNamespace(id=3, role=UserRole.CUSTOMER, is_staff=False)

    assert topics_for_user(staff) == ["user_7", "role_staff", STAFF_TOPIC]
    assert topics_for_user(customer) == ["user_3", "role_customer"]
    assert topics_for_user(None) == []


@pytest.mark.asyncio
async def test_publish_reaches_topic_subscribers_only():
    hub = NotificationHub()
    alice, staff = FakeSocket(), FakeSocket()
    hub.register(alice, [user_topic(1)])
    hub.register(staff, [STAFF_TOPIC])

    hub.publish(user_topic(1), "appointment_updated", {"appointmentId": 4})
    await hub.drain()

    assert len(alice.sent) == 1
    assert alice.sent[0]["event"] == "appointment_updated"
    assert alice.sent[0]["data"] == {"appointmentId": 4}
    assert "timestamp" in alice.sent[0]
    assert staff.sent == []


@pytest.mark.asyncio
async def test_failed_socket_is_dropped():
    hub = NotificationHub()
    broken, healthy = FakeSocket(fail=True), FakeSocket()
    hub.register(broken, [STAFF_TOPIC])
    hub.register(healthy, [STAFF_TOPIC])

    hub.publish(STAFF_TOPIC, "appointment_created")
    await hub.drain()

    assert len(healthy.sent) == 1
    assert hub.subscriber_count(STAFF_TOPIC) == 1


def test_publish_without_running_loop_is_dropped():
    hub = NotificationHub()
    socket = FakeSocket()
    hub.register(socket, [STAFF_TOPIC])

    hub.publish(STAFF_TOPIC, "appointment_created")

    assert socket.sent == []


def test_unregister_removes_empty_topics():
    hub = NotificationHub()
    socket = FakeSocket()
    hub.register(socket, [user_topic(1), STAFF_TOPIC])

    hub.unregister(socket)

    assert hub.subscriber_count(user_topic(1)) == 0
    assert hub.subscriber_count(STAFF_TOPIC) == 0


def test_anonymous_socket_connects_without_topics():
    app.state.hub = NotificationHub()
    client = TestClient(app)

    with client.websocket_connect("/api/v1/notifications/ws") as websocket:
        assert websocket.receive_json() == {"event": "connected", "data": {"topics": []}}
        websocket.send_text("ping")
        assert websocket.receive_text() == "pong"
