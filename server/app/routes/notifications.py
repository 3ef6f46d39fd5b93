"""
WebSocket endpoint for real-time notifications.

Clients connect to ``/api/v1/notifications/ws?token=<jwt>``. Authenticated
sockets join their user, role and (for staff) staff topics; anonymous
sockets stay connected but receive nothing. Messages from the client are
read and ignored, apart from ``ping`` which is answered with ``pong``.
"""

import logging
from typing import Optional

from app.auth import user_from_token
from app.dependencies import get_hub
from app.errors import AuthenticationError
from app.services.database import get_session_maker
from app.services.notifications import topics_for_user
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: Optional[str] = None):
    hub = get_hub(websocket)

    user = None
    if token:
        try:
            async with get_session_maker()() as db:
                user = await user_from_token(db, token)
        except AuthenticationError as e:
            logger.info(f"Rejecting notification socket: {e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    topics = topics_for_user(user)
    hub.register(websocket, topics)
    logger.info(f"Notification socket connected (user: {user.id if user else 'anonymous'})")

    try:
        await websocket.send_json({"event": "connected", "data": {"topics": topics}})
        async for message in websocket.iter_text():
            if message.strip().lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info("Notification socket disconnected by client")
    finally:
        hub.unregister(websocket)
