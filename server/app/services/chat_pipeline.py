"""
Chat turn orchestration for the customer assistant.

One turn:
1. Resolve the session (or mint a new one)
2. Build this turn's context from the actor and the appointment/vehicle hints
3. Append the user message and send the recent conversation to the completer
4. Append the reply (or the fixed fallback when the completer fails)
5. Persist the session and push the reply to the session owner's channel
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from app.config import settings
from app.errors import AuthorizationError, NotFoundError
from app.models.appointment import Appointment, AppointmentStatus
from app.models.user import User
from app.models.vehicle import Vehicle
from app.services.appointment_lifecycle import load_appointment
from app.services.chat_completer import ChatCompleter
from app.services.chat_sessions import (
    AppointmentSnapshot,
    ChatContext,
    ChatMessage,
    ChatSession,
    CustomerSnapshot,
    SessionStore,
    VehicleSnapshot,
    cleanup_inactive_sessions,
    utcnow,
)
from app.services.notifications import NotificationHub, user_topic
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def fallback_reply() -> str:
    return (
        "I'm sorry, I'm having trouble right now. Please call us at "
        f"{settings.SHOP_PHONE} for immediate assistance."
    )


def customer_snapshot(user: User) -> CustomerSnapshot:
    return CustomerSnapshot(
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        phone=user.phone,
    )


def vehicle_snapshot(vehicle: Vehicle) -> VehicleSnapshot:
    return VehicleSnapshot(
        id=vehicle.id,
        year=vehicle.year,
        make=vehicle.make,
        model=vehicle.model,
        vin=vehicle.vin,
        mileage=vehicle.mileage,
    )


def appointment_snapshot(appointment: Appointment) -> AppointmentSnapshot:
    return AppointmentSnapshot(
        id=appointment.id,
        status=AppointmentStatus(appointment.status).value,
        appointment_date=appointment.appointment_date.isoformat(),
        appointment_time=appointment.appointment_time,
        customer_concerns=appointment.customer_concerns,
    )


# Anonymous turns see no appointment or vehicle records, whatever id they send
def _can_see(actor: Optional[User], owner_id: int) -> bool:
    return actor is not None and (actor.is_staff or actor.id == owner_id)


class ChatPipeline:
    """
    Runs chat turns against a session store and a chat completer.

    Example usage:
        pipeline = ChatPipeline(KeywordChatCompleter(), InMemorySessionStore())
        session, reply, context = await pipeline.handle_message(db, "What are your hours?")
    """

    def __init__(
        self,
        completer: ChatCompleter,
        store: SessionStore,
        hub: Optional[NotificationHub] = None,
        history_window: Optional[int] = None,
    ):
        self.completer = completer
        self.store = store
        self.hub = hub
        self.history_window = history_window or settings.CHAT_HISTORY_WINDOW

    async def resolve_session(self, session_id: Optional[str], user_id: Optional[int]) -> ChatSession:
        """Look up ``session_id``; create a fresh session when absent."""
        if session_id:
            session = await self.store.get(session_id)
            if session is not None:
                if session.user_id is None and user_id is not None:
                    session.user_id = user_id
                return session
            logger.info(f"Chat session {session_id} not found, starting a new one")

        session = ChatSession(user_id=user_id)
        logger.info(f"Created chat session {session.id} (user: {user_id})")
        return session

    async def build_turn_context(
        self,
        db: AsyncSession,
        actor: Optional[User] = None,
        appointment_id: Optional[int] = None,
        vehicle_id: Optional[int] = None,
    ) -> ChatContext:
        """Context gathered for this turn only.

        Appointment and vehicle hints are ignored unless the actor may access
        the record and it is still active. Anonymous turns never get record
        details: an id alone does not prove who is asking.
        """
        context = ChatContext()

        if actor is not None:
            context.customer_info = customer_snapshot(actor)

        if appointment_id:
            try:
                appointment = await load_appointment(db, appointment_id)
            except NotFoundError:
                appointment = None
            if appointment is not None and _can_see(actor, appointment.customer_id):
                context.appointment_info = appointment_snapshot(appointment)
                if appointment.vehicle is not None and context.vehicle_info is None:
                    context.vehicle_info = vehicle_snapshot(appointment.vehicle)
            else:
                logger.debug(f"Ignoring appointment hint {appointment_id}")
        elif vehicle_id and context.vehicle_info is None:
            vehicle = await db.get(Vehicle, vehicle_id)
            if vehicle is not None and vehicle.is_active and _can_see(actor, vehicle.owner_id):
                context.vehicle_info = vehicle_snapshot(vehicle)
            else:
                logger.debug(f"Ignoring vehicle hint {vehicle_id}")

        return context

    async def handle_message(
        self,
        db: AsyncSession,
        message: str,
        actor: Optional[User] = None,
        session_id: Optional[str] = None,
        appointment_id: Optional[int] = None,
        vehicle_id: Optional[int] = None,
        request_context: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChatSession, ChatMessage, bool]:
        """
        Run one chat turn. Always yields a reply.

        Returns:
            ``(session, reply, generated)`` where ``generated`` is False when
            the fallback reply was used
        """
        user_id = actor.id if actor else None
        session = await self.resolve_session(session_id, user_id)
        turn_context = await self.build_turn_context(db, actor, appointment_id, vehicle_id)
        merged_context = session.context.merged_with(turn_context)

        first_new = len(session.messages)
        session.add_message(message, "user", context=request_context or None)
        conversation = session.recent_conversation(self.history_window)

        try:
            reply_text = await self.completer.complete(conversation, merged_context.as_prompt_context())
        except Exception as e:
            logger.error(f"Chat completion failed for session {session.id}: {e}")
            reply = session.add_message(fallback_reply(), "ai")
            session = await self.store.append_turn(session, session.messages[first_new:])
            return session, reply, False

        reply = session.add_message(reply_text, "ai")
        session = await self.store.append_turn(
            session, session.messages[first_new:], context=turn_context, touch=True
        )

        if self.hub is not None and session.user_id is not None:
            self.hub.publish(user_topic(session.user_id), "chat_message", reply.to_api())

        return session, reply, True

    async def _owned_session(self, session_id: str, actor: Optional[User]) -> ChatSession:
        session = await self.store.get(session_id)
        if session is None:
            raise NotFoundError("Chat session not found")
        if actor is not None and session.user_id is not None and session.user_id != actor.id:
            raise AuthorizationError("Access denied to this chat session")
        return session

    async def get_history(self, session_id: str, actor: Optional[User] = None) -> ChatSession:
        return await self._owned_session(session_id, actor)

    async def close_session(self, session_id: str, actor: Optional[User] = None) -> ChatSession:
        """Mark a session inactive so the cleanup sweep can remove it."""
        async with self.store.lock(session_id):
            session = await self._owned_session(session_id, actor)
            session.is_active = False
            session.updated_at = utcnow()
            await self.store.save(session)
        logger.info(f"Chat session {session_id} closed")
        return session

    async def cleanup(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        return await cleanup_inactive_sessions(self.store, now=now)

    async def status(self) -> Dict[str, Any]:
        sessions = await self.store.all_sessions()
        return {
            "configured": self.completer.configured,
            "mode": self.completer.mode,
            "sessionBackend": self.store.backend,
            "activeSessions": sum(1 for s in sessions if s.is_active),
        }
