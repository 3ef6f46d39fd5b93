"""
Chat session documents and their stores.

A session holds the ordered message log and the accumulated context bag for
one customer conversation. Sessions are stored as JSON documents in Redis
(with a TTL) or, for tests and single-process development, in memory.
"""

import asyncio
import logging
import secrets
import string
import time
import weakref
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from app.config import Settings, settings
from app.services import redis_client
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """``session_<epoch ms>_<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def generate_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


# ============================================================================
# Context snapshots
# ============================================================================


class CustomerSnapshot(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class VehicleSnapshot(BaseModel):
    id: Optional[int] = None
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    vin: Optional[str] = None
    mileage: Optional[int] = None


class AppointmentSnapshot(BaseModel):
    id: Optional[int] = None
    status: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    customer_concerns: Optional[str] = None


class ChatContext(BaseModel):
    """Context bag attached to a session; every entry is optional."""

    customer_info: Optional[CustomerSnapshot] = None
    vehicle_info: Optional[VehicleSnapshot] = None
    appointment_info: Optional[AppointmentSnapshot] = None

    def merged_with(self, update: "ChatContext") -> "ChatContext":
        """Entries present in ``update`` replace ours; absent ones are kept."""
        return ChatContext(
            customer_info=update.customer_info or self.customer_info,
            vehicle_info=update.vehicle_info or self.vehicle_info,
            appointment_info=update.appointment_info or self.appointment_info,
        )

    def as_prompt_context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ============================================================================
# Session documents
# ============================================================================


class ChatMessage(BaseModel):
    id: str = Field(default_factory=generate_message_id)
    session_id: str
    user_id: Optional[int] = None
    message: str
    sender: Literal["user", "ai"]
    timestamp: datetime = Field(default_factory=utcnow)
    context: Optional[Dict[str, Any]] = None

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "message": self.message,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }


class ChatSession(BaseModel):
    id: str = Field(default_factory=generate_session_id)
    user_id: Optional[int] = None
    is_active: bool = True
    messages: List[ChatMessage] = Field(default_factory=list)
    context: ChatContext = Field(default_factory=ChatContext)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def add_message(self, message: str, sender: str, context: Optional[Dict[str, Any]] = None) -> ChatMessage:
        entry = ChatMessage(
            session_id=self.id,
            user_id=self.user_id,
            message=message,
            sender=sender,
            context=context,
        )
        self.messages.append(entry)
        return entry

    def recent_conversation(self, window: int) -> List[Dict[str, str]]:
        """Last ``window`` messages, oldest first, in Chat Completions roles."""
        return [
            {"role": "user" if m.sender == "user" else "assistant", "content": m.message}
            for m in self.messages[-window:]
        ]


# ============================================================================
# Stores
# ============================================================================


class SessionStore(ABC):
    """Persistence for chat sessions keyed by session id."""

    backend = "unknown"

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def save(self, session: ChatSession) -> bool:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def all_sessions(self) -> List[ChatSession]:
        ...

    def lock(self, session_id: str):
        """Async context manager serializing writes to one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def append_turn(
        self,
        session: ChatSession,
        new_messages: List[ChatMessage],
        context: Optional[ChatContext] = None,
        touch: bool = False,
    ) -> ChatSession:
        """
        Append one turn's messages to the stored copy of ``session``.

        The stored document is re-read under the session lock, so turns that
        overlap on one session land in completion order and none is dropped.
        ``session`` itself is saved when nothing is stored yet.

        Args:
            session: The session the turn ran against
            new_messages: Messages added during the turn
            context: Turn context to merge into the stored context
            touch: Bump ``updated_at``

        Returns:
            The session as saved
        """
        async with self.lock(session.id):
            stored = await self.get(session.id)
            if stored is None:
                stored = session
            else:
                stored.messages.extend(new_messages)
                if stored.user_id is None:
                    stored.user_id = session.user_id
            if context is not None:
                stored.context = stored.context.merged_with(context)
            if touch:
                stored.updated_at = utcnow()
            await self.save(stored)
        return stored


class InMemorySessionStore(SessionStore):
    """Process-local store. Suitable for tests and a single-instance server."""

    backend = "memory"

    def __init__(self):
        super().__init__()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    async def get(self, session_id: str) -> Optional[ChatSession]:
        data = self._sessions.get(session_id)
        return ChatSession.model_validate(data) if data is not None else None

    async def save(self, session: ChatSession) -> bool:
        self._sessions[session.id] = session.model_dump(mode="json")
        return True

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def all_sessions(self) -> List[ChatSession]:
        return [ChatSession.model_validate(data) for data in list(self._sessions.values())]


class RedisSessionStore(SessionStore):
    """Sessions as JSON documents under ``chat_session:<id>`` with a TTL."""

    backend = "redis"

    def __init__(self, ttl: Optional[int] = None):
        super().__init__()
        self.ttl = ttl or settings.CHAT_SESSION_TTL

    def lock(self, session_id: str):
        # Shared across server instances; process-local when Redis is down
        redis_lock = redis_client.chat_session_lock(session_id)
        return redis_lock if redis_lock is not None else super().lock(session_id)

    async def get(self, session_id: str) -> Optional[ChatSession]:
        data = await redis_client.get_chat_session(session_id)
        if data is None:
            return None
        try:
            return ChatSession.model_validate(data)
        except ValueError as e:
            logger.error(f"Discarding malformed chat session {session_id}: {e}")
            return None

    async def save(self, session: ChatSession) -> bool:
        stored = await redis_client.set_chat_session(session.id, session.model_dump(mode="json"), ttl=self.ttl)
        if not stored:
            logger.warning(f"Chat session {session.id} was not persisted")
        return stored

    async def delete(self, session_id: str) -> bool:
        return await redis_client.delete_chat_session(session_id)

    async def all_sessions(self) -> List[ChatSession]:
        sessions = []
        for session_id in await redis_client.list_chat_session_ids():
            session = await self.get(session_id)
            if session is not None:
                sessions.append(session)
        return sessions


def build_session_store(config: Settings = settings) -> SessionStore:
    if config.CHAT_SESSION_BACKEND == "memory":
        logger.info("Using in-memory chat session store")
        return InMemorySessionStore()
    logger.info("Using Redis chat session store")
    return RedisSessionStore(ttl=config.CHAT_SESSION_TTL)


async def cleanup_inactive_sessions(
    store: SessionStore,
    now: Optional[datetime] = None,
    idle_seconds: Optional[int] = None,
) -> Tuple[int, int]:
    """Remove closed sessions idle longer than the threshold.

    A session is removed only when it is inactive AND its ``updated_at`` is
    older than ``idle_seconds`` (default ``CHAT_SESSION_IDLE_SECONDS``).

    Returns:
        ``(cleaned, remaining)`` session counts
    """
    now = now or utcnow()
    cutoff = now - timedelta(seconds=idle_seconds or settings.CHAT_SESSION_IDLE_SECONDS)

    cleaned = 0
    sessions = await store.all_sessions()
    for session in sessions:
        if not session.is_active and session.updated_at < cutoff:
            if await store.delete(session.id):
                cleaned += 1

    remaining = len(sessions) - cleaned
    logger.info(f"Chat session cleanup: {cleaned} removed, {remaining} remaining")
    return cleaned, remaining
