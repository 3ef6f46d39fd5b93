"""Redis client for chat session state."""

import asyncio
import json
import logging
from typing import List, Optional

import redis.asyncio as redis
from app.config import settings

# Configure logging
logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# Key prefixes for namespace organization
CHAT_SESSION_PREFIX = "chat_session:"

CHAT_SESSION_LOCK_PREFIX = "chat_session_lock:"

# Timeout for Redis operations (2 seconds)
REDIS_TIMEOUT = 2.0

# A held session lock expires after this many seconds
CHAT_SESSION_LOCK_TIMEOUT = 10
CHAT_SESSION_LOCK_WAIT = 5.0


async def init_redis():
    """Initialize Redis connection with connection pooling.

    Raises:
        ConnectionError: If connection fails or cannot be validated
    """
    global redis_client
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,  # Connection pool size
            socket_connect_timeout=5,
            socket_keepalive=True,
        )

        # Validate connection with ping
        await redis_client.ping()
        logger.info("Redis connection initialized and validated with connection pooling")

    except Exception as e:
        # Clean up and set redis_client to None on failure
        logger.error(f"Failed to initialize Redis connection: {e}")
        if redis_client:
            try:
                await redis_client.aclose()
            except Exception as close_error:
                logger.debug(f"Ignoring error while closing Redis client: {close_error}")
        redis_client = None
        raise ConnectionError(f"Redis connection initialization failed: {e}") from e


async def close_redis():
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


def _check_redis_initialized() -> bool:
    """Check if Redis client is initialized."""
    if not redis_client:
        logger.error("Redis client not initialized - call init_redis() first")
        return False
    return True


# ============================================================================
# Chat Session Documents
# ============================================================================


async def set_chat_session(session_id: str, session_data: dict, ttl: Optional[int] = None) -> bool:
    """Store a chat session document.

    Args:
        session_id: Chat session id
        session_data: JSON-serializable session document
        ttl: Time-to-live in seconds (default: CHAT_SESSION_TTL)

    Returns:
        True if successful, False otherwise
    """
    try:
        if not _check_redis_initialized():
            return False

        key = f"{CHAT_SESSION_PREFIX}{session_id}"
        ttl = ttl or settings.CHAT_SESSION_TTL
        value = json.dumps(session_data)

        try:
            await asyncio.wait_for(redis_client.setex(key, ttl, value), timeout=REDIS_TIMEOUT)
            logger.debug(f"Chat session stored: {session_id} (TTL: {ttl}s)")
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timeout storing chat session {session_id}")
            return False

    except Exception as e:
        logger.error(f"Error storing chat session {session_id}: {e}")
        return False


async def get_chat_session(session_id: str) -> Optional[dict]:
    """Retrieve a chat session document.

    Returns:
        Session document or None if not found
    """
    try:
        if not _check_redis_initialized():
            return None

        key = f"{CHAT_SESSION_PREFIX}{session_id}"

        try:
            value = await asyncio.wait_for(redis_client.get(key), timeout=REDIS_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error(f"Timeout retrieving chat session {session_id}")
            return None

        if value:
            return json.loads(value)
        logger.debug(f"Chat session miss: {session_id}")
        return None

    except Exception as e:
        logger.error(f"Error retrieving chat session {session_id}: {e}")
        return None


async def delete_chat_session(session_id: str) -> bool:
    """Delete a chat session document.

    Returns:
        True if deleted, False otherwise
    """
    try:
        if not _check_redis_initialized():
            return False

        key = f"{CHAT_SESSION_PREFIX}{session_id}"

        try:
            deleted = await asyncio.wait_for(redis_client.delete(key), timeout=REDIS_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error(f"Timeout deleting chat session {session_id}")
            return False

        if deleted:
            logger.info(f"Chat session deleted: {session_id}")
            return True
        logger.warning(f"Chat session not found for deletion: {session_id}")
        return False

    except Exception as e:
        logger.error(f"Error deleting chat session {session_id}: {e}")
        return False


def chat_session_lock(session_id: str):
    """Distributed lock for one chat session, or None without a connection.

    Raises ``redis.exceptions.LockError`` on entry when the lock is not
    acquired within CHAT_SESSION_LOCK_WAIT seconds.
    """
    if not redis_client:
        return None
    return redis_client.lock(
        f"{CHAT_SESSION_LOCK_PREFIX}{session_id}",
        timeout=CHAT_SESSION_LOCK_TIMEOUT,
        blocking_timeout=CHAT_SESSION_LOCK_WAIT,
    )


async def list_chat_session_ids() -> List[str]:
    """Return the ids of every stored chat session."""
    if not _check_redis_initialized():
        return []

    session_ids = []
    try:
        async for key in redis_client.scan_iter(match=f"{CHAT_SESSION_PREFIX}*", count=100):
            session_ids.append(key[len(CHAT_SESSION_PREFIX):])
    except Exception as e:
        logger.error(f"Error scanning chat sessions: {e}")
    return session_ids


# ============================================================================
# Health Check
# ============================================================================


async def check_redis_health() -> bool:
    """Test Redis connectivity.

    Returns:
        True if Redis is accessible, False otherwise
    """
    try:
        if not redis_client:
            logger.error("Redis client not initialized")
            return False

        try:
            await asyncio.wait_for(redis_client.ping(), timeout=REDIS_TIMEOUT)
            logger.debug("Redis health check: OK")
            return True
        except asyncio.TimeoutError:
            logger.error("Redis health check timed out")
            return False

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False
