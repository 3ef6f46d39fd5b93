"""Chat session cleanup job."""

import logging
from typing import Optional

from app.services.chat_sessions import RedisSessionStore, SessionStore, cleanup_inactive_sessions

logger = logging.getLogger(__name__)


async def cleanup_chat_sessions(store: Optional[SessionStore] = None) -> int:
    """
    Remove closed chat sessions that have been idle past the threshold.

    Sessions live in Redis, shared with the API process; the worker connects
    to Redis at startup.
    """
    logger.info("Running chat session cleanup job...")
    store = store or RedisSessionStore()

    try:
        cleaned, remaining = await cleanup_inactive_sessions(store)
    except Exception as e:
        logger.error(f"Error in chat session cleanup job: {e}")
        return 0

    logger.info(f"Chat session cleanup job completed ({cleaned} removed, {remaining} remaining)")
    return cleaned
