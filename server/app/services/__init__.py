"""
Services package for the automotive service API.
"""

from .chat_completer import ChatCompleter, KeywordChatCompleter, OpenAIChatCompleter
from .chat_pipeline import ChatPipeline
from .chat_sessions import InMemorySessionStore, RedisSessionStore, SessionStore
from .notifications import NotificationHub

__all__ = [
    "ChatCompleter",
    "OpenAIChatCompleter",
    "KeywordChatCompleter",
    "ChatPipeline",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "NotificationHub",
]
