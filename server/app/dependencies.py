"""Accessors for the shared collaborators created in the application lifespan."""

from app.services.chat_completer import ChatCompleter
from app.services.chat_pipeline import ChatPipeline
from app.services.notifications import NotificationHub
from fastapi import Request


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_completer(request: Request) -> ChatCompleter:
    return request.app.state.completer


def get_chat_pipeline(request: Request) -> ChatPipeline:
    return request.app.state.chat_pipeline
