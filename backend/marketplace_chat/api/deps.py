"""
FastAPI dependencies.

WHAT: Accessors for the services created in the application lifespan
WHY: Endpoints stay free of module-level singletons and tests can swap app.state
HOW: Read from request.app.state / websocket.app.state
"""

from fastapi import Request

from ..services.chat_service import ChatService
from ..services.support_chat import SupportChatService


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_support_chat(request: Request) -> SupportChatService:
    return request.app.state.support_chat
