"""
API router aggregation.

WHAT: Combine all endpoint routers
WHY: Single place to register all API routes
HOW: Include routers from endpoints with prefixes
"""

from fastapi import APIRouter

from .endpoints import status, chat, conversations, realtime

# Create main router
api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    status.router,
    prefix="/api/v1",
    tags=["status"]
)

api_router.include_router(
    conversations.router,
    prefix="/api/v1",
    tags=["conversations"]
)

# Support chat keeps the paths the chat widget already calls
api_router.include_router(
    chat.router,
    prefix="/api",
    tags=["chat"]
)

api_router.include_router(
    realtime.router,
    tags=["realtime"]
)
