"""
Global error handling middleware.

WHAT: Translate chat exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for custom exceptions
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..utils.exceptions import (
    ChatException,
    ConversationNotFoundException,
    MessageNotFoundException,
    StaleOfferAction,
    TransportError,
    TransportUnavailable,
    DeliveryFailed,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input")
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now().isoformat()
        }
    )


async def chat_exception_handler(request: Request, exc: ChatException):
    """
    Handle ChatException and subclasses.

    WHAT: Domain error raised by the chat core
    WHY: Validation is the caller's fault, transport faults are ours
    HOW: Pick status code by exception type
    """
    status_code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, (ConversationNotFoundException, MessageNotFoundException)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, StaleOfferAction):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (TransportError, TransportUnavailable, DeliveryFailed)):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    if status_code >= 500:
        logger.error(f"Chat exception: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Chat exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now().isoformat()
        }
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ChatException, chat_exception_handler)

    logger.info("Exception handlers registered")
