"""
Domain exceptions raised by the messaging services.

Routes never build HTTP errors for these cases themselves: the services raise,
and the handler registered in ``intranet.main`` converts them with
``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class MessagingError(Exception):
    """Base exception for messaging errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ForbiddenError(MessagingError):
    """Caller is not a participant of the target conversation."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(MessagingError):
    """Conversation, message, attachment or user does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(MessagingError):
    """A required field is missing or invalid."""

    status_code = status.HTTP_400_BAD_REQUEST


class StorageError(MessagingError):
    """Attachment could not be written to or read from disk."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class AuthError(MessagingError):
    """Bad or expired credential."""

    status_code = status.HTTP_401_UNAUTHORIZED
