"""
Error taxonomy for sender management.

Every failure that reaches a handler is one of these exceptions. Each carries
the HTTP status code it maps to; 4xx errors expose their message to the caller,
5xx errors expose a generic phrase and keep the detail in the logs.
"""

from typing import List, Optional


GENERIC_SERVER_ERROR = "Internal server error"


class SenderServiceError(Exception):
    """Base class for all sender management errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        """Message safe to return to the caller."""
        if self.status_code >= 500:
            return GENERIC_SERVER_ERROR
        return self.message


class BadRequestError(SenderServiceError):
    """Malformed input, quota exceeded, or immutable field change."""
    status_code = 400


class UnauthorizedError(SenderServiceError):
    """Tenant missing or tier lacks the requested capability."""
    status_code = 401


class NotFoundError(SenderServiceError):
    """Record absent or not owned by the tenant."""
    status_code = 404


class ConflictError(SenderServiceError):
    """Optimistic-write collision, invalid transition, or duplicate create."""
    status_code = 409


class PartialPropagationError(ConflictError):
    """
    Some dependent senders did not receive a domain status change.

    Resubmitting the same request completes the remaining senders; senders
    already at the target status are skipped.
    """

    def __init__(self, message: str, failed_sender_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.failed_sender_ids = list(failed_sender_ids or [])


class AwsError(SenderServiceError):
    """An AWS service call failed or timed out."""
    status_code = 500


class InternalError(SenderServiceError):
    """Serialization failure, missing configuration, or other unexpected state."""
    status_code = 500
