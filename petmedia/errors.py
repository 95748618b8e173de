"""Exceptions raised by the messaging, user and map spot stores."""


class PetMediaError(Exception):
    """Base exception for PetMedia service errors."""

    pass


class ValidationError(PetMediaError):
    """Raised when input is rejected before any write (empty or oversized text, bad ids)."""

    pass


class NotFoundError(PetMediaError):
    """Raised when a thread, profile or map spot does not exist and there is no fallback."""

    def __init__(self, message: str, collection: str | None = None, document_id: str | None = None):
        """Initialize NotFoundError with context.

        Args:
            message: Error message
            collection: Collection that was searched (optional)
            document_id: Identifier that was not found (optional)
        """
        super().__init__(message)
        self.collection = collection
        self.document_id = document_id


class TransientBackendError(PetMediaError):
    """Raised when the backing store is unreachable or fails mid-operation; retryable."""

    pass


class SubscriptionError(PetMediaError):
    """Raised (or handed to ``on_error``) when a live subscription cannot deliver a snapshot."""

    def __init__(self, message: str, collection: str | None = None):
        """Initialize SubscriptionError with context.

        Args:
            message: Error message
            collection: Collection the subscription was watching (optional)
        """
        super().__init__(message)
        self.collection = collection
