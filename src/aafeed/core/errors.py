from __future__ import annotations


class AAFeedError(Exception):
    """Base error for consent and ingestion failures."""


class ProviderError(AAFeedError):
    """Aggregator call failed or timed out. Safe to retry."""


class NotFoundError(AAFeedError):
    """Consent, session, or transaction reference is unknown."""


class UnauthorizedError(AAFeedError):
    """The referenced consent or transaction belongs to another user."""


class ConsentNotActiveError(AAFeedError):
    """Fetch attempted while the consent is not ACTIVE or has expired."""

    def __init__(self, status: str, *, expired: bool = False) -> None:
        self.status = status
        self.expired = expired
        if expired:
            message = f"Consent has expired (status: {status})"
        else:
            message = f"Consent is not active: {status}"
        super().__init__(message)


class InvalidConsentTransitionError(AAFeedError):
    """Requested consent status change is not allowed by the lifecycle."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move consent from {current} to {requested}")


class SessionNotReadyError(AAFeedError):
    """Data session has not reached READY; the provider must resend later."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is not ready: {status}")


class SignatureInvalidError(AAFeedError):
    """Callback or webhook body failed signature verification."""


class InvalidOverrideError(AAFeedError):
    """Category override matcher could not be parsed."""


class DuplicateTransactionError(AAFeedError):
    """A transaction with the same dedup hash already exists for the user."""

    def __init__(self, user_id: str, hash_dedupe: str) -> None:
        self.user_id = user_id
        self.hash_dedupe = hash_dedupe
        super().__init__(f"Duplicate transaction {hash_dedupe[:12]} for user {user_id}")
