"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID

# Shown for every failed reveal so callers cannot distinguish a wrong
# credential from a missing or corrupt secret.
GENERIC_REVEAL_FAILURE = "Unable to reveal secret"


class ConsoleError(Exception):
    """Base exception for all operator console errors."""

    pass


class ValidationError(ConsoleError, ValueError):
    """Raised when input fails a domain rule (amount range, missing reason, ...)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)


class InsufficientBalanceError(ConsoleError):
    """Raised when a debit would drive the balance below zero."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Cannot deduct more than current balance ({balance})")


class BalanceNotFoundError(ConsoleError):
    """Raised when a user has no balance row."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"No credit balance for user {user_id}")


class ConcurrencyError(ConsoleError):
    """Raised when concurrent modification detected."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class PartialWriteError(ConsoleError):
    """
    Raised when a ledger unit of work failed after its first write.

    The unit of work has been rolled back and an escalation record written.
    """

    def __init__(self, user_id: UUID, stage: str, cause: str) -> None:
        self.user_id = user_id
        self.stage = stage
        self.cause = cause
        super().__init__(
            f"Ledger write for user {user_id} failed at {stage} and was rolled back: {cause}"
        )


class WriteVerificationError(ConsoleError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(ConsoleError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AuthenticationError(ConsoleError):
    """Raised when authentication fails (bad password, bad re-auth credential)."""

    def __init__(self, message: str = GENERIC_REVEAL_FAILURE) -> None:
        self.message = message
        super().__init__(message)


class AuthorizationError(ConsoleError):
    """Raised when operator lacks required permissions."""

    def __init__(self, required_permission: str) -> None:
        self.required_permission = required_permission
        super().__init__(f"Authorization failed: missing permission {required_permission}")


class DecryptionError(ConsoleError):
    """Raised when a reveal fails for any reason other than the credential."""

    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        # reason is for logs only, never for the operator
        self.reason = reason
        super().__init__(GENERIC_REVEAL_FAILURE)


class RateLimitExceededError(ConsoleError):
    """Raised when an operator exceeds the secret reveal limit."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        super().__init__(
            f"Rate limit exceeded: at most {limit} reveals per {window_seconds // 60} minutes"
        )


class SecretNotFoundError(ConsoleError):
    """Raised when no secret is stored for a provider."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"No secret configured for provider {provider_id}")


class IncidentNotFoundError(ConsoleError):
    """Raised when a security incident does not exist."""

    def __init__(self, incident_id: UUID) -> None:
        self.incident_id = incident_id
        super().__init__(f"Security incident not found: {incident_id}")


class DialogNotFoundError(ConsoleError):
    """Raised when a disclosure dialog is unknown or owned by someone else."""

    def __init__(self, dialog_id: UUID) -> None:
        self.dialog_id = dialog_id
        super().__init__(f"Disclosure dialog not found: {dialog_id}")


class ConfirmationNotFoundError(ConsoleError):
    """Raised when a pending confirmation is unknown, expired or foreign."""

    def __init__(self, confirmation_id: UUID) -> None:
        self.confirmation_id = confirmation_id
        super().__init__(f"Pending confirmation not found or expired: {confirmation_id}")


class OperationInProgressError(ConsoleError):
    """Raised when a second submit arrives while the first is still running."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Operation already in progress for {resource}")
