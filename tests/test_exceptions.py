"""
Tests for exception classes.

Covers all exception types and their string representations.
"""

from uuid import uuid4

import pytest

from opsconsole.exceptions import (
    GENERIC_REVEAL_FAILURE,
    AuthenticationError,
    AuthorizationError,
    BalanceNotFoundError,
    ConcurrencyError,
    ConfirmationNotFoundError,
    ConsoleError,
    DataIntegrityError,
    DecryptionError,
    DialogNotFoundError,
    IncidentNotFoundError,
    InsufficientBalanceError,
    OperationInProgressError,
    PartialWriteError,
    RateLimitExceededError,
    SecretNotFoundError,
    ValidationError,
    WriteVerificationError,
)


class TestConsoleError:
    """Tests for base ConsoleError."""

    def test_console_error_is_exception(self):
        """ConsoleError is a subclass of Exception."""
        assert issubclass(ConsoleError, Exception)

    @pytest.mark.parametrize(
        "exc_class",
        [
            AuthenticationError,
            AuthorizationError,
            BalanceNotFoundError,
            ConcurrencyError,
            ConfirmationNotFoundError,
            DataIntegrityError,
            DecryptionError,
            DialogNotFoundError,
            IncidentNotFoundError,
            InsufficientBalanceError,
            OperationInProgressError,
            PartialWriteError,
            RateLimitExceededError,
            SecretNotFoundError,
            ValidationError,
            WriteVerificationError,
        ],
    )
    def test_all_errors_derive_from_console_error(self, exc_class):
        """Every console error can be caught as ConsoleError."""
        assert issubclass(exc_class, ConsoleError)


class TestValidationError:
    def test_attributes(self):
        exc = ValidationError("A reason is required to deduct credits", field="reason")
        assert exc.message == "A reason is required to deduct credits"
        assert exc.field == "reason"
        assert str(exc) == "A reason is required to deduct credits"

    def test_is_value_error(self):
        """Callers catching ValueError still see validation failures."""
        with pytest.raises(ValueError):
            raise ValidationError("bad")


class TestInsufficientBalanceError:
    def test_message_names_balance(self):
        """Message is specific and actionable."""
        exc = InsufficientBalanceError(balance=50, required=999)
        assert exc.balance == 50
        assert exc.required == 999
        assert str(exc) == "Cannot deduct more than current balance (50)"


class TestPartialWriteError:
    def test_attributes(self):
        user_id = uuid4()
        exc = PartialWriteError(user_id=user_id, stage="append_transaction", cause="disk full")
        assert exc.user_id == user_id
        assert exc.stage == "append_transaction"
        assert exc.cause == "disk full"
        assert "rolled back" in str(exc)
        assert str(user_id) in str(exc)


class TestRevealErrors:
    """Reveal failures all read the same to the operator."""

    def test_authentication_error_default_message(self):
        assert str(AuthenticationError()) == GENERIC_REVEAL_FAILURE

    def test_decryption_error_hides_reason(self):
        exc = DecryptionError("openai", "authentication tag mismatch")
        assert str(exc) == GENERIC_REVEAL_FAILURE
        assert exc.reason == "authentication tag mismatch"
        assert exc.provider_id == "openai"

    def test_rate_limit_message(self):
        exc = RateLimitExceededError(limit=10, window_seconds=3600)
        assert exc.limit == 10
        assert str(exc) == "Rate limit exceeded: at most 10 reveals per 60 minutes"


class TestNotFoundErrors:
    def test_balance_not_found(self):
        user_id = uuid4()
        exc = BalanceNotFoundError(user_id)
        assert exc.user_id == user_id
        assert str(user_id) in str(exc)

    def test_secret_not_found(self):
        exc = SecretNotFoundError("openai")
        assert str(exc) == "No secret configured for provider openai"

    def test_incident_not_found(self):
        incident_id = uuid4()
        assert IncidentNotFoundError(incident_id).incident_id == incident_id

    def test_dialog_not_found(self):
        dialog_id = uuid4()
        assert DialogNotFoundError(dialog_id).dialog_id == dialog_id

    def test_confirmation_not_found(self):
        confirmation_id = uuid4()
        exc = ConfirmationNotFoundError(confirmation_id)
        assert exc.confirmation_id == confirmation_id
        assert "expired" in str(exc)


class TestConcurrencyErrors:
    def test_concurrency_error(self):
        exc = ConcurrencyError("user_credits:abc")
        assert exc.resource == "user_credits:abc"
        assert "user_credits:abc" in str(exc)

    def test_operation_in_progress(self):
        exc = OperationInProgressError("confirmation:abc")
        assert exc.resource == "confirmation:abc"

    def test_write_verification_error(self):
        assert str(WriteVerificationError("row missing")) == "Write verification failed: row missing"

    def test_data_integrity_error(self):
        assert str(DataIntegrityError("mismatch")) == "Data integrity error: mismatch"

    def test_authorization_error(self):
        exc = AuthorizationError("admin")
        assert exc.required_permission == "admin"
