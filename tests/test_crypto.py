"""
Tests for CryptoService and secret masking.
"""

import base64

import pytest

from opsconsole.exceptions import (
    GENERIC_REVEAL_FAILURE,
    AuthenticationError,
    DecryptionError,
    ValidationError,
)
from opsconsole.services.crypto import MASK_PREFIX, CryptoService, mask_secret


class TestMaskSecret:
    """Tests for the masked preview."""

    def test_keeps_last_four_characters(self) -> None:
        assert mask_secret("sk-live-abcdef1234") == MASK_PREFIX + "1234"

    def test_exactly_four_characters(self) -> None:
        assert mask_secret("abcd") == MASK_PREFIX + "abcd"

    @pytest.mark.parametrize("secret", ["a", "ab", "abc"])
    def test_short_secret_fully_masked(self, secret: str) -> None:
        assert mask_secret(secret) == MASK_PREFIX


class TestEncryptDecrypt:
    """Tests for the AES-GCM envelope gated on the operator credential."""

    @pytest.mark.parametrize("secret", ["x", "sk-live-abcdef1234", "ключ-🔑-ünïcode"])
    def test_round_trip(
        self,
        crypto: CryptoService,
        operator_password: str,
        operator_password_hash: str,
        secret: str,
    ) -> None:
        ciphertext = crypto.encrypt(secret)

        assert secret not in ciphertext
        assert crypto.decrypt(ciphertext, operator_password, operator_password_hash) == secret

    def test_same_secret_encrypts_differently(self, crypto: CryptoService) -> None:
        """Random nonce per encryption."""
        assert crypto.encrypt("sk-live-abcdef1234") != crypto.encrypt("sk-live-abcdef1234")

    def test_empty_secret_rejected(self, crypto: CryptoService) -> None:
        with pytest.raises(ValidationError):
            crypto.encrypt("")

    def test_wrong_credential(self, crypto: CryptoService, operator_password_hash: str) -> None:
        ciphertext = crypto.encrypt("sk-live-abcdef1234")

        with pytest.raises(AuthenticationError) as exc_info:
            crypto.decrypt(ciphertext, "not-the-password", operator_password_hash)

        assert str(exc_info.value) == GENERIC_REVEAL_FAILURE

    def test_empty_credential(self, crypto: CryptoService, operator_password_hash: str) -> None:
        ciphertext = crypto.encrypt("sk-live-abcdef1234")

        with pytest.raises(AuthenticationError):
            crypto.decrypt(ciphertext, "", operator_password_hash)

    def test_credential_checked_before_ciphertext(
        self, crypto: CryptoService, operator_password_hash: str
    ) -> None:
        """A wrong credential never reaches decryption, even for garbage input."""
        with pytest.raises(AuthenticationError):
            crypto.decrypt("not base64 at all", "wrong", operator_password_hash)

    def test_tampered_ciphertext(
        self, crypto: CryptoService, operator_password: str, operator_password_hash: str
    ) -> None:
        raw = bytearray(base64.b64decode(crypto.encrypt("sk-live-abcdef1234")))
        raw[-1] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(DecryptionError) as exc_info:
            crypto.decrypt(
                tampered, operator_password, operator_password_hash, provider_id="openai"
            )

        assert str(exc_info.value) == GENERIC_REVEAL_FAILURE
        assert exc_info.value.provider_id == "openai"
        assert exc_info.value.reason == "authentication tag mismatch"

    def test_truncated_ciphertext(
        self, crypto: CryptoService, operator_password: str, operator_password_hash: str
    ) -> None:
        short = base64.b64encode(b"0123").decode("ascii")

        with pytest.raises(DecryptionError):
            crypto.decrypt(short, operator_password, operator_password_hash)

    def test_invalid_encoding(
        self, crypto: CryptoService, operator_password: str, operator_password_hash: str
    ) -> None:
        with pytest.raises(DecryptionError):
            crypto.decrypt("%%%not-base64%%%", operator_password, operator_password_hash)

    def test_other_key_cannot_decrypt(
        self, crypto: CryptoService, operator_password: str, operator_password_hash: str
    ) -> None:
        ciphertext = crypto.encrypt("sk-live-abcdef1234")
        other = CryptoService(key=b"f" * 32)

        with pytest.raises(DecryptionError):
            other.decrypt(ciphertext, operator_password, operator_password_hash)


class TestCredentialHashing:
    """Tests for Argon2id credential hashing."""

    def test_hash_is_argon2id(self, operator_password_hash: str) -> None:
        assert operator_password_hash.startswith("$argon2id$")

    def test_verify_matches(
        self, crypto: CryptoService, operator_password: str, operator_password_hash: str
    ) -> None:
        crypto.verify_credential(operator_password, operator_password_hash)

    def test_malformed_hash(self, crypto: CryptoService, operator_password: str) -> None:
        with pytest.raises(AuthenticationError):
            crypto.verify_credential(operator_password, "not-a-hash")
