"""
Crypto Service - AES-256-GCM envelope for provider secrets.

Ciphertext format: base64(nonce[12] || ciphertext || tag[16]).

Decryption is gated on the operator's credential: the Argon2id hash is
verified first and nothing is decrypted if it does not match.
"""

import base64
import binascii
import os

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from opsconsole.config import settings
from opsconsole.exceptions import AuthenticationError, DecryptionError, ValidationError

NONCE_BYTES = 12
MASK_PREFIX = "••••••••"
MASK_VISIBLE_CHARS = 4


def mask_secret(plaintext: str) -> str:
    """Bullets plus the last four characters; bullets only for very short keys."""
    if len(plaintext) < MASK_VISIBLE_CHARS:
        return MASK_PREFIX
    return MASK_PREFIX + plaintext[-MASK_VISIBLE_CHARS:]


class CryptoService:
    """Stateless encrypt/decrypt around a single AES-256 key."""

    def __init__(self, key: bytes | None = None) -> None:
        self._aesgcm = AESGCM(key if key is not None else settings.encryption_key_bytes)
        self.password_hasher = PasswordHasher()

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret. Raises ValidationError for an empty value."""
        if not plaintext:
            raise ValidationError("Secret cannot be empty", field="secret")
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(
        self, ciphertext: str, credential: str, credential_hash: str, provider_id: str = ""
    ) -> str:
        """
        Verify the operator credential, then decrypt.

        Raises:
            AuthenticationError: credential does not match the stored hash
            DecryptionError: ciphertext is malformed or fails authentication
        """
        self.verify_credential(credential, credential_hash)

        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(provider_id, f"invalid encoding: {e}") from e
        if len(raw) <= NONCE_BYTES:
            raise DecryptionError(provider_id, "ciphertext too short")

        try:
            plaintext = self._aesgcm.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
        except InvalidTag as e:
            raise DecryptionError(provider_id, "authentication tag mismatch") from e
        return plaintext.decode("utf-8")

    def verify_credential(self, credential: str, credential_hash: str) -> None:
        """Raise AuthenticationError unless the credential matches the hash."""
        if not credential:
            raise AuthenticationError()
        try:
            self.password_hasher.verify(credential_hash, credential)
        except (VerifyMismatchError, VerificationError, InvalidHashError) as e:
            raise AuthenticationError() from e

    def hash_credential(self, credential: str) -> str:
        """Argon2id hash for storing an operator credential."""
        return self.password_hasher.hash(credential)
