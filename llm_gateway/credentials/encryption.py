"""
Credential encryption utilities.

Implements AES-256-CBC encryption for API keys stored in credential records.

SECURITY REQUIREMENTS:
- Each encryption uses a fresh random 128-bit IV
- Plaintext and key material are never logged
- Malformed tokens and failed decryptions raise distinct errors
- derive_key() is a salted SHA-256, NOT a memory-hard KDF; the
  operator-supplied secret must itself be high-entropy

Serialized format (at-rest contract, must round-trip exactly):
    <32 hex chars of IV>:<hex ciphertext>
The empty string is the canonical encoding of "no secret".

Usage:
    from llm_gateway.credentials.encryption import encrypt_secret, decrypt_secret

    token = encrypt_secret(api_key, settings.encryption_secret)
    api_key = decrypt_secret(token, settings.encryption_secret)
"""

import binascii
import hashlib
import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from llm_gateway.platform.errors import AppError

logger = logging.getLogger(__name__)


# Fixed application salt appended to the secret before hashing
ENCRYPTION_SALT = b"droid-account-salt"

KEY_SIZE = 32   # 256 bits for AES-256
IV_SIZE = 16    # 128 bits, one AES block
BLOCK_SIZE_BITS = 128

TOKEN_SEPARATOR = ":"


class CredentialEncryptionError(AppError):
    """Raised when credential encryption/decryption fails."""

    code = "ENCRYPTION_ERROR"

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message, details={"operation": operation})
        self.operation = operation


class MalformedCiphertextError(CredentialEncryptionError):
    """Token is not in iv_hex:ciphertext_hex form, or the IV has the wrong size."""

    def __init__(self, message: str):
        super().__init__(message, operation="decrypt")


class DecryptionError(CredentialEncryptionError):
    """Well-formed token that did not decrypt to valid UTF-8 text."""

    def __init__(self, message: str):
        super().__init__(message, operation="decrypt")


def derive_key(secret: str) -> bytes:
    """
    Derive a 256-bit AES key from an operator-supplied secret.

    Deterministic: the same secret always yields the same key.

    Args:
        secret: Encryption passphrase (e.g. CREDENTIAL_ENCRYPTION_KEY)

    Returns:
        32-byte key
    """
    digest = hashlib.sha256()
    digest.update(secret.encode("utf-8"))
    digest.update(ENCRYPTION_SALT)
    return digest.digest()


def _cipher(key: bytes, iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(key), modes.CBC(iv))


def encrypt_secret(plaintext: str, secret: str) -> str:
    """
    Encrypt a secret for storage in a credential record.

    SECURITY:
    - Input is never logged
    - A new IV is generated on every call

    Args:
        plaintext: The value to encrypt (API key)
        secret: Encryption passphrase

    Returns:
        "iv_hex:ciphertext_hex", or "" for empty input

    Raises:
        CredentialEncryptionError: If encryption fails
    """
    if not plaintext:
        return ""

    key = derive_key(secret)
    iv = os.urandom(IV_SIZE)

    try:
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = _cipher(key, iv).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
    except (ValueError, UnicodeEncodeError) as e:
        logger.error(
            "Secret encryption failed",
            extra={"operation": "encrypt_secret", "error_type": type(e).__name__}
        )
        raise CredentialEncryptionError(
            "Failed to encrypt secret",
            operation="encrypt"
        ) from e

    return f"{iv.hex()}{TOKEN_SEPARATOR}{ciphertext.hex()}"


def _parse_token(token: str) -> tuple[bytes, bytes]:
    """Split and hex-decode a serialized token into (iv, ciphertext)."""
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2:
        raise MalformedCiphertextError(
            "Encrypted value must have the form iv_hex:ciphertext_hex"
        )

    iv_hex, ciphertext_hex = parts
    try:
        iv = binascii.unhexlify(iv_hex)
    except (binascii.Error, ValueError) as e:
        raise MalformedCiphertextError("IV is not valid hex") from e
    try:
        ciphertext = binascii.unhexlify(ciphertext_hex)
    except (binascii.Error, ValueError) as e:
        raise MalformedCiphertextError("Ciphertext is not valid hex") from e

    if len(iv) != IV_SIZE:
        raise MalformedCiphertextError(
            f"IV must be {IV_SIZE} bytes, got {len(iv)}"
        )

    return iv, ciphertext


def decrypt_secret(token: str, secret: str) -> str:
    """
    Decrypt a value produced by encrypt_secret().

    SECURITY:
    - Decrypted value must NEVER be logged
    - Decrypted value should only live for the duration of one upstream call

    Args:
        token: Serialized "iv_hex:ciphertext_hex" value
        secret: Encryption passphrase used at encryption time

    Returns:
        Decrypted plaintext, or "" for empty input

    Raises:
        MalformedCiphertextError: Wrong field count, bad hex or bad IV length
        DecryptionError: Padding/ciphertext corruption, wrong key, or non-UTF-8 plaintext
    """
    if not token:
        return ""

    iv, ciphertext = _parse_token(token)
    key = derive_key(secret)

    try:
        decryptor = _cipher(key, iv).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        logger.error(
            "Secret decryption failed",
            extra={"operation": "decrypt_secret", "error_type": type(e).__name__}
        )
        raise DecryptionError(
            "Failed to decrypt secret. Value may be corrupted or encryption key changed."
        ) from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.error(
            "Decrypted secret is not valid UTF-8",
            extra={"operation": "decrypt_secret", "error_type": type(e).__name__}
        )
        raise DecryptionError("Decrypted secret is not valid UTF-8 text") from e


def fingerprint(plaintext: str) -> str:
    """
    One-way SHA-256 fingerprint of a secret, for duplicate detection only.

    Returns:
        64-character lowercase hex digest
    """
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()
