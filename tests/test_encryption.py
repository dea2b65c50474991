"""
Credential encryption tests.

CRITICAL: These tests verify:
1. API keys round-trip through the iv_hex:ciphertext_hex format
2. Each encryption uses a fresh IV
3. Malformed tokens and failed decryptions raise distinct errors
4. Empty input maps to the empty token and back
"""

import hashlib
import re

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from llm_gateway.credentials.encryption import (
    ENCRYPTION_SALT,
    CredentialEncryptionError,
    DecryptionError,
    MalformedCiphertextError,
    decrypt_secret,
    derive_key,
    encrypt_secret,
    fingerprint,
)

SECRET = "test-credential-encryption-secret"
TOKEN_FORMAT = re.compile(r"^[0-9a-f]{32}:[0-9a-f]+$")


# ============================================================================
# TEST SUITE: KEY DERIVATION
# ============================================================================

class TestDeriveKey:
    """Test deterministic key derivation."""

    def test_key_is_salted_sha256(self):
        expected = hashlib.sha256(SECRET.encode("utf-8") + ENCRYPTION_SALT).digest()
        assert derive_key(SECRET) == expected

    def test_key_is_32_bytes(self):
        assert len(derive_key(SECRET)) == 32

    def test_same_secret_same_key(self):
        assert derive_key(SECRET) == derive_key(SECRET)

    def test_different_secret_different_key(self):
        assert derive_key(SECRET) != derive_key(SECRET + "x")


# ============================================================================
# TEST SUITE: ENCRYPTION ROUND-TRIP
# ============================================================================

class TestEncryptionRoundTrip:
    """Test encryption and decryption of secrets."""

    def test_encrypt_decrypt_roundtrip(self):
        """CRITICAL: Encrypted keys decrypt back to the original."""
        plaintext = "test_api_key_value_for_roundtrip"

        encrypted = encrypt_secret(plaintext, SECRET)

        assert decrypt_secret(encrypted, SECRET) == plaintext
        assert plaintext not in encrypted

    def test_output_format(self):
        encrypted = encrypt_secret("fk-test-key-not-real", SECRET)
        assert TOKEN_FORMAT.match(encrypted)

    def test_ciphertext_is_whole_blocks(self):
        # 16 bytes of plaintext pads to 32 bytes of ciphertext
        encrypted = encrypt_secret("a" * 16, SECRET)
        _, ciphertext_hex = encrypted.split(":")
        assert len(ciphertext_hex) == 64

    def test_fresh_iv_per_call(self):
        """Same plaintext encrypts differently every time."""
        first = encrypt_secret("same-value", SECRET)
        second = encrypt_secret("same-value", SECRET)

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]
        assert decrypt_secret(first, SECRET) == decrypt_secret(second, SECRET)

    def test_unicode_roundtrip(self):
        plaintext = "clé-secrète-🔑"
        assert decrypt_secret(encrypt_secret(plaintext, SECRET), SECRET) == plaintext

    def test_empty_plaintext_is_empty_token(self):
        assert encrypt_secret("", SECRET) == ""

    def test_empty_token_is_empty_plaintext(self):
        assert decrypt_secret("", SECRET) == ""

    def test_interoperates_with_plain_aes_cbc(self):
        """Tokens produced by any AES-256-CBC/PKCS7 implementation decrypt."""
        iv = bytes(range(16))
        padder = padding.PKCS7(128).padder()
        padded = padder.update(b"external-key") + padder.finalize()
        encryptor = Cipher(algorithms.AES(derive_key(SECRET)), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        token = f"{iv.hex()}:{ciphertext.hex()}"

        assert decrypt_secret(token, SECRET) == "external-key"


# ============================================================================
# TEST SUITE: MALFORMED TOKENS
# ============================================================================

class TestMalformedTokens:
    """Structural problems raise MalformedCiphertextError."""

    @pytest.mark.parametrize("token", [
        "no-separator",
        "aa:bb:cc",
        "zz" * 16 + ":00",
        "00" * 16 + ":not-hex",
        "00" * 8 + ":" + "00" * 16,
    ])
    def test_malformed_token_raises(self, token):
        with pytest.raises(MalformedCiphertextError):
            decrypt_secret(token, SECRET)

    def test_malformed_is_encryption_error(self):
        with pytest.raises(CredentialEncryptionError) as exc_info:
            decrypt_secret("garbage", SECRET)

        assert exc_info.value.code == "ENCRYPTION_ERROR"
        assert exc_info.value.operation == "decrypt"


# ============================================================================
# TEST SUITE: DECRYPTION FAILURES
# ============================================================================

class TestDecryptionFailures:
    """Well-formed tokens that do not decrypt raise DecryptionError."""

    def test_wrong_secret(self):
        encrypted = encrypt_secret("fk-test-key-not-real-value", SECRET)

        with pytest.raises(DecryptionError):
            decrypt_secret(encrypted, "a-different-secret")

    def test_partial_block_ciphertext(self):
        token = "00" * 16 + ":" + "ab" * 10

        with pytest.raises(DecryptionError):
            decrypt_secret(token, SECRET)

    def test_empty_ciphertext(self):
        with pytest.raises(DecryptionError):
            decrypt_secret("00" * 16 + ":", SECRET)

    def test_non_utf8_plaintext(self):
        """Valid padding but undecodable bytes is not silently coerced."""
        iv = bytes(16)
        padder = padding.PKCS7(128).padder()
        padded = padder.update(b"\xff\xfe\xfd") + padder.finalize()
        encryptor = Cipher(algorithms.AES(derive_key(SECRET)), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        with pytest.raises(DecryptionError):
            decrypt_secret(f"{iv.hex()}:{ciphertext.hex()}", SECRET)

    def test_decryption_error_is_not_malformed(self):
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_secret("00" * 16 + ":", SECRET)

        assert not isinstance(exc_info.value, MalformedCiphertextError)


# ============================================================================
# TEST SUITE: FINGERPRINT
# ============================================================================

class TestFingerprint:

    def test_fingerprint_is_sha256_hex(self):
        value = "fk-test-key-not-real"
        assert fingerprint(value) == hashlib.sha256(value.encode()).hexdigest()

    def test_fingerprint_is_stable(self):
        assert fingerprint("x") == fingerprint("x")
        assert fingerprint("x") != fingerprint("y")
