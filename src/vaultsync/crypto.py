"""
Encryption gateway: key derivation, sealing, and fingerprints.

Built on PBKDF2-HMAC-SHA256 for key derivation and AES-256-GCM for
authenticated encryption, both from the ``cryptography`` package.

Blob format (base64 text):
    nonce (12 bytes) || ciphertext || GCM tag (16 bytes)

The fingerprint is a plain SHA-256 over the blob text. It is an
equality oracle for sync, not an integrity check; GCM already does that.

Usage:
    salt = generate_salt()
    key = derive_key("hunter22", "alice", salt)
    blob = encrypt(key, '{"records": []}')
    assert decrypt(key, blob) == '{"records": []}'
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from typing import Optional

from .errors import DecryptionError

KDF_ITERATIONS = 100_000
KEY_LENGTH = 32
NONCE_LENGTH = 12
SALT_LENGTH = 16
STABLE_ID_BYTES = 32


def derive_key(passphrase: str, account_id: str, salt: bytes) -> bytes:
    """Derive the data-protection key for an account.

    The account id is mixed into the password material so two accounts
    sharing a passphrase never share a key.

    Args:
        passphrase: The secret the human typed.
        account_id: Account identifier (login or remote email).
        salt: The account's 16-byte salt.

    Returns:
        32-byte AES key.
    """
    from cryptography.hazmat.primitives.hashes import SHA256
    from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive((account_id + passphrase).encode("utf-8"))


def encrypt(key: bytes, plaintext: str) -> str:
    """Encrypt text with AES-256-GCM under a fresh random nonce.

    Args:
        key: 32-byte key from derive_key.
        plaintext: Text to seal.

    Returns:
        Base64 blob with the nonce prepended.
    """
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    nonce = secrets.token_bytes(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(key: bytes, blob: str) -> str:
    """Open a blob produced by encrypt.

    Args:
        key: 32-byte key from derive_key.
        blob: Base64 blob.

    Returns:
        The original plaintext.

    Raises:
        DecryptionError: Wrong key, corrupted or truncated blob.
    """
    from cryptography.exceptions import InvalidTag
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Blob is not valid base64") from exc

    if len(raw) <= NONCE_LENGTH:
        raise DecryptionError("Blob is too short")

    nonce, sealed = raw[:NONCE_LENGTH], raw[NONCE_LENGTH:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        raise DecryptionError(
            "Decryption failed. Possibly incorrect passphrase."
        ) from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Decrypted payload is not UTF-8") from exc


def fingerprint(blob: str) -> str:
    """SHA-256 hex digest of a ciphertext blob."""
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def generate_salt() -> bytes:
    """Fresh random per-account salt."""
    return secrets.token_bytes(SALT_LENGTH)


def encode_salt(salt: bytes) -> str:
    return base64.b64encode(salt).decode("ascii")


def decode_salt(value: str) -> bytes:
    """Decode a base64 salt.

    Raises:
        ValueError: If the value is not valid base64.
    """
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid salt encoding: {exc}") from exc


def new_stable_id() -> str:
    """Permanent 256-bit random identity for a credential record."""
    return base64.b64encode(secrets.token_bytes(STABLE_ID_BYTES)).decode("ascii")


def short(digest: Optional[str]) -> str:
    """Truncate a fingerprint for log lines."""
    if not digest:
        return "none"
    return digest[:8] + "..."
