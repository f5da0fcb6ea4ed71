"""Encryption at rest for submission PII.

AES-256-CBC with a fresh 16-byte IV per value, stored as
base64(iv || ciphertext). Searchable fields get a keyed HMAC-SHA256 hash.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.config import get_settings

logger = logging.getLogger(__name__)

CIPHER_NAME = "AES-256-CBC"
IV_LENGTH = 16
KEY_LENGTH = 32
KDF_SALT = b"submission-vault-encryption-salt"


@lru_cache(maxsize=4)
def _derive_key(material: str, iterations: int) -> bytes:
    """Stretch secret material into a 32-byte key. Cached per process."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        iterations=iterations,
    )
    return kdf.derive(material.encode("utf-8"))


def is_configured() -> bool:
    """Check whether key material is available."""
    settings = get_settings()
    if settings.ENCRYPTION_KEY and len(settings.ENCRYPTION_KEY) >= KEY_LENGTH:
        return True
    return len(settings.encryption_secrets_list) >= 2


def get_encryption_key() -> bytes:
    """
    Resolve the 32-byte encryption key.

    An explicit ENCRYPTION_KEY is used directly (first 32 bytes); otherwise
    the ENCRYPTION_SECRETS are joined and stretched with PBKDF2.
    """
    settings = get_settings()
    if settings.ENCRYPTION_KEY and len(settings.ENCRYPTION_KEY) >= KEY_LENGTH:
        return settings.ENCRYPTION_KEY.encode("utf-8")[:KEY_LENGTH]

    combined = "|".join(settings.encryption_secrets_list)
    return _derive_key(combined, settings.ENCRYPTION_KDF_ITERATIONS)


def get_hash_salt() -> bytes:
    """Salt for keyed hashes, kept separate from the encryption key."""
    settings = get_settings()
    if settings.HASH_SALT:
        return settings.HASH_SALT.encode("utf-8")
    return settings.SECRET_KEY.encode("utf-8")


def encrypt(value: Optional[str]) -> Optional[str]:
    """Encrypt a value. Returns None for empty input or on failure."""
    if not value:
        return None

    try:
        key = get_encryption_key()
        iv = os.urandom(IV_LENGTH)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(value.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
    except (ValueError, TypeError) as e:
        logger.error(f"Encryption failed for value of length {len(value)}: {e}")
        return None

    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt(encrypted: Optional[str]) -> Optional[str]:
    """
    Decrypt a value produced by encrypt().

    Malformed input (bad base64, wrong length, bad padding, wrong key)
    returns None so one unreadable record never aborts a batch.
    """
    if not encrypted:
        return None

    try:
        raw = base64.b64decode(encrypted, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Decryption skipped: invalid base64 payload")
        return None

    body = raw[IV_LENGTH:]
    if len(raw) <= IV_LENGTH or len(body) % IV_LENGTH != 0:
        logger.debug("Decryption skipped: payload has invalid length")
        return None

    iv = raw[:IV_LENGTH]
    try:
        decryptor = Cipher(algorithms.AES(get_encryption_key()), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        logger.debug("Decryption failed: bad padding or key mismatch")
        return None


def keyed_hash(value: Optional[str]) -> Optional[str]:
    """Deterministic 64-char hex HMAC-SHA256 of a value, for equality search."""
    if not value:
        return None
    return hmac.new(get_hash_salt(), value.encode("utf-8"), hashlib.sha256).hexdigest()


def encryption_info() -> dict:
    """Describe the encryption setup for operators. Never includes key material."""
    settings = get_settings()
    if settings.ENCRYPTION_KEY and len(settings.ENCRYPTION_KEY) >= KEY_LENGTH:
        key_source = "ENCRYPTION_KEY"
    else:
        key_source = f"ENCRYPTION_SECRETS ({len(settings.encryption_secrets_list)} secrets)"

    return {
        "configured": is_configured(),
        "cipher": CIPHER_NAME,
        "iv_length": IV_LENGTH,
        "key_source": key_source,
        "hash_algorithm": "HMAC-SHA256",
        "key_derivation": f"PBKDF2-HMAC-SHA256 ({settings.ENCRYPTION_KDF_ITERATIONS} iterations)",
        "hash_salt_source": "HASH_SALT" if settings.HASH_SALT else "SECRET_KEY",
    }
