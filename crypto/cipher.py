"""
Password-based authenticated encryption.

An EncryptedRecord is self-describing: it carries the Argon2id salt and the
AES-GCM nonce next to the ciphertext, all base64 encoded, so it can be
embedded in a JSON document and decrypted later with nothing but the
password.

Decryption failures are reported as AuthenticationFailed whether the
password was wrong or the record was tampered with; the two cases cannot be
told apart.
"""

import os
import json
import base64
import binascii
import secrets
from typing import Any
from dataclasses import dataclass, asdict

from argon2.low_level import hash_secret_raw, Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import AuthenticationFailed, CorruptState

NONCE_LEN = 12  # 96 bits for AES-GCM
SALT_LEN = 16
KEY_BYTES = 32  # AES-256 keys and random DEK / LMK material


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters used for every record."""
    time_cost: int = 3
    memory_cost: int = 65536  # KiB
    parallelism: int = 4


KDF = KdfParams()


@dataclass(frozen=True)
class EncryptedRecord:
    """Salt, nonce and ciphertext of one encryption, base64 encoded."""
    salt: str
    nonce: str
    ciphertext: str

    def to_dict(self) -> dict[str, str]:
        """Convert to JSON-serializable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedRecord":
        """Reconstruct from dictionary."""
        try:
            record = cls(
                salt=data["salt"],
                nonce=data["nonce"],
                ciphertext=data["ciphertext"],
            )
        except (KeyError, TypeError) as e:
            raise CorruptState(f"Encrypted record is missing a field: {e}")
        if not all(isinstance(v, str) for v in (record.salt, record.nonce, record.ciphertext)):
            raise CorruptState("Encrypted record fields must be strings")
        return record

    def to_json(self) -> bytes:
        """Serialize as a pretty-printed JSON document."""
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> "EncryptedRecord":
        """Parse a JSON document produced by to_json."""
        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptState(f"Encrypted record is not valid JSON: {e}")
        return cls.from_dict(parsed)


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise CorruptState(f"Invalid {field_name} base64")


def _derive_key(password: str, salt: bytes) -> bytes:
    """Stretch password into an AES-256 key with Argon2id."""
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=KDF.time_cost,
        memory_cost=KDF.memory_cost,
        parallelism=KDF.parallelism,
        hash_len=KEY_BYTES,
        type=Type.ID,
    )


def encrypt(plaintext: bytes, password: str) -> EncryptedRecord:
    """
    Encrypt plaintext under a key derived from password.

    A fresh salt and a fresh nonce are generated for every call.

    Args:
        plaintext: Data to encrypt
        password: Password (or key string) to derive the key from

    Returns:
        EncryptedRecord ready for storage
    """
    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    aesgcm = AESGCM(_derive_key(password, salt))
    ciphertext = aesgcm.encrypt(nonce, plaintext, None)

    return EncryptedRecord(
        salt=base64.b64encode(salt).decode("ascii"),
        nonce=base64.b64encode(nonce).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
    )


def decrypt(record: EncryptedRecord, password: str) -> bytes:
    """
    Decrypt a record produced by encrypt.

    Args:
        record: The encrypted record
        password: Password used at encryption time

    Returns:
        The plaintext bytes

    Raises:
        AuthenticationFailed: Wrong password or tampered record
        CorruptState: The record fields are not valid base64
    """
    salt = _b64decode(record.salt, "salt")
    nonce = _b64decode(record.nonce, "nonce")
    ciphertext = _b64decode(record.ciphertext, "ciphertext")
    # Altered lengths are tampering, same as a flipped byte.
    if len(nonce) != NONCE_LEN or len(salt) != SALT_LEN:
        raise AuthenticationFailed()

    aesgcm = AESGCM(_derive_key(password, salt))
    try:
        return aesgcm.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationFailed()


def decrypt_text(record: EncryptedRecord, password: str) -> str:
    """Decrypt a record whose plaintext is UTF-8 text."""
    plaintext = decrypt(record, password)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise CorruptState("Decrypted data is not valid UTF-8")


def generate_key() -> str:
    """Generate 256 bits of random key material as a printable string."""
    return base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii")
