"""
Cryptographic module for Lockbox.

Handles:
- Password-based record encryption (Argon2id + AES-256-GCM)
- Local credential storage (token, local master key)
- Envelope key management (repository DEK)
"""

from .cipher import EncryptedRecord, KdfParams, decrypt, decrypt_text, encrypt, generate_key
from .credential_vault import CredentialVault
from .key_manager import EnvelopeKeyManager

__all__ = [
    "EncryptedRecord",
    "KdfParams",
    "encrypt",
    "decrypt",
    "decrypt_text",
    "generate_key",
    "CredentialVault",
    "EnvelopeKeyManager",
]
