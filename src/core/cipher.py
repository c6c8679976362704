"""
Encryption collaborators for record payloads.

The record layer only ever sees the opaque string returned by ``encrypt``.
"""

import base64
import hashlib
import json
import os
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CipherError(Exception):
    """Raised when a payload cannot be decrypted."""
    pass


class EnvelopeCipher:
    """Base64 JSON envelope with the ``FHE-TCM-`` prefix.

    Stands in for the homomorphic scheme; it provides no confidentiality.
    """

    prefix = "FHE-TCM-"

    def encrypt(self, fields: Dict[str, Any]) -> str:
        plaintext = json.dumps(fields, separators=(",", ":")).encode("utf-8")
        return self.prefix + base64.b64encode(plaintext).decode("ascii")

    def decrypt(self, payload: str) -> Dict[str, Any]:
        if not payload.startswith(self.prefix):
            raise CipherError("Payload was not produced by this cipher")
        try:
            return json.loads(base64.b64decode(payload[len(self.prefix):]))
        except ValueError as e:
            raise CipherError(f"Corrupt payload: {e}") from e


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive encryption key from password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return kdf.derive(password.encode())


class AesGcmCipher:
    """AES-256-GCM envelope: ``FHE-TCM-AES-`` + base64(nonce | tag | ciphertext)."""

    prefix = "FHE-TCM-AES-"

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("AES-256 key must be 32 bytes")
        self._key = key

    @classmethod
    def from_password(cls, password: str, salt: bytes = None) -> "AesGcmCipher":
        if salt is None:
            salt = hashlib.sha256(b"tcm-record-ledger").digest()[:16]
        return cls(_derive_key(password, salt))

    def encrypt(self, fields: Dict[str, Any]) -> str:
        plaintext = json.dumps(fields, separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(12)
        encryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce)).encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        blob = nonce + encryptor.tag + ciphertext
        return self.prefix + base64.b64encode(blob).decode("ascii")

    def decrypt(self, payload: str) -> Dict[str, Any]:
        if not payload.startswith(self.prefix):
            raise CipherError("Payload was not produced by this cipher")
        try:
            blob = base64.b64decode(payload[len(self.prefix):])
        except ValueError as e:
            raise CipherError(f"Corrupt payload: {e}") from e

        if len(blob) < 28:  # nonce (12) + tag (16)
            raise CipherError("Encrypted payload too short")

        nonce, tag, ciphertext = blob[:12], blob[12:28], blob[28:]
        decryptor = Cipher(algorithms.AES(self._key), modes.GCM(nonce, tag)).decryptor()
        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            raise CipherError("Payload failed authentication") from e
        return json.loads(plaintext)
