from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from booksync.core.config import Settings

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16

# Same cost parameters as the blobs already stored by the previous service.
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


class CryptoError(RuntimeError):
    """Ciphertext is malformed or failed authentication. The credential must be reconnected."""


def derive_key(*, secret: str, salt: str) -> bytes:
    if not secret:
        raise CryptoError("Encryption secret is empty")
    kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


class Vault:
    """AES-256-GCM for stored credentials.

    Blobs are ``{iv}:{auth_tag}:{ciphertext}``, each part hex encoded. The key is
    derived once at construction and is read-only afterwards.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise CryptoError("Vault key must be 32 bytes (AES-256)")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_secret(cls, *, secret: str, salt: str = "salt") -> Vault:
        return cls(derive_key(secret=secret, salt=salt))

    @classmethod
    def from_settings(cls, settings: Settings) -> Vault:
        return cls.from_secret(secret=settings.ENCRYPTION_SECRET, salt=settings.ENCRYPTION_SALT)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        parts = (blob or "").split(":")
        if len(parts) != 3:
            raise CryptoError("Invalid encrypted data format")

        try:
            iv = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
        except ValueError as e:
            raise CryptoError("Encrypted data is not valid hex") from e

        if len(iv) < 8 or len(tag) != TAG_LENGTH:
            raise CryptoError("Invalid encrypted data format")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise CryptoError("Encrypted data failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted data is not valid UTF-8") from e


def looks_encrypted(value: str | None) -> bool:
    if not value:
        return False
    parts = value.split(":")
    if len(parts) != 3:
        return False
    try:
        for part in parts:
            bytes.fromhex(part)
    except ValueError:
        return False
    return True
