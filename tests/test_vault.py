from __future__ import annotations

import pytest

from booksync.core.crypto import CryptoError, Vault, looks_encrypted


def test_blob_format_and_round_trip(vault: Vault) -> None:
    blob = vault.encrypt("ya29.access-token")

    iv, tag, ciphertext = blob.split(":")
    assert len(bytes.fromhex(iv)) == 16
    assert len(bytes.fromhex(tag)) == 16
    assert bytes.fromhex(ciphertext)
    assert looks_encrypted(blob)
    assert vault.decrypt(blob) == "ya29.access-token"


def test_fresh_iv_per_encryption(vault: Vault) -> None:
    assert vault.encrypt("same") != vault.encrypt("same")


def test_key_derivation_is_deterministic(vault: Vault) -> None:
    other = Vault.from_secret(secret="test-encryption-secret")
    assert other.decrypt(vault.encrypt("token")) == "token"


def test_wrong_secret_fails_authentication(vault: Vault) -> None:
    blob = vault.encrypt("token")
    with pytest.raises(CryptoError):
        Vault.from_secret(secret="another-secret").decrypt(blob)


def test_tampered_ciphertext_fails(vault: Vault) -> None:
    iv, tag, ciphertext = vault.encrypt("token").split(":")
    flipped = f"{int(ciphertext[0], 16) ^ 1:x}" + ciphertext[1:]
    with pytest.raises(CryptoError):
        vault.decrypt(f"{iv}:{tag}:{flipped}")


@pytest.mark.parametrize(
    "blob",
    [
        "",
        "plaintext-token",
        "aa:bb",
        "aa:bb:cc:dd",
        "zz:00112233445566778899aabbccddeeff:00",
        "00112233445566778899aabbccddeeff:0011:00",
    ],
)
def test_malformed_blobs_raise_crypto_error(vault: Vault, blob: str) -> None:
    with pytest.raises(CryptoError):
        vault.decrypt(blob)


def test_looks_encrypted_rejects_plaintext() -> None:
    assert not looks_encrypted(None)
    assert not looks_encrypted("ya29.plain")
