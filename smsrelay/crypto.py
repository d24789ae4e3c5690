"""Password-based AES-CBC envelope encryption for relayed messages."""
from __future__ import annotations

import hashlib
import os
from typing import Callable, Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .models import IV_SIZE, EncryptedEnvelope

BLOCK_SIZE_BITS = 128


class CipherError(RuntimeError):
    """Base error for envelope encryption problems."""


class EncryptionError(CipherError):
    """Raised when the cipher cannot produce an envelope."""


class DecryptionError(CipherError):
    """Raised for malformed envelopes, wrong passwords or corrupted ciphertext."""


def derive_key(password: str) -> bytes:
    """Return SHA-256 of the UTF-8 password.

    A single unsalted hash pass, kept for compatibility with existing
    subscribers. It is not a slow KDF.
    """

    return hashlib.sha256(password.encode("utf-8")).digest()


class MessageCipher:
    """AES-256-CBC with PKCS#7 padding and a fresh random IV per message."""

    def __init__(self, *, random_bytes: Optional[Callable[[int], bytes]] = None) -> None:
        self._random_bytes = random_bytes or os.urandom

    def encrypt(self, plaintext: str, password: str) -> EncryptedEnvelope:
        try:
            key = derive_key(password)
            iv = self._random_bytes(IV_SIZE)
            if len(iv) != IV_SIZE:
                raise ValueError(f"IV source returned {len(iv)} bytes")
            padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError) as exc:
            raise EncryptionError("Unable to encrypt message") from exc
        return EncryptedEnvelope(iv=iv, ciphertext=ciphertext)

    def decrypt(self, envelope: Union[EncryptedEnvelope, str], password: str) -> str:
        if isinstance(envelope, str):
            try:
                envelope = EncryptedEnvelope.parse(envelope)
            except ValueError as exc:
                raise DecryptionError(str(exc)) from exc

        ciphertext = envelope.ciphertext
        if len(envelope.iv) != IV_SIZE or not ciphertext or len(ciphertext) % IV_SIZE:
            raise DecryptionError("Envelope has an invalid length")

        try:
            decryptor = Cipher(algorithms.AES(derive_key(password)), modes.CBC(envelope.iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("Wrong password or corrupted ciphertext") from exc

    def encrypt_to_string(self, plaintext: str, password: str) -> str:
        return self.encrypt(plaintext, password).serialize()


__all__ = [
    "CipherError",
    "DecryptionError",
    "EncryptionError",
    "MessageCipher",
    "derive_key",
]
