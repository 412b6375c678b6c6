"""ChaCha20-Poly1305 encryption for multicast datagrams.

Security model
--------------
- Every node holds the same password and salt.  The 256-bit key is derived
  with scrypt (``n=2**14, r=8, p=1``), which meets the OWASP password-storage
  recommendation and makes exhaustive search over the password space costly.
- Every datagram uses a fresh random 96-bit nonce from ``os.urandom``.
- The caller supplies a *context* that is bound as AAD.  The transport uses
  ``"<ip>:<port>"`` of the sender, so a datagram relayed from a different
  network location fails authentication.

Wire layout
-----------
::

    tag (16 bytes) || nonce (12 bytes) || ciphertext (len(plaintext) bytes)
"""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from loguru import logger

from eureka.errors import (
    AuthenticationFailure,
    CodecError,
    InvalidConfiguration,
    MalformedEnvelope,
)

KEY_SIZE = 32
TAG_SIZE = 16
NONCE_SIZE = 12
HEADER_SIZE = TAG_SIZE + NONCE_SIZE

# scrypt cost parameters
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


@runtime_checkable
class Codec(Protocol):
    """Anything the transport can use to protect datagrams."""

    def encrypt(self, plaintext: bytes, context: bytes) -> bytes: ...

    def decrypt(self, envelope: bytes, context: bytes) -> bytes: ...


def _as_bytes(value: str | bytes, label: str) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not value:
        raise InvalidConfiguration(f"{label} must be provided")
    return bytes(value)


# ------------------------------------------------------------------
# Key derivation
# ------------------------------------------------------------------

def derive_key(password: str | bytes, salt: str | bytes) -> bytes:
    """Derive a 256-bit key from a shared *password* and *salt*.

    Identical inputs always yield the identical key.
    """
    password_bytes = _as_bytes(password, "password")
    salt_bytes = _as_bytes(salt, "salt")
    kdf = Scrypt(salt=salt_bytes, length=KEY_SIZE, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(password_bytes)


# ------------------------------------------------------------------
# Codec
# ------------------------------------------------------------------

class AeadCodec:
    """Encrypts and decrypts datagrams under one static key.

    Parameters
    ----------
    password, salt:
        Shared secret material.  Both are required and must be non-empty.
    """

    def __init__(self, password: str | bytes, salt: str | bytes) -> None:
        self._set_key(derive_key(password, salt))
        logger.debug("[Eureka/Crypto] key derived")

    @classmethod
    def from_key(cls, key: bytes) -> "AeadCodec":
        """Build a codec around an already derived 32-byte key."""
        if len(key) != KEY_SIZE:
            raise InvalidConfiguration(f"key must be {KEY_SIZE} bytes, got {len(key)}")
        codec = cls.__new__(cls)
        codec._set_key(bytes(key))
        return codec

    def _set_key(self, key: bytes) -> None:
        self._key: bytearray | None = bytearray(key)
        self._aead: ChaCha20Poly1305 | None = ChaCha20Poly1305(bytes(self._key))

    @property
    def closed(self) -> bool:
        return self._aead is None

    def _cipher(self) -> ChaCha20Poly1305:
        if self._aead is None:
            raise CodecError("codec is closed")
        return self._aead

    # -- encrypt / decrypt ---------------------------------------------------

    def encrypt(self, plaintext: bytes, context: bytes) -> bytes:
        """Encrypt *plaintext* with *context* as AAD.

        Returns ``tag || nonce || ciphertext``.
        """
        nonce = os.urandom(NONCE_SIZE)
        # cryptography appends the tag to the ciphertext
        sealed = self._cipher().encrypt(nonce, bytes(plaintext), bytes(context))
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return tag + nonce + ciphertext

    def decrypt(self, envelope: bytes, context: bytes) -> bytes:
        """Verify and decrypt an envelope produced by :meth:`encrypt`.

        Raises ``MalformedEnvelope`` for input shorter than 28 bytes and
        ``AuthenticationFailure`` when the tag does not verify.
        """
        if len(envelope) < HEADER_SIZE:
            raise MalformedEnvelope(
                f"envelope is {len(envelope)} bytes, need at least {HEADER_SIZE}"
            )
        tag = envelope[:TAG_SIZE]
        nonce = envelope[TAG_SIZE:HEADER_SIZE]
        ciphertext = envelope[HEADER_SIZE:]
        try:
            return self._cipher().decrypt(
                bytes(nonce), bytes(ciphertext) + bytes(tag), bytes(context)
            )
        except InvalidTag as exc:
            raise AuthenticationFailure("unable to authenticate datagram") from exc

    # -- teardown ------------------------------------------------------------

    def close(self) -> None:
        """Drop the cipher and zero the key buffer."""
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
        self._key = None
        self._aead = None
