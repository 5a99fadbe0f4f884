"""
keys.py - Ed25519 Keys and Threshold Key Lists

Key material for operators, treasuries, supply keys and topic submit keys:
1. PrivateKey: signs transaction bodies (raw or DER-prefixed hex encodings)
2. PublicKey: verifies signatures, compares by raw bytes
3. KeyList: ordered public keys with an M-of-N threshold

Only Ed25519 keys are supported; DER-encoded ECDSA secp256k1 keys are
rejected when parsed.
Signing and verification are delegated to the `cryptography` package.
Any key (PublicKey or KeyList) answers is_satisfied_by(signers), which the
sandbox uses to decide whether a transaction carries enough signatures.
"""

from __future__ import annotations
from typing import Iterable, Optional, Tuple, Union, AbstractSet

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey, Ed25519PublicKey,
)


# ASN.1 prefixes of the DER encodings of Ed25519 keys (PKCS#8 and SPKI).
DER_PRIVATE_PREFIX = bytes.fromhex("302e020100300506032b657004220420")
DER_PUBLIC_PREFIX = bytes.fromhex("302a300506032b6570032100")

# ECDSA secp256k1 DER prefixes. Only Ed25519 is supported; these are
# recognized so such keys fail with a clear message.
ECDSA_DER_PRIVATE_PREFIX = bytes.fromhex("3030020100300706052b8104000a04220420")
ECDSA_DER_PUBLIC_PREFIX = bytes.fromhex("302d300706052b8104000a032200")

_RAW = serialization.Encoding.Raw


def _decode_hex(text: str, prefix: bytes, kind: str) -> bytes:
    """
    Decode raw 32-byte hex or DER-prefixed Ed25519 hex into the 32 raw key bytes.

    Raw hex carries no algorithm, so 32 raw bytes are always read as an
    Ed25519 key. DER-encoded ECDSA secp256k1 keys are rejected.

    Raises:
        ValueError: If the text is not hex, has the wrong length, or is an ECDSA key
    """
    cleaned = text.strip()
    if cleaned.startswith("0x"):
        cleaned = cleaned[2:]
    try:
        data = bytes.fromhex(cleaned)
    except ValueError as e:
        raise ValueError(f"Invalid {kind} key hex: {e}") from None
    if len(data) == 32:
        return data
    if data.startswith(ECDSA_DER_PRIVATE_PREFIX) or data.startswith(ECDSA_DER_PUBLIC_PREFIX):
        raise ValueError(f"Unsupported {kind} key: ECDSA (secp256k1) keys are not supported, use Ed25519")
    if len(data) == len(prefix) + 32 and data.startswith(prefix):
        return data[len(prefix):]
    raise ValueError(
        f"Invalid {kind} key: expected 32 raw bytes or DER-encoded Ed25519, got {len(data)} bytes"
    )


class PublicKey:
    """Ed25519 public key. Equality and hashing use the raw 32 bytes."""

    __slots__ = ("_key", "_raw")

    def __init__(self, key: Ed25519PublicKey):
        self._key = key
        self._raw = key.public_bytes(_RAW, serialization.PublicFormat.Raw)

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'PublicKey':
        return cls(Ed25519PublicKey.from_public_bytes(raw))

    @classmethod
    def from_string(cls, text: str) -> 'PublicKey':
        """
        Parse a public key from hex.

        Args:
            text: 64 hex chars (raw) or the DER-prefixed form

        Raises:
            ValueError: If the text is not a valid Ed25519 public key encoding
        """
        return cls.from_bytes(_decode_hex(text, DER_PUBLIC_PREFIX, "public"))

    def to_bytes_raw(self) -> bytes:
        return self._raw

    def to_string_raw(self) -> str:
        return self._raw.hex()

    def to_string_der(self) -> str:
        return (DER_PUBLIC_PREFIX + self._raw).hex()

    def verify(self, signature: bytes, message: bytes) -> bool:
        """Return True if signature is a valid signature of message by this key."""
        try:
            self._key.verify(signature, message)
        except InvalidSignature:
            return False
        return True

    def is_satisfied_by(self, signers: AbstractSet['PublicKey']) -> bool:
        return self in signers

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash(("PublicKey", self._raw))

    def __repr__(self) -> str:
        return f"PublicKey({self.to_string_raw()})"

    __str__ = to_string_der


class PrivateKey:
    """Ed25519 private key. Never printed in full."""

    __slots__ = ("_key", "_public_key")

    def __init__(self, key: Ed25519PrivateKey):
        self._key = key
        self._public_key = PublicKey(key.public_key())

    @classmethod
    def generate(cls) -> 'PrivateKey':
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'PrivateKey':
        return cls(Ed25519PrivateKey.from_private_bytes(raw))

    @classmethod
    def from_string(cls, text: str) -> 'PrivateKey':
        """
        Parse a private key from hex.

        Args:
            text: 64 hex chars (raw seed) or the DER-prefixed form

        Raises:
            ValueError: If the text is not a valid Ed25519 private key encoding
        """
        return cls.from_bytes(_decode_hex(text, DER_PRIVATE_PREFIX, "private"))

    @property
    def public_key(self) -> PublicKey:
        return self._public_key

    def to_bytes_raw(self) -> bytes:
        return self._key.private_bytes(
            _RAW, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        )

    def to_string_raw(self) -> str:
        return self.to_bytes_raw().hex()

    def to_string_der(self) -> str:
        return (DER_PRIVATE_PREFIX + self.to_bytes_raw()).hex()

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self._public_key == other._public_key

    def __hash__(self) -> int:
        return hash(("PrivateKey", self._public_key.to_bytes_raw()))

    def __repr__(self) -> str:
        return f"PrivateKey(public={self._public_key.to_string_raw()})"


Key = Union[PublicKey, 'KeyList']


class KeyList:
    """
    Ordered list of keys satisfied when at least `threshold` of them sign.

    A KeyList without a threshold requires every key. Nested key lists count
    as one key each, satisfied by their own threshold.

    Example:
        # 1-of-2: either account may submit to the topic
        submit_key = KeyList([alice.public_key, bob.public_key], threshold=1)
    """

    __slots__ = ("_keys", "_threshold")

    def __init__(self, keys: Iterable[Key], threshold: Optional[int] = None):
        keys = tuple(keys)
        if not keys:
            raise ValueError("KeyList requires at least one key")
        for key in keys:
            if not isinstance(key, (PublicKey, KeyList)):
                raise TypeError(f"KeyList entries must be PublicKey or KeyList, got {type(key).__name__}")
        if threshold is not None:
            if not isinstance(threshold, int) or isinstance(threshold, bool):
                raise ValueError(f"threshold must be an integer, got {threshold!r}")
            if not 1 <= threshold <= len(keys):
                raise ValueError(
                    f"threshold must be between 1 and {len(keys)}, got {threshold}"
                )
        self._keys: Tuple[Key, ...] = keys
        self._threshold = threshold

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def threshold(self) -> int:
        return self._threshold if self._threshold is not None else len(self._keys)

    def is_satisfied_by(self, signers: AbstractSet[PublicKey]) -> bool:
        satisfied = sum(1 for key in self._keys if key.is_satisfied_by(signers))
        return satisfied >= self.threshold

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyList):
            return NotImplemented
        return self._keys == other._keys and self.threshold == other.threshold

    def __hash__(self) -> int:
        return hash(("KeyList", self._keys, self.threshold))

    def __repr__(self) -> str:
        inner = ", ".join(repr(k) for k in self._keys)
        return f"KeyList([{inner}], threshold={self.threshold})"
