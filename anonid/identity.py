"""
Principals and did:key Identities

A ``Principal`` is the opaque, already-authenticated identity of a caller:
an administrator, an issuer, a credential holder, or a verifier. The core
never authenticates; it only compares principals for equality.

Principals are usually ``did:key`` identifiers derived from an Ed25519 public
key (multicodec ``0xed01``, multibase base58btc). The empty identifier is the
sentinel and is never a valid issuer or verifier.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from anonid.errors import InvalidPrincipal
from anonid.hardening import CryptoUtils, Validators


# Base58 (bitcoin alphabet) for multibase "z" encoding
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}

ED25519_MULTICODEC = bytes([0xED, 0x01])

# All-zero account identifiers are the sentinel as well as the empty string
_ZERO_ADDRESS = re.compile(r"^0x0+$")


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


# =============================================================================
# PRINCIPAL
# =============================================================================

@dataclass(frozen=True)
class Principal:
    """
    Opaque caller identity.

    Equality is by identifier. ``Principal.sentinel()`` (the empty identifier)
    stands for "nobody" and is rejected wherever an issuer or verifier is
    required.
    """
    id: str

    def __post_init__(self):
        result = Validators.validate_principal_id(self.id, "principal")
        if not result.is_valid:
            raise InvalidPrincipal(result.message, principal=self.id)

    @classmethod
    def sentinel(cls) -> 'Principal':
        return cls("")

    @classmethod
    def of(cls, value: Union["Principal", str]) -> 'Principal':
        """Accept either a Principal or its identifier."""
        if isinstance(value, Principal):
            return value
        return cls(value)

    @property
    def is_sentinel(self) -> bool:
        return self.id == "" or _ZERO_ADDRESS.match(self.id) is not None

    @property
    def is_did_key(self) -> bool:
        return self.id.startswith("did:key:z") and Validators.validate_did(self.id).is_valid

    def same_as(self, other: 'Principal') -> bool:
        """Constant-time identity comparison."""
        return CryptoUtils.secure_compare_str(self.id, other.id)

    def __str__(self) -> str:
        return self.id


SENTINEL = Principal.sentinel()


# =============================================================================
# did:key (Ed25519)
# =============================================================================

def did_key_from_ed25519_public_key(pub: bytes) -> str:
    if len(pub) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(pub)}")
    return "did:key:z" + b58encode(ED25519_MULTICODEC + pub)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a ``did:key`` (Ed25519) and return a cryptography public key."""
    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")

    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(ED25519_MULTICODEC):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")

    raw = decoded[len(ED25519_MULTICODEC):]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")

    return Ed25519PublicKey.from_public_bytes(raw)


def principal_from_public_key(public_key: Ed25519PublicKey) -> Principal:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return Principal(did_key_from_ed25519_public_key(raw))


def generate_principal() -> Tuple[Principal, Ed25519PrivateKey]:
    """Generate a fresh Ed25519 keypair and its did:key principal."""
    private_key = Ed25519PrivateKey.generate()
    return principal_from_public_key(private_key.public_key()), private_key


def private_key_to_hex(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return raw.hex()


def private_key_from_hex(value: str) -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(bytes.fromhex(value))


__all__ = [
    "Principal",
    "SENTINEL",
    "b58encode",
    "b58decode",
    "did_key_from_ed25519_public_key",
    "ed25519_public_key_from_did_key",
    "principal_from_public_key",
    "generate_principal",
    "private_key_to_hex",
    "private_key_from_hex",
]
