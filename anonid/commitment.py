"""
Credential Commitments

A commitment is a fixed 32-byte binding to credential content. It is the only
identifier the core ever sees for a credential: the content itself stays with
the holder. The all-zero value is the sentinel and is never a valid credential
identifier.

Pedersen Commitments
────────────────────

    C = m·G + r·H        on the BN254 G1 curve

    m   message scalar: SHA-256 of the canonical JSON payload, reduced mod r
    r   blinding scalar: 32 random bytes, reduced mod r (never zero)
    G   standard generator of G1
    H   second generator derived by hashing to the curve, so nobody knows
        log_G(H)

C is stored in compressed form: the big-endian x coordinate with the top bit
of the first byte carrying the parity of y. That is exactly 32 bytes because
the BN254 base field modulus is below 2^254.

The commitment is perfectly hiding (r is uniform) and computationally binding
under the discrete-log assumption on G1.

Usage
─────

    opening = commit_payload({"name": "Alice", "dob": "1990-01-01"})
    opening.commitment.hex     # "0x..."  handed to the issuer
    opening.blinding           # kept secret by the holder

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple, Union

from py_ecc.optimized_bn128 import (
    FQ,
    G1,
    add,
    b,
    curve_order,
    field_modulus,
    is_inf,
    is_on_curve,
    multiply,
    normalize,
)

from anonid.errors import InvalidCommitment
from anonid.hardening import CryptoUtils, Validators


COMMITMENT_BYTES = 32

# Domain separation tag for deriving the second Pedersen generator
PEDERSEN_H_SEED = b"anonid/pedersen/bn254/H/v1"

_Y_PARITY_FLAG = 0x80

# Projective G1 point as used by py_ecc.optimized_bn128
G1Projective = Tuple[FQ, FQ, FQ]


# =============================================================================
# COMMITMENT VALUE
# =============================================================================

@dataclass(frozen=True)
class Commitment:
    """
    Opaque 32-byte commitment.

    Textual form is ``0x`` followed by 64 lowercase hex characters.
    """
    value: bytes

    def __post_init__(self):
        result = Validators.validate_bytes(
            self.value, "commitment",
            min_length=COMMITMENT_BYTES, max_length=COMMITMENT_BYTES,
        )
        if not result.is_valid:
            raise InvalidCommitment(result.message)
        object.__setattr__(self, "value", result.sanitized_value)

    @classmethod
    def zero(cls) -> 'Commitment':
        return cls(bytes(COMMITMENT_BYTES))

    @classmethod
    def from_hex(cls, text: str) -> 'Commitment':
        result = Validators.validate_hex_bytes(text, "commitment", COMMITMENT_BYTES)
        if not result.is_valid:
            raise InvalidCommitment(result.message, commitment=text)
        return cls(result.sanitized_value)

    @classmethod
    def from_int(cls, n: int) -> 'Commitment':
        if n < 0 or n >= 1 << (8 * COMMITMENT_BYTES):
            raise InvalidCommitment("Integer does not fit in 32 bytes", commitment=n)
        return cls(n.to_bytes(COMMITMENT_BYTES, "big"))

    @classmethod
    def of(cls, value: Union['Commitment', str, bytes]) -> 'Commitment':
        """Coerce a Commitment, hex string, or raw bytes."""
        if isinstance(value, Commitment):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        raise InvalidCommitment(f"Cannot interpret {type(value).__name__} as a commitment")

    @property
    def hex(self) -> str:
        return "0x" + self.value.hex()

    @property
    def is_zero(self) -> bool:
        return CryptoUtils.secure_compare(self.value, bytes(COMMITMENT_BYTES))

    def to_int(self) -> int:
        return int.from_bytes(self.value, "big")

    def __str__(self) -> str:
        return self.hex


ZERO_COMMITMENT = Commitment.zero()


# =============================================================================
# CURVE PRIMITIVES
# =============================================================================

def g1_from_affine(x: int, y: int) -> G1Projective:
    """Build a projective point from affine coordinates, checking the curve equation."""
    if not (0 <= x < field_modulus and 0 <= y < field_modulus):
        raise ValueError("Coordinate out of range")
    point = (FQ(x), FQ(y), FQ(1))
    if not is_on_curve(point, b):
        raise ValueError("Point is not on the BN254 G1 curve")
    return point


def g1_to_affine(point: G1Projective) -> Tuple[int, int]:
    if is_inf(point):
        raise ValueError("Point at infinity has no affine form")
    x, y = normalize(point)
    return x.n, y.n


def _sqrt_fq(value: int) -> Optional[int]:
    # field_modulus % 4 == 3, so a square root is value^((p+1)/4) when it exists
    root = pow(value, (field_modulus + 1) // 4, field_modulus)
    if root * root % field_modulus != value % field_modulus:
        return None
    return root


def compress_g1(point: G1Projective) -> bytes:
    """Compress a non-infinity G1 point into 32 bytes."""
    x, y = g1_to_affine(point)
    data = bytearray(x.to_bytes(COMMITMENT_BYTES, "big"))
    if y & 1:
        data[0] |= _Y_PARITY_FLAG
    return bytes(data)


def decompress_g1(data: bytes) -> G1Projective:
    """Inverse of ``compress_g1``. Raises ValueError for non-canonical encodings."""
    if len(data) != COMMITMENT_BYTES:
        raise ValueError("Compressed G1 point must be 32 bytes")
    y_odd = bool(data[0] & _Y_PARITY_FLAG)
    x = int.from_bytes(bytes([data[0] & ~_Y_PARITY_FLAG & 0xFF]) + data[1:], "big")
    if x >= field_modulus:
        raise ValueError("x coordinate is not a canonical field element")

    y = _sqrt_fq((pow(x, 3, field_modulus) + 3) % field_modulus)
    if y is None:
        raise ValueError("x coordinate is not on the curve")
    if bool(y & 1) != y_odd:
        y = field_modulus - y
    return g1_from_affine(x, y)


def hash_to_scalar(*parts: bytes) -> int:
    """SHA-256 over length-prefixed parts, reduced into the scalar field."""
    h = hashlib.sha256()
    for part in parts:
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return int.from_bytes(h.digest(), "big") % curve_order


@lru_cache(maxsize=None)
def pedersen_h() -> G1Projective:
    """
    Second Pedersen generator, derived by try-and-increment hashing to G1.

    BN254 G1 has cofactor 1, so any curve point lies in the prime-order group.
    """
    counter = 0
    while True:
        digest = hashlib.sha256(PEDERSEN_H_SEED + counter.to_bytes(4, "big")).digest()
        x = int.from_bytes(digest, "big") % field_modulus
        y = _sqrt_fq((pow(x, 3, field_modulus) + 3) % field_modulus)
        if y is not None:
            # Canonical choice: the even root
            if y & 1:
                y = field_modulus - y
            return g1_from_affine(x, y)
        counter += 1


def pedersen_point(message: int, blinding: int) -> G1Projective:
    return add(
        multiply(G1, message % curve_order),
        multiply(pedersen_h(), blinding % curve_order),
    )


# =============================================================================
# PAYLOADS AND OPENINGS
# =============================================================================

def _coerce_json_types(obj: Any) -> Any:
    """Coerce a payload into strict JSON types; floats are rejected."""
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in credential payloads. Use strings or integers.")
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _coerce_json_types(v) for k, v in obj.items()}
    raise TypeError(f"Unsupported type in credential payload: {type(obj).__name__}")


def canonical_payload_bytes(payload: Dict[str, Any]) -> bytes:
    """Canonical JSON bytes: sorted keys, no insignificant whitespace, UTF-8."""
    clean = _coerce_json_types(payload)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def payload_message(payload: Dict[str, Any]) -> int:
    digest = hashlib.sha256(canonical_payload_bytes(payload)).digest()
    return int.from_bytes(digest, "big") % curve_order


def generate_blinding() -> int:
    """Uniform non-zero blinding scalar."""
    while True:
        r = int.from_bytes(CryptoUtils.secure_random_bytes(32), "big") % curve_order
        if r != 0:
            return r


@dataclass
class CredentialOpening:
    """
    Holder-side secret: the payload and blinding that open a commitment.

    Never handed to the core. ``commitment`` is recomputed on construction so
    an opening can never disagree with the commitment it claims to open.
    """
    payload: Dict[str, Any]
    blinding: int
    message: int = field(init=False)
    commitment: Commitment = field(init=False)

    def __post_init__(self):
        if not 0 < self.blinding < curve_order:
            raise ValueError("Blinding must be a non-zero scalar")
        self.message = payload_message(self.payload)
        self.commitment = Commitment(compress_g1(pedersen_point(self.message, self.blinding)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "blinding": format(self.blinding, "064x"),
            "commitment": self.commitment.hex,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CredentialOpening':
        opening = cls(payload=data["payload"], blinding=int(data["blinding"], 16))
        expected = data.get("commitment")
        if expected is not None and Commitment.of(expected) != opening.commitment:
            raise InvalidCommitment("Opening does not match recorded commitment", commitment=expected)
        return opening


def commit_payload(payload: Dict[str, Any], blinding: Optional[int] = None) -> CredentialOpening:
    """Commit to a credential payload with a fresh (or supplied) blinding."""
    return CredentialOpening(payload=payload, blinding=blinding if blinding is not None else generate_blinding())


__all__ = [
    "COMMITMENT_BYTES",
    "Commitment",
    "ZERO_COMMITMENT",
    "G1Projective",
    "g1_from_affine",
    "g1_to_affine",
    "compress_g1",
    "decompress_g1",
    "hash_to_scalar",
    "pedersen_h",
    "pedersen_point",
    "canonical_payload_bytes",
    "payload_message",
    "generate_blinding",
    "CredentialOpening",
    "commit_payload",
]
