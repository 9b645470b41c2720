"""
Zero-Knowledge Proof Verification

The orchestrator delegates the cryptographic half of a disclosure decision to a
``ProofVerifier``: "does ``proof`` demonstrate knowledge of a credential whose
binding equals ``commitment``, consistent with ``public_inputs``?"

Public Inputs
─────────────

    index  name               field element
    0      commitment         commitment as a big-endian integer, mod r
    1      issuerIdentity     0x-address as an integer, else SHA-256(id) mod r
    2      currentTimestamp   Unix seconds
    3      revocationFlag     0 (active) or 1 (revoked)

The order and shape are fixed; anything else is rejected.

Supported Proof Systems:
    - Groth16: pairing-based SNARK over BN254 using snarkjs key/proof JSON.
      Requires a circuit-specific trusted setup.
    - Pedersen opening: Fiat-Shamir Okamoto proof of knowledge of the
      (message, blinding) opening a Pedersen commitment, with the public
      inputs bound into the challenge. No trusted setup.

Every verifier is deterministic, side-effect free, and returns ``False``
rather than raising for malformed input.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G1,
    add,
    b2,
    curve_order,
    eq,
    is_inf,
    is_on_curve,
    multiply,
    normalize,
    pairing,
)

from anonid.commitment import (
    Commitment,
    CredentialOpening,
    G1Projective,
    compress_g1,
    decompress_g1,
    g1_from_affine,
    g1_to_affine,
    generate_blinding,
    hash_to_scalar,
    pedersen_h,
    pedersen_point,
)
from anonid.errors import AuthorizationCoreError
from anonid.hardening import Validators, unix_now
from anonid.identity import Principal
from anonid.observability import CoreLayer, get_logger
from anonid.schema import (
    GROTH16_PROOF,
    GROTH16_VERIFICATION_KEY,
    OPENING_PROOF,
    require_valid,
)

log = get_logger("zkp", CoreLayer.ZK)

G2Projective = Tuple[FQ2, FQ2, FQ2]

# Failures a verifier converts into a plain rejection
_MALFORMED = (ValueError, TypeError, KeyError, IndexError, AttributeError, AuthorizationCoreError)


# =============================================================================
# PROOF SYSTEMS
# =============================================================================

class ProofSystem(Enum):
    """
    Supported proof systems.

    Selection criteria:
        - GROTH16: ~200 byte proofs, constant-time verification, trusted setup
        - PEDERSEN_OPENING: ~100 byte proofs, no setup, proves knowledge of
          the commitment opening only (no predicates over the content)
    """
    GROTH16 = "groth16"
    PEDERSEN_OPENING = "pedersen"

    def requires_trusted_setup(self) -> bool:
        return self == ProofSystem.GROTH16


# =============================================================================
# FIELD ELEMENTS
# =============================================================================

@dataclass(frozen=True)
class FieldElement:
    """
    Element of the BN254 scalar field, held as a 64-char hex string.

    Values are always reduced modulo the scalar field order.
    """
    value: str

    FIELD_MODULUS: ClassVar[int] = curve_order

    def __post_init__(self):
        if len(self.value) != 64 or not all(c in '0123456789abcdef' for c in self.value):
            raise ValueError("Field element must be a 64-char lowercase hex string")
        if int(self.value, 16) >= self.FIELD_MODULUS:
            raise ValueError("Field element is not reduced")

    @classmethod
    def zero(cls) -> 'FieldElement':
        return cls("0" * 64)

    @classmethod
    def one(cls) -> 'FieldElement':
        return cls("0" * 63 + "1")

    @classmethod
    def from_int(cls, n: int) -> 'FieldElement':
        """Create a field element from an integer, reducing modulo FIELD_MODULUS."""
        return cls(format(n % cls.FIELD_MODULUS, '064x'))

    def to_int(self) -> int:
        return int(self.value, 16)

    def to_decimal(self) -> str:
        """Decimal string, the form snarkjs uses for public signals."""
        return str(self.to_int())


_ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')


def to_field_element(value: Any) -> FieldElement:
    """Map a public value onto the scalar field."""
    if isinstance(value, FieldElement):
        return value
    if isinstance(value, bool):
        # bool is a subclass of int
        return FieldElement.one() if value else FieldElement.zero()
    if isinstance(value, int):
        if value < 0:
            raise ValueError("Negative integers have no field encoding")
        return FieldElement.from_int(value)
    if isinstance(value, Commitment):
        return FieldElement.from_int(value.to_int())
    if isinstance(value, Principal):
        if _ADDRESS_PATTERN.match(value.id):
            return FieldElement.from_int(int(value.id, 16))
        return to_field_element(value.id)
    if isinstance(value, str):
        return FieldElement.from_int(int(hashlib.sha256(value.encode("utf-8")).hexdigest(), 16))
    if isinstance(value, bytes):
        return FieldElement.from_int(int(hashlib.sha256(value).hexdigest(), 16))
    raise ValueError(f"Cannot convert {type(value).__name__} to field element")


# =============================================================================
# PUBLIC INPUTS
# =============================================================================

PUBLIC_INPUT_NAMES = ("commitment", "issuerIdentity", "currentTimestamp", "revocationFlag")


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    if value in ("0", "1"):
        return value == "1"
    raise ValueError(f"revocationFlag must be 0 or 1, got {value!r}")


def _parse_timestamp(value: Any) -> int:
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    result = Validators.validate_timestamp(value, "currentTimestamp")
    if not result.is_valid:
        raise ValueError(result.message)
    return result.sanitized_value


@dataclass(frozen=True)
class PublicInputs:
    """
    Public values a proof is checked against.

    Wire form (``to_list``) is ``[commitment, issuerIdentity,
    currentTimestamp, revocationFlag]`` as strings.
    """
    commitment: Commitment
    issuer: Principal
    timestamp: int
    revoked: bool = False

    @classmethod
    def for_credential(
        cls,
        commitment: Union[Commitment, str],
        issuer: Union[Principal, str],
        timestamp: Optional[int] = None,
        revoked: bool = False,
    ) -> 'PublicInputs':
        """Build the public inputs a holder proves against for a credential."""
        return cls(
            commitment=Commitment.of(commitment),
            issuer=Principal.of(issuer),
            timestamp=unix_now() if timestamp is None else _parse_timestamp(timestamp),
            revoked=revoked,
        )

    @classmethod
    def from_list(cls, values: Sequence[Any]) -> 'PublicInputs':
        if isinstance(values, (str, bytes)) or len(values) != len(PUBLIC_INPUT_NAMES):
            raise ValueError(
                f"Public inputs must be {len(PUBLIC_INPUT_NAMES)} values "
                f"{list(PUBLIC_INPUT_NAMES)}"
            )
        commitment, issuer, timestamp, flag = values
        return cls(
            commitment=Commitment.of(commitment),
            issuer=Principal.of(issuer),
            timestamp=_parse_timestamp(timestamp),
            revoked=_parse_flag(flag),
        )

    @classmethod
    def coerce(cls, value: Union['PublicInputs', Sequence[Any]]) -> 'PublicInputs':
        if isinstance(value, PublicInputs):
            return value
        return cls.from_list(value)

    def to_list(self) -> List[str]:
        return [self.commitment.hex, self.issuer.id, str(self.timestamp), "1" if self.revoked else "0"]

    def to_field_elements(self) -> List[FieldElement]:
        return [
            to_field_element(self.commitment),
            to_field_element(self.issuer),
            to_field_element(self.timestamp),
            to_field_element(self.revoked),
        ]

    def signals(self) -> List[int]:
        return [fe.to_int() for fe in self.to_field_elements()]

    def canonical_bytes(self) -> bytes:
        return json.dumps(self.to_list(), separators=(",", ":")).encode("utf-8")


# =============================================================================
# VERIFIER CONTRACT
# =============================================================================

class ProofVerifier(Protocol):
    """
    Pluggable proof verification.

    Implementations must be deterministic and side-effect free, and must
    return False (never raise) for malformed or unverifiable input.
    """

    proof_system: ProofSystem

    def check(self, proof: Any, public_inputs: PublicInputs, commitment: Commitment) -> bool:
        ...


# =============================================================================
# PEDERSEN OPENING PROOFS
# =============================================================================

OPENING_CHALLENGE_DOMAIN = b"anonid/pedersen-opening/v1"


def _opening_challenge(commitment: Commitment, t: bytes, public_inputs: PublicInputs) -> int:
    return hash_to_scalar(
        OPENING_CHALLENGE_DOMAIN,
        compress_g1(G1),
        compress_g1(pedersen_h()),
        commitment.value,
        t,
        public_inputs.canonical_bytes(),
    )


@dataclass(frozen=True)
class OpeningProof:
    """Non-interactive proof of knowledge of a Pedersen commitment opening."""
    t: bytes
    z1: int
    z2: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": "pedersen-opening",
            "t": "0x" + self.t.hex(),
            "z1": "0x" + format(self.z1, "064x"),
            "z2": "0x" + format(self.z2, "064x"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OpeningProof':
        require_valid(data, OPENING_PROOF)
        z1 = int(data["z1"], 16)
        z2 = int(data["z2"], 16)
        if z1 >= curve_order or z2 >= curve_order:
            raise ValueError("Response scalars must be reduced")
        return cls(t=bytes.fromhex(data["t"][2:]), z1=z1, z2=z2)

    @property
    def digest(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


class PedersenOpeningProver:
    """
    Holder-side prover.

    Proves knowledge of (m, r) with C = m·G + r·H:

        T  = k1·G + k2·H            fresh random k1, k2
        e  = H(domain, G, H, C, T, public inputs)
        z1 = k1 + e·m,  z2 = k2 + e·r   (mod r)
    """

    def prove(self, opening: CredentialOpening, public_inputs: PublicInputs) -> OpeningProof:
        if public_inputs.commitment != opening.commitment:
            raise ValueError("Public inputs name a different commitment than the opening")

        k1, k2 = generate_blinding(), generate_blinding()
        t = compress_g1(pedersen_point(k1, k2))
        e = _opening_challenge(opening.commitment, t, public_inputs)
        return OpeningProof(
            t=t,
            z1=(k1 + e * opening.message) % curve_order,
            z2=(k2 + e * opening.blinding) % curve_order,
        )


class PedersenOpeningVerifier:
    """Verifies ``z1·G + z2·H == T + e·C``."""

    proof_system = ProofSystem.PEDERSEN_OPENING

    def check(self, proof: Any, public_inputs: Any, commitment: Commitment) -> bool:
        try:
            return self._check(proof, PublicInputs.coerce(public_inputs), Commitment.of(commitment))
        except _MALFORMED as e:
            log.debug("Opening proof rejected as malformed", reason=type(e).__name__)
            return False

    def _check(self, proof: Any, public_inputs: PublicInputs, commitment: Commitment) -> bool:
        if public_inputs.commitment != commitment:
            return False
        if not isinstance(proof, OpeningProof):
            proof = OpeningProof.from_dict(proof)

        c_point = decompress_g1(commitment.value)
        t_point = decompress_g1(proof.t)
        e = _opening_challenge(commitment, proof.t, public_inputs)

        lhs = pedersen_point(proof.z1, proof.z2)
        rhs = add(t_point, multiply(c_point, e))
        return eq(lhs, rhs)


# =============================================================================
# GROTH16
# =============================================================================

def _parse_g1(coords: Sequence[str]) -> G1Projective:
    x, y, z = (int(c) for c in coords)
    if z == 0:
        return (FQ(1), FQ(1), FQ(0))
    if z != 1:
        raise ValueError("G1 point must be affine (z = 1)")
    return g1_from_affine(x, y)


def _format_g1(point: G1Projective) -> List[str]:
    if is_inf(point):
        return ["0", "1", "0"]
    x, y = g1_to_affine(point)
    return [str(x), str(y), "1"]


def _parse_g2(coords: Sequence[Sequence[str]]) -> G2Projective:
    (x0, x1), (y0, y1), (z0, z1) = ([int(v) for v in pair] for pair in coords)
    if (z0, z1) == (0, 0):
        return (FQ2.one(), FQ2.one(), FQ2.zero())
    if (z0, z1) != (1, 0):
        raise ValueError("G2 point must be affine (z = 1)")
    point = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not is_on_curve(point, b2):
        raise ValueError("Point is not on the BN254 G2 twist")
    # The twist has a large cofactor; reject points outside the r-torsion
    if not is_inf(multiply(point, curve_order)):
        raise ValueError("G2 point is not in the prime-order subgroup")
    return point


def _coeff(element: FQ2, index: int) -> int:
    c = element.coeffs[index]
    return c.n if hasattr(c, "n") else int(c)


def _format_g2(point: G2Projective) -> List[List[str]]:
    if is_inf(point):
        return [["1", "0"], ["1", "0"], ["0", "0"]]
    x, y = normalize(point)
    return [
        [str(_coeff(x, 0)), str(_coeff(x, 1))],
        [str(_coeff(y, 0)), str(_coeff(y, 1))],
        ["1", "0"],
    ]


@dataclass(frozen=True)
class Groth16Proof:
    """Groth16 proof (A ∈ G1, B ∈ G2, C ∈ G1)."""
    a: G1Projective
    b: G2Projective
    c: G1Projective

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Groth16Proof':
        """Parse a snarkjs ``proof.json`` document."""
        require_valid(data, GROTH16_PROOF)
        return cls(a=_parse_g1(data["pi_a"]), b=_parse_g2(data["pi_b"]), c=_parse_g1(data["pi_c"]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pi_a": _format_g1(self.a),
            "pi_b": _format_g2(self.b),
            "pi_c": _format_g1(self.c),
            "protocol": "groth16",
            "curve": "bn128",
        }


@dataclass(frozen=True)
class Groth16VerificationKey:
    """
    Groth16 verification key.

    ``ic`` holds one G1 point per public input plus the constant term, so a
    key for this core's public inputs has five entries.
    """
    alpha1: G1Projective
    beta2: G2Projective
    gamma2: G2Projective
    delta2: G2Projective
    ic: Tuple[G1Projective, ...]

    @property
    def n_public(self) -> int:
        return len(self.ic) - 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Groth16VerificationKey':
        """Parse a snarkjs ``verification_key.json`` document."""
        require_valid(data, GROTH16_VERIFICATION_KEY)
        if data["nPublic"] != len(data["IC"]) - 1:
            raise ValueError("nPublic does not match the number of IC points")
        return cls(
            alpha1=_parse_g1(data["vk_alpha_1"]),
            beta2=_parse_g2(data["vk_beta_2"]),
            gamma2=_parse_g2(data["vk_gamma_2"]),
            delta2=_parse_g2(data["vk_delta_2"]),
            ic=tuple(_parse_g1(p) for p in data["IC"]),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'Groth16VerificationKey':
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": self.n_public,
            "vk_alpha_1": _format_g1(self.alpha1),
            "vk_beta_2": _format_g2(self.beta2),
            "vk_gamma_2": _format_g2(self.gamma2),
            "vk_delta_2": _format_g2(self.delta2),
            "IC": [_format_g1(p) for p in self.ic],
        }

    @property
    def digest(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


class Groth16Verifier:
    """
    Groth16 verification over BN254:

        e(A, B) == e(α, β) · e(vk_x, γ) · e(C, δ)
        vk_x     = IC[0] + Σ signal_i · IC[i+1]
    """

    proof_system = ProofSystem.GROTH16

    def __init__(self, verification_key: Groth16VerificationKey):
        if verification_key.n_public != len(PUBLIC_INPUT_NAMES):
            raise ValueError(
                f"Verification key expects {verification_key.n_public} public inputs, "
                f"core supplies {len(PUBLIC_INPUT_NAMES)}"
            )
        self.verification_key = verification_key
        self._alpha_beta_cache: Optional[FQ12] = None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'Groth16Verifier':
        return cls(Groth16VerificationKey.load(path))

    @property
    def _alpha_beta(self) -> FQ12:
        # e(α, β) depends only on the key
        if self._alpha_beta_cache is None:
            vk = self.verification_key
            self._alpha_beta_cache = pairing(vk.beta2, vk.alpha1)
        return self._alpha_beta_cache

    def check(self, proof: Any, public_inputs: Any, commitment: Commitment) -> bool:
        try:
            public_inputs = PublicInputs.coerce(public_inputs)
            if public_inputs.commitment != Commitment.of(commitment):
                return False
            if not isinstance(proof, Groth16Proof):
                proof = Groth16Proof.from_dict(proof)
            return self.verify_signals(proof, public_inputs.signals())
        except _MALFORMED as e:
            log.debug("Groth16 proof rejected as malformed", reason=type(e).__name__)
            return False

    def verify_signals(self, proof: Groth16Proof, signals: Sequence[int]) -> bool:
        vk = self.verification_key
        if len(signals) != vk.n_public:
            return False
        if any(not 0 <= s < curve_order for s in signals):
            return False
        if is_inf(proof.a) or is_inf(proof.c) or is_inf(proof.b):
            return False

        vk_x = vk.ic[0]
        for signal, point in zip(signals, vk.ic[1:]):
            vk_x = add(vk_x, multiply(point, signal))

        lhs = pairing(proof.b, proof.a)
        rhs = self._alpha_beta * pairing(vk.gamma2, vk_x) * pairing(vk.delta2, proof.c)
        return lhs == rhs


__all__ = [
    "ProofSystem",
    "FieldElement",
    "to_field_element",
    "PUBLIC_INPUT_NAMES",
    "PublicInputs",
    "ProofVerifier",
    "OpeningProof",
    "PedersenOpeningProver",
    "PedersenOpeningVerifier",
    "Groth16Proof",
    "Groth16VerificationKey",
    "Groth16Verifier",
]
