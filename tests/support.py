"""Shared test principals, a settable clock, and a Groth16 setup with a known trapdoor.

Knowing alpha, beta, gamma, delta and the IC scalars lets the tests produce
proofs that satisfy the verification equation for any public signals:

    a*b = alpha*beta + s*gamma + c*delta,   s = u0 + sum(x_i * u_i)

so choosing a, b at random and solving for c yields a valid (A, B, C).
"""

import json
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from py_ecc.optimized_bn128 import G1, G2, curve_order, multiply

from anonid.identity import Principal
from anonid.zkp import Groth16Proof, Groth16VerificationKey


ADMIN = Principal("did:key:z6MkAdministrator")
ISSUER = Principal("did:key:z6MkIssuerOne")
OTHER_ISSUER = Principal("did:key:z6MkIssuerTwo")
HOLDER = Principal("did:key:z6MkHolder")
VERIFIER = Principal("did:key:z6MkVerifierOne")
OTHER_VERIFIER = Principal("did:key:z6MkVerifierTwo")

NOW = 1_700_000_000


class FakeClock:
    """Settable clock returning whole seconds."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@dataclass
class TrapdoorSetup:
    alpha: int
    beta: int
    gamma: int
    delta: int
    ic_scalars: List[int]
    rng: random.Random

    @classmethod
    def generate(cls, n_public: int = 4, seed: int = 1) -> "TrapdoorSetup":
        rng = random.Random(seed)

        def scalar() -> int:
            return rng.randrange(1, curve_order)

        return cls(
            alpha=scalar(),
            beta=scalar(),
            gamma=scalar(),
            delta=scalar(),
            ic_scalars=[scalar() for _ in range(n_public + 1)],
            rng=rng,
        )

    @property
    def verification_key(self) -> Groth16VerificationKey:
        return Groth16VerificationKey(
            alpha1=multiply(G1, self.alpha),
            beta2=multiply(G2, self.beta),
            gamma2=multiply(G2, self.gamma),
            delta2=multiply(G2, self.delta),
            ic=tuple(multiply(G1, u) for u in self.ic_scalars),
        )

    def verification_key_dict(self) -> Dict[str, Any]:
        return self.verification_key.to_dict()

    def write_verification_key(self, path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.verification_key_dict(), f, indent=2)

    def prove(self, signals: Sequence[int]) -> Groth16Proof:
        s = (self.ic_scalars[0] + sum(x * u for x, u in zip(signals, self.ic_scalars[1:]))) % curve_order
        a = self.rng.randrange(1, curve_order)
        b = self.rng.randrange(1, curve_order)
        c = (a * b - self.alpha * self.beta - s * self.gamma) * pow(self.delta, -1, curve_order) % curve_order
        return Groth16Proof(a=multiply(G1, a), b=multiply(G2, b), c=multiply(G1, c))
