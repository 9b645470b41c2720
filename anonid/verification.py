"""
Verification Orchestrator

Decides whether a requester may rely on a credential disclosure:

    1. credential exists                    ledger
    2. credential not revoked               ledger
    3. issuer trusted now                   registry (live lookup)
    4. consent granted to the requester     consent matrix
    5. public inputs consistent             shape, ledger record, freshness
    6. proof valid                          ProofVerifier

Checks run in that order and stop at the first failure, so the pairing or
curve arithmetic of step 6 only runs for requests that pass every cheap
check. ``verify`` never raises and never says which step failed; the reason
is logged at debug level only.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from anonid.commitment import Commitment
from anonid.consent import ConsentMatrix
from anonid.hardening import Clock, unix_now
from anonid.identity import Principal
from anonid.ledger import Credential, CredentialLedger
from anonid.observability import CoreLayer, get_logger, get_tracer
from anonid.registry import IssuerRegistry
from anonid.zkp import ProofVerifier, PublicInputs

log = get_logger("orchestrator", CoreLayer.VERIFICATION)


class VerificationOrchestrator:
    """Read-only composition of the three stores and a proof verifier."""

    def __init__(
        self,
        registry: IssuerRegistry,
        ledger: CredentialLedger,
        consents: ConsentMatrix,
        proof_verifier: ProofVerifier,
        clock: Clock = unix_now,
        freshness_window_seconds: int = 0,
    ):
        if freshness_window_seconds < 0:
            raise ValueError("freshness_window_seconds cannot be negative")
        self.registry = registry
        self.ledger = ledger
        self.consents = consents
        self.proof_verifier = proof_verifier
        self._clock = clock
        self.freshness_window_seconds = freshness_window_seconds

    def verify(
        self,
        requester: Union[Principal, str],
        commitment: Union[Commitment, str, bytes],
        proof: Any,
        public_inputs: Any,
    ) -> bool:
        with get_tracer().span("verify", CoreLayer.VERIFICATION) as span:
            try:
                reason = self._first_failure(requester, commitment, proof, public_inputs)
            except Exception as e:
                reason = f"error:{type(e).__name__}"
            accepted = reason is None
            span.set_attribute("accepted", accepted)
            if not accepted:
                log.debug("Verification rejected", operation="verify", reason=reason)
            return accepted

    def _first_failure(
        self,
        requester: Union[Principal, str],
        commitment: Union[Commitment, str, bytes],
        proof: Any,
        public_inputs: Any,
    ) -> Optional[str]:
        credential = self.ledger.get(commitment)
        if credential is None:
            return "credential_not_found"
        if credential.revoked:
            return "credential_revoked"
        if not self.registry.is_trusted(credential.issuer):
            return "issuer_not_trusted"
        if not self.consents.has_consent(credential.commitment, requester):
            return "consent_not_granted"

        inputs = PublicInputs.coerce(public_inputs)
        reason = self._check_public_inputs(credential, inputs)
        if reason is not None:
            return reason

        if not self.proof_verifier.check(proof, inputs, credential.commitment):
            return "proof_invalid"
        return None

    def _check_public_inputs(self, credential: Credential, inputs: PublicInputs) -> Optional[str]:
        if inputs.commitment != credential.commitment:
            return "public_inputs_commitment_mismatch"
        if not inputs.issuer.same_as(credential.issuer):
            return "public_inputs_issuer_mismatch"
        if inputs.revoked:
            return "public_inputs_revocation_flag"
        if self.freshness_window_seconds and abs(self._clock() - inputs.timestamp) > self.freshness_window_seconds:
            return "public_inputs_stale"
        return None


__all__ = ["VerificationOrchestrator"]
