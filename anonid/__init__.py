"""
anonid — Anonymous Credential Authorization Core

Decides who may issue credentials, which credentials exist and in what state,
who has consented to disclose which credential to whom, and whether a
disclosure request is backed by a valid zero-knowledge proof plus that
consent.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                     CREDENTIAL AUTHORIZATION CORE                        │
    │                                                                          │
    │  SURFACE                                                                 │
    │    core.py          AuthorizationCore facade, audit trail, replay        │
    │    cli.py           keygen / commit / prove / check-proof / config / log │
    │                                                                          │
    │  DECISION                                                                │
    │    verification.py  Ordered, short-circuiting, never-raising verify      │
    │    zkp.py           ProofVerifier contract, Groth16, Pedersen opening    │
    │                                                                          │
    │  STATE                                                                   │
    │    registry.py      Administrator-controlled trusted issuers             │
    │    ledger.py        Commitment -> issuer, issued_at, revocation latch    │
    │    consent.py       (commitment, verifier) consent matrix                │
    │    events.py        Domain events, append-only store, bus, replay        │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    commitment.py    32-byte commitments, Pedersen on BN254 G1            │
    │    identity.py      Principals and did:key (Ed25519)                     │
    │    errors.py        Error taxonomy with stable codes                     │
    │    hardening.py     Validators, keyed locks, invariant checks, clock     │
    │    schema.py        JSON Schema validation of proofs, keys, event log    │
    │    config.py        YAML + ANONID_* environment configuration            │
    │    observability.py Structured logging, tracing, audit chain            │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Lifecycle
─────────

    Administrator ──add_issuer──▶ Issuer ──issue(C)──▶ Credential(C)
    Holder ──grant_consent(C, V)──▶ Consent(C, V)
    Verifier V ──verify(C, proof, inputs)──▶ True / False

    Credential:  Active ──revoke──▶ Revoked          (terminal)
    Consent:     Absent ──grant──▶ Granted ──revoke──▶ Absent

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"
__author__ = "Momentum"


def __getattr__(name):
    """Lazy import anonid modules on first access."""

    # Facade
    if name in ("AuthorizationCore", "build_proof_verifier", "proof_verifier_from_config"):
        from anonid import core
        return getattr(core, name)

    # Components
    if name in ("IssuerRegistry", "TrustedIssuer", "IssuerStatus"):
        from anonid import registry
        return getattr(registry, name)

    if name in ("CredentialLedger", "Credential", "CredentialState"):
        from anonid import ledger
        return getattr(ledger, name)

    if name in ("ConsentMatrix", "Consent", "ConsentState"):
        from anonid import consent
        return getattr(consent, name)

    if name in ("VerificationOrchestrator",):
        from anonid import verification
        return getattr(verification, name)

    # Proofs and commitments
    if name in ("ProofSystem", "ProofVerifier", "PublicInputs", "FieldElement",
                "OpeningProof", "PedersenOpeningProver", "PedersenOpeningVerifier",
                "Groth16Proof", "Groth16VerificationKey", "Groth16Verifier"):
        from anonid import zkp
        return getattr(zkp, name)

    if name in ("Commitment", "ZERO_COMMITMENT", "CredentialOpening", "commit_payload"):
        from anonid import commitment
        return getattr(commitment, name)

    if name in ("Principal", "SENTINEL", "generate_principal"):
        from anonid import identity
        return getattr(identity, name)

    # Events
    if name in ("EventBus", "EventStore", "JsonlEventStore", "EventRecord",
                "IssuerAdded", "IssuerRemoved", "CredentialIssued",
                "ConsentGiven", "ConsentRevoked"):
        from anonid import events
        return getattr(events, name)

    # Errors
    if name in ("AuthorizationCoreError", "ErrorCategory"):
        from anonid import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'anonid' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Facade
    "AuthorizationCore",
    "build_proof_verifier",
    "proof_verifier_from_config",
    # Components
    "IssuerRegistry",
    "TrustedIssuer",
    "IssuerStatus",
    "CredentialLedger",
    "Credential",
    "CredentialState",
    "ConsentMatrix",
    "Consent",
    "ConsentState",
    "VerificationOrchestrator",
    # Proofs
    "ProofSystem",
    "ProofVerifier",
    "PublicInputs",
    "FieldElement",
    "OpeningProof",
    "PedersenOpeningProver",
    "PedersenOpeningVerifier",
    "Groth16Proof",
    "Groth16VerificationKey",
    "Groth16Verifier",
    # Commitments and identity
    "Commitment",
    "ZERO_COMMITMENT",
    "CredentialOpening",
    "commit_payload",
    "Principal",
    "SENTINEL",
    "generate_principal",
    # Events
    "EventBus",
    "EventStore",
    "JsonlEventStore",
    "EventRecord",
    "IssuerAdded",
    "IssuerRemoved",
    "CredentialIssued",
    "ConsentGiven",
    "ConsentRevoked",
    # Errors
    "AuthorizationCoreError",
    "ErrorCategory",
]
