"""
Authorization Core

Composition root and the only surface outside collaborators call.

    ┌──────────────────────────────────────────────────────────────┐
    │                      AuthorizationCore                        │
    │                                                               │
    │   add_issuer / remove_issuer / is_trusted ──▶ IssuerRegistry  │
    │   issue / revoke / get_credential ─────────▶ CredentialLedger │
    │   grant_consent / revoke_consent /                            │
    │   has_consent ─────────────────────────────▶ ConsentMatrix    │
    │   verify ──────────────────────────▶ VerificationOrchestrator │
    │                                                               │
    │   EventStore (append-only) ── EventBus (subscribers)          │
    │   AuditLogger (hash-chained record of every mutation attempt) │
    └──────────────────────────────────────────────────────────────┘

Every mutation takes the already-authenticated caller as its first argument.
The core authorizes; it never authenticates.

Usage:
    core = AuthorizationCore(admin)
    core.add_issuer(admin, issuer)
    core.issue(issuer, opening.commitment)
    core.grant_consent(holder, opening.commitment, verifier)
    core.verify(verifier, opening.commitment, proof, inputs)

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar, Union

from anonid.commitment import Commitment
from anonid.config import ConfigError, ConfigManager, get_config_manager
from anonid.consent import Consent, ConsentMatrix
from anonid.errors import AuthorizationCoreError, AuthorizationError
from anonid.events import EventBus, EventStore, JsonlEventStore
from anonid.hardening import Clock, KeyedLockManager, unix_now
from anonid.identity import Principal
from anonid.ledger import Credential, CredentialLedger
from anonid.observability import AuditLogger, CoreLayer, get_logger, timed_operation
from anonid.registry import IssuerRegistry, TrustedIssuer
from anonid.verification import VerificationOrchestrator
from anonid.zkp import Groth16Verifier, PedersenOpeningVerifier, ProofSystem, ProofVerifier

log = get_logger("core", CoreLayer.CORE)

T = TypeVar("T")
PrincipalLike = Union[Principal, str]
CommitmentLike = Union[Commitment, str, bytes]


def build_proof_verifier(system: Union[ProofSystem, str], verification_key_path: str = "") -> ProofVerifier:
    system = ProofSystem(system)
    if system is ProofSystem.GROTH16:
        if not verification_key_path:
            raise ConfigError("A verification key is required for groth16")
        return Groth16Verifier.from_file(verification_key_path)
    return PedersenOpeningVerifier()


def proof_verifier_from_config(manager: ConfigManager) -> ProofVerifier:
    """Instantiate the configured proof verifier."""
    return build_proof_verifier(
        manager.get("verification.proof_system"),
        manager.get("verification.verification_key_path"),
    )


class AuthorizationCore:
    """
    Issuer trust, credential lifecycle, consent, and verification behind one
    facade sharing a single event log.
    """

    def __init__(
        self,
        administrator: PrincipalLike,
        store: Optional[EventStore] = None,
        bus: Optional[EventBus] = None,
        proof_verifier: Optional[ProofVerifier] = None,
        clock: Clock = unix_now,
        freshness_window_seconds: int = 0,
        audit_max_records: int = 10000,
    ):
        self.store = store if store is not None else EventStore()
        self.bus = bus if bus is not None else EventBus()

        self.registry = IssuerRegistry(
            administrator, self.store, self.bus, KeyedLockManager("issuer"), clock
        )
        self.ledger = CredentialLedger(
            self.registry, self.store, self.bus, KeyedLockManager("credential"), clock
        )
        self.consents = ConsentMatrix(self.ledger, self.store, self.bus, clock)
        self.orchestrator = VerificationOrchestrator(
            self.registry,
            self.ledger,
            self.consents,
            proof_verifier if proof_verifier is not None else PedersenOpeningVerifier(),
            clock=clock,
            freshness_window_seconds=freshness_window_seconds,
        )
        self.audit = AuditLogger(get_logger("audit", CoreLayer.CORE), max_records=audit_max_records)

        if self.store.total_events:
            self.replay()

    @classmethod
    def from_config(
        cls,
        manager: Optional[ConfigManager] = None,
        bus: Optional[EventBus] = None,
        clock: Clock = unix_now,
    ) -> "AuthorizationCore":
        """Build a core from configuration, opening the event log if one is set."""
        manager = manager or get_config_manager()
        errors = manager.validate()
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))

        administrator = manager.get("core.administrator")
        if not administrator:
            raise ConfigError("core.administrator must be set")

        path = manager.get("core.event_log_path")
        store = JsonlEventStore(path, fsync=manager.get("core.fsync")) if path else EventStore()

        return cls(
            administrator,
            store=store,
            bus=bus,
            proof_verifier=proof_verifier_from_config(manager),
            clock=clock,
            freshness_window_seconds=manager.get("verification.freshness_window_seconds"),
            audit_max_records=manager.get("observability.audit_max_records"),
        )

    @property
    def administrator(self) -> Principal:
        return self.registry.administrator

    def replay(self) -> int:
        """Rebuild every component from the event log. Returns events applied."""
        for component in (self.registry, self.ledger, self.consents):
            component.rebuild(self.store)
        log.info("State rebuilt from event log", operation="replay", events=self.store.total_events)
        return self.store.total_events

    def _audited(
        self,
        caller: Any,
        action: str,
        resource_type: str,
        resource_id: Any,
        operation: Callable[[], T],
    ) -> T:
        actor, resource = str(caller), str(resource_id)
        try:
            result = operation()
        except AuthorizationError as e:
            self.audit.log(actor, action, resource_type, resource, "denied", error_code=e.code)
            raise
        except AuthorizationCoreError as e:
            self.audit.log(actor, action, resource_type, resource, "failure", error_code=e.code)
            raise
        self.audit.log(actor, action, resource_type, resource, "success")
        return result

    # ─── Issuer registry ────────────────────────────────────────────────

    @timed_operation(log, "add_issuer")
    def add_issuer(self, caller: PrincipalLike, issuer: PrincipalLike) -> TrustedIssuer:
        return self._audited(
            caller, "add_issuer", "issuer", issuer,
            lambda: self.registry.add_issuer(caller, issuer),
        )

    @timed_operation(log, "remove_issuer")
    def remove_issuer(self, caller: PrincipalLike, issuer: PrincipalLike) -> TrustedIssuer:
        return self._audited(
            caller, "remove_issuer", "issuer", issuer,
            lambda: self.registry.remove_issuer(caller, issuer),
        )

    def is_trusted(self, issuer: PrincipalLike) -> bool:
        return self.registry.is_trusted(issuer)

    # ─── Credential ledger ──────────────────────────────────────────────

    @timed_operation(log, "issue")
    def issue(self, caller: PrincipalLike, commitment: CommitmentLike) -> Credential:
        return self._audited(
            caller, "issue", "credential", _resource(commitment),
            lambda: self.ledger.issue(caller, commitment),
        )

    @timed_operation(log, "revoke")
    def revoke(self, caller: PrincipalLike, commitment: CommitmentLike) -> Credential:
        return self._audited(
            caller, "revoke", "credential", _resource(commitment),
            lambda: self.ledger.revoke(caller, commitment),
        )

    def get_credential(self, commitment: CommitmentLike) -> Optional[Credential]:
        return self.ledger.get(commitment)

    # ─── Consent matrix ─────────────────────────────────────────────────

    @timed_operation(log, "grant_consent")
    def grant_consent(
        self,
        caller: PrincipalLike,
        commitment: CommitmentLike,
        verifier: PrincipalLike,
    ) -> Consent:
        return self._audited(
            caller, "grant_consent", "consent", f"{_resource(commitment)}:{verifier}",
            lambda: self.consents.grant(caller, commitment, verifier),
        )

    @timed_operation(log, "revoke_consent")
    def revoke_consent(
        self,
        caller: PrincipalLike,
        commitment: CommitmentLike,
        verifier: PrincipalLike,
    ) -> None:
        return self._audited(
            caller, "revoke_consent", "consent", f"{_resource(commitment)}:{verifier}",
            lambda: self.consents.revoke(caller, commitment, verifier),
        )

    def has_consent(self, commitment: CommitmentLike, verifier: PrincipalLike) -> bool:
        return self.consents.has_consent(commitment, verifier)

    # ─── Verification ───────────────────────────────────────────────────

    def verify(
        self,
        caller: PrincipalLike,
        commitment: CommitmentLike,
        proof: Any,
        public_inputs: Any,
    ) -> bool:
        """True only if every check passes. Never raises."""
        return self.orchestrator.verify(caller, commitment, proof, public_inputs)


def _resource(commitment: Any) -> str:
    if isinstance(commitment, Commitment):
        return commitment.hex
    if isinstance(commitment, (bytes, bytearray)):
        return "0x" + bytes(commitment).hex()
    return str(commitment)


__all__ = [
    "AuthorizationCore",
    "build_proof_verifier",
    "proof_verifier_from_config",
]
