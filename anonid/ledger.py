"""
Credential Ledger

Binds each commitment to the issuer that created it and the time it was
issued. Revocation is a one-way latch and records are never deleted.

    issue   trusted issuer only, commitment never reused
    revoke  original issuer only, even after that issuer lost trust

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from anonid.commitment import Commitment
from anonid.errors import (
    AlreadyRevoked,
    CredentialAlreadyExists,
    CredentialNotFound,
    InvalidCommitment,
    NotOriginalIssuer,
    NotTrustedIssuer,
)
from anonid.events import (
    CredentialIssued,
    CredentialRevoked as CredentialRevokedEvent,
    Event,
    EventBus,
    EventSourcedComponent,
    EventStore,
)
from anonid.hardening import Clock, InvariantChecker, InvariantViolation, KeyedLockManager, unix_now
from anonid.identity import Principal
from anonid.observability import CoreLayer, get_logger
from anonid.registry import IssuerRegistry, issuer_lock_key

log = get_logger("ledger", CoreLayer.LEDGER)

CommitmentLike = Union[Commitment, str, bytes]


class CredentialState(Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    REVOKED = "revoked"


CREDENTIAL_TRANSITIONS = {
    CredentialState.ABSENT: {CredentialState.ACTIVE},
    CredentialState.ACTIVE: {CredentialState.REVOKED},
    CredentialState.REVOKED: set(),
}


@dataclass(frozen=True)
class Credential:
    """Ledger record. ``issuer`` and ``issued_at`` never change."""
    commitment: Commitment
    issuer: Principal
    issued_at: int
    revoked: bool = False
    revoked_at: Optional[int] = None

    @property
    def state(self) -> CredentialState:
        return CredentialState.REVOKED if self.revoked else CredentialState.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment.hex,
            "issuer": self.issuer.id,
            "issued_at": self.issued_at,
            "revoked": self.revoked,
            "revoked_at": self.revoked_at,
        }


def credential_lock_key(commitment: Commitment) -> str:
    """Lock key shared by every mutation that touches one commitment."""
    return f"credential:{commitment.hex}"


def parse_commitment(value: CommitmentLike) -> Commitment:
    """Coerce caller input, re-raising any shape problem as InvalidCommitment."""
    try:
        return Commitment.of(value)
    except InvalidCommitment:
        raise
    except (TypeError, ValueError) as e:
        raise InvalidCommitment(str(e), commitment=value) from e


class CredentialLedger(EventSourcedComponent):
    """
    Commitment-keyed credential records.

    Trust is checked against the registry at issuance time only; whether an
    existing credential still verifies is decided live by the orchestrator.
    """

    def __init__(
        self,
        registry: IssuerRegistry,
        store: EventStore,
        bus: EventBus,
        locks: Optional[KeyedLockManager] = None,
        clock: Clock = unix_now,
    ):
        super().__init__(store, bus)
        self.registry = registry
        self.locks = locks if locks is not None else KeyedLockManager("credential")
        self._clock = clock
        self._credentials: Dict[str, Credential] = {}

    def issue(self, issuer: Union[Principal, str], commitment: CommitmentLike) -> Credential:
        issuer = Principal.of(issuer)

        # Holding the issuer's registry lock orders this issuance against a
        # concurrent removal of the same issuer.
        with self.registry.locks.hold(issuer_lock_key(issuer)):
            if not self.registry.is_trusted(issuer):
                log.warning(
                    "Issuance by untrusted principal rejected",
                    operation="issue",
                    error_code=NotTrustedIssuer.__name__,
                    issuer=issuer.id,
                )
                raise NotTrustedIssuer(f"{issuer.id or '<sentinel>'} is not a trusted issuer", issuer=issuer.id)

            commitment = parse_commitment(commitment)
            if commitment.is_zero:
                raise InvalidCommitment("The zero commitment is reserved", commitment=commitment.hex)

            with self.locks.hold(credential_lock_key(commitment)):
                existing = self._credentials.get(commitment.hex)
                if existing is not None:
                    raise CredentialAlreadyExists(
                        f"Commitment {commitment.hex} is already bound",
                        commitment=commitment.hex,
                        issuer=existing.issuer.id,
                    )
                event = CredentialIssued(
                    commitment=commitment.hex,
                    issuer=issuer.id,
                    actor=issuer.id,
                    occurred_at=self._clock(),
                )
                self._commit(event)
                credential = self._credentials[commitment.hex]

        log.info("Credential issued", operation="issue", commitment=commitment.hex, issuer=issuer.id)
        self._publish(event)
        return credential

    def revoke(self, caller: Union[Principal, str], commitment: CommitmentLike) -> Credential:
        caller = Principal.of(caller)
        commitment = parse_commitment(commitment)

        with self.locks.hold(credential_lock_key(commitment)):
            credential = self._credentials.get(commitment.hex)
            if credential is None:
                raise CredentialNotFound(f"No credential for {commitment.hex}", commitment=commitment.hex)
            if not caller.same_as(credential.issuer):
                raise NotOriginalIssuer(
                    "Only the original issuer may revoke",
                    commitment=commitment.hex,
                    caller=caller.id,
                )
            if credential.revoked:
                raise AlreadyRevoked(f"{commitment.hex} is already revoked", commitment=commitment.hex)
            event = CredentialRevokedEvent(
                commitment=commitment.hex,
                issuer=credential.issuer.id,
                actor=caller.id,
                occurred_at=self._clock(),
            )
            self._commit(event)
            credential = self._credentials[commitment.hex]

        log.info("Credential revoked", operation="revoke", commitment=commitment.hex)
        self._publish(event)
        return credential

    def get(self, commitment: CommitmentLike) -> Optional[Credential]:
        """Lookup; None for absent or malformed commitments."""
        try:
            key = Commitment.of(commitment).hex
        except (InvalidCommitment, TypeError, ValueError):
            return None
        return self._credentials.get(key)

    def credentials_by_issuer(self, issuer: Union[Principal, str]) -> List[Credential]:
        issuer_id = issuer.id if isinstance(issuer, Principal) else issuer
        return sorted(
            (c for c in self._credentials.values() if c.issuer.id == issuer_id),
            key=lambda c: (c.issued_at, c.commitment.hex),
        )

    def __len__(self) -> int:
        return len(self._credentials)

    def _state(self, key: str) -> CredentialState:
        credential = self._credentials.get(key)
        return credential.state if credential is not None else CredentialState.ABSENT

    def _reset(self) -> None:
        self._credentials.clear()

    def handle_event(self, event: Event) -> None:
        if isinstance(event, CredentialIssued):
            InvariantChecker.check_state_transition(
                self._state(event.commitment), CredentialState.ACTIVE, CREDENTIAL_TRANSITIONS
            )
            self._credentials[event.commitment] = Credential(
                commitment=Commitment.from_hex(event.commitment),
                issuer=Principal(event.issuer),
                issued_at=event.occurred_at,
            )
        elif isinstance(event, CredentialRevokedEvent):
            InvariantChecker.check_state_transition(
                self._state(event.commitment), CredentialState.REVOKED, CREDENTIAL_TRANSITIONS
            )
            current = self._credentials[event.commitment]
            if current.issuer.id != event.issuer:
                raise InvariantViolation(
                    f"Revocation of {event.commitment} names issuer {event.issuer}, "
                    f"recorded issuer is {current.issuer.id}"
                )
            self._credentials[event.commitment] = replace(
                current, revoked=True, revoked_at=event.occurred_at
            )


__all__ = [
    "CredentialState",
    "Credential",
    "CredentialLedger",
    "credential_lock_key",
    "parse_commitment",
]
