"""
Consent Matrix

Per (credential, verifier) disclosure authorization.

    Absent ──grant──▶ Granted ──revoke──▶ Absent

Grant requires a live, unrevoked credential. Revoke is never gated on the
credential's state: a holder can always withdraw consent, including for a
credential the issuer has since revoked.

The core does not authenticate holders. Whoever invokes grant or revoke for a
pair is recorded as the actor; authenticating that caller is the job of the
layer in front of the core.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from anonid.commitment import Commitment
from anonid.errors import (
    ConsentAlreadyGranted,
    ConsentNotGranted,
    CredentialNotFound,
    CredentialRevoked,
    InvalidCommitment,
    InvalidVerifier,
)
from anonid.events import (
    ConsentGiven,
    ConsentRevoked,
    Event,
    EventBus,
    EventSourcedComponent,
    EventStore,
)
from anonid.hardening import Clock, InvariantChecker, unix_now
from anonid.identity import Principal
from anonid.ledger import CommitmentLike, CredentialLedger, credential_lock_key, parse_commitment
from anonid.observability import CoreLayer, get_logger

log = get_logger("consent", CoreLayer.CONSENT)


class ConsentState(Enum):
    ABSENT = "absent"
    GRANTED = "granted"


CONSENT_TRANSITIONS = {
    ConsentState.ABSENT: {ConsentState.GRANTED},
    ConsentState.GRANTED: {ConsentState.ABSENT},
}


@dataclass(frozen=True)
class Consent:
    commitment: Commitment
    verifier: Principal
    granted_at: int
    granted_by: Principal
    granted: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment.hex,
            "verifier": self.verifier.id,
            "granted": self.granted,
            "granted_at": self.granted_at,
            "granted_by": self.granted_by.id,
        }


class ConsentMatrix(EventSourcedComponent):
    """
    Consent records keyed by ``(commitment, verifier)``.

    Mutations hold the same lock as the ledger's mutations on the commitment,
    so a grant and a credential revocation on one commitment are totally
    ordered.
    """

    def __init__(
        self,
        ledger: CredentialLedger,
        store: EventStore,
        bus: EventBus,
        clock: Clock = unix_now,
    ):
        super().__init__(store, bus)
        self.ledger = ledger
        self._locks = ledger.locks
        self._clock = clock
        self._consents: Dict[Tuple[str, str], Consent] = {}

    def grant(
        self,
        holder: Union[Principal, str],
        commitment: CommitmentLike,
        verifier: Union[Principal, str],
    ) -> Consent:
        holder = Principal.of(holder)
        commitment = parse_commitment(commitment)
        verifier = Principal.of(verifier)

        with self._locks.hold(credential_lock_key(commitment)):
            credential = self.ledger.get(commitment)
            if credential is None:
                raise CredentialNotFound(f"No credential for {commitment.hex}", commitment=commitment.hex)
            if credential.revoked:
                raise CredentialRevoked(
                    f"{commitment.hex} is revoked; consent cannot be granted",
                    commitment=commitment.hex,
                )
            if verifier.is_sentinel:
                raise InvalidVerifier("Verifier cannot be the sentinel principal", verifier=verifier.id)
            if (commitment.hex, verifier.id) in self._consents:
                raise ConsentAlreadyGranted(
                    f"{verifier.id} already holds consent for {commitment.hex}",
                    commitment=commitment.hex,
                    verifier=verifier.id,
                )
            event = ConsentGiven(
                commitment=commitment.hex,
                verifier=verifier.id,
                actor=holder.id,
                occurred_at=self._clock(),
            )
            self._commit(event)
            consent = self._consents[(commitment.hex, verifier.id)]

        log.info("Consent granted", operation="grant", commitment=commitment.hex, verifier=verifier.id)
        self._publish(event)
        return consent

    def revoke(
        self,
        holder: Union[Principal, str],
        commitment: CommitmentLike,
        verifier: Union[Principal, str],
    ) -> None:
        holder = Principal.of(holder)
        verifier = Principal.of(verifier)
        try:
            commitment = parse_commitment(commitment)
        except InvalidCommitment as e:
            # a malformed key can never have been granted
            raise ConsentNotGranted("No consent for the given pair", verifier=verifier.id) from e

        with self._locks.hold(credential_lock_key(commitment)):
            if (commitment.hex, verifier.id) not in self._consents:
                raise ConsentNotGranted(
                    f"{verifier.id or '<sentinel>'} holds no consent for {commitment.hex}",
                    commitment=commitment.hex,
                    verifier=verifier.id,
                )
            event = ConsentRevoked(
                commitment=commitment.hex,
                verifier=verifier.id,
                actor=holder.id,
                occurred_at=self._clock(),
            )
            self._commit(event)

        log.info("Consent revoked", operation="revoke", commitment=commitment.hex, verifier=verifier.id)
        self._publish(event)

    def has_consent(self, commitment: CommitmentLike, verifier: Union[Principal, str]) -> bool:
        return self.get(commitment, verifier) is not None

    def get(self, commitment: CommitmentLike, verifier: Union[Principal, str]) -> Optional[Consent]:
        key = self._key(commitment, verifier)
        return self._consents.get(key) if key is not None else None

    def verifiers_for(self, commitment: CommitmentLike) -> List[Principal]:
        key = self._key(commitment, "")
        if key is None:
            return []
        return sorted(
            (c.verifier for (hex_, _), c in self._consents.items() if hex_ == key[0]),
            key=lambda p: p.id,
        )

    def __len__(self) -> int:
        return len(self._consents)

    @staticmethod
    def _key(commitment: CommitmentLike, verifier: Union[Principal, str]) -> Optional[Tuple[str, str]]:
        verifier_id = verifier.id if isinstance(verifier, Principal) else verifier
        if not isinstance(verifier_id, str):
            return None
        try:
            return Commitment.of(commitment).hex, verifier_id
        except (InvalidCommitment, ValueError, TypeError):
            return None

    def _reset(self) -> None:
        self._consents.clear()

    def handle_event(self, event: Event) -> None:
        if not isinstance(event, (ConsentGiven, ConsentRevoked)):
            return

        key = (event.commitment, event.verifier)
        current = ConsentState.GRANTED if key in self._consents else ConsentState.ABSENT
        if isinstance(event, ConsentGiven):
            InvariantChecker.check_state_transition(current, ConsentState.GRANTED, CONSENT_TRANSITIONS)
            self._consents[key] = Consent(
                commitment=Commitment.from_hex(event.commitment),
                verifier=Principal(event.verifier),
                granted_at=event.occurred_at,
                granted_by=Principal(event.actor),
            )
        else:
            InvariantChecker.check_state_transition(current, ConsentState.ABSENT, CONSENT_TRANSITIONS)
            del self._consents[key]


__all__ = [
    "ConsentState",
    "Consent",
    "ConsentMatrix",
]
