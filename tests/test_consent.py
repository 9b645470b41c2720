"""Consent matrix: per (credential, verifier) disclosure grants."""

import pytest

from anonid.commitment import ZERO_COMMITMENT, Commitment
from anonid.consent import ConsentMatrix
from anonid.errors import (
    ConsentAlreadyGranted,
    ConsentNotGranted,
    CredentialNotFound,
    CredentialRevoked,
    InvalidCommitment,
    InvalidVerifier,
)
from anonid.events import ConsentGiven, ConsentRevoked, EventBus, EventStore
from anonid.hardening import InvariantViolation
from anonid.identity import SENTINEL
from anonid.ledger import CredentialLedger
from anonid.registry import IssuerRegistry

from support import ADMIN, HOLDER, ISSUER, NOW, OTHER_VERIFIER, VERIFIER, FakeClock


C1 = Commitment.from_int(0xC1)
UNKNOWN = Commitment.from_int(0xEE)


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def ledger(store, bus, clock):
    registry = IssuerRegistry(ADMIN, store, bus, clock=clock)
    registry.add_issuer(ADMIN, ISSUER)
    ledger = CredentialLedger(registry, store, bus, clock=clock)
    ledger.issue(ISSUER, C1)
    return ledger


@pytest.fixture
def consents(ledger, store, bus, clock):
    return ConsentMatrix(ledger, store, bus, clock=clock)


class TestGrant:

    def test_grant(self, consents, clock):
        clock.advance(3)
        consent = consents.grant(HOLDER, C1, VERIFIER)
        assert consents.has_consent(C1, VERIFIER)
        assert consent.granted_at == NOW + 3
        assert consent.granted_by == HOLDER
        assert not consents.has_consent(C1, OTHER_VERIFIER)

    def test_shares_ledger_locks(self, consents, ledger):
        assert consents._locks is ledger.locks

    def test_malformed_commitment(self, consents):
        with pytest.raises(InvalidCommitment):
            consents.grant(HOLDER, "0x1234", VERIFIER)

    def test_unknown_credential(self, consents):
        with pytest.raises(CredentialNotFound):
            consents.grant(HOLDER, UNKNOWN, VERIFIER)

    def test_zero_commitment_is_unknown(self, consents):
        with pytest.raises(CredentialNotFound):
            consents.grant(HOLDER, ZERO_COMMITMENT, VERIFIER)

    def test_revoked_credential(self, consents, ledger):
        ledger.revoke(ISSUER, C1)
        with pytest.raises(CredentialRevoked):
            consents.grant(HOLDER, C1, VERIFIER)

    def test_revoked_check_precedes_verifier_check(self, consents, ledger):
        ledger.revoke(ISSUER, C1)
        with pytest.raises(CredentialRevoked):
            consents.grant(HOLDER, C1, SENTINEL)

    def test_sentinel_verifier(self, consents):
        with pytest.raises(InvalidVerifier):
            consents.grant(HOLDER, C1, SENTINEL)
        with pytest.raises(InvalidVerifier):
            consents.grant(HOLDER, C1, "0x" + "0" * 40)

    def test_duplicate(self, consents):
        consents.grant(HOLDER, C1, VERIFIER)
        with pytest.raises(ConsentAlreadyGranted):
            consents.grant(HOLDER, C1, VERIFIER)

    def test_regrant_after_revoke(self, consents):
        consents.grant(HOLDER, C1, VERIFIER)
        consents.revoke(HOLDER, C1, VERIFIER)
        consents.grant(HOLDER, C1, VERIFIER)
        assert consents.has_consent(C1, VERIFIER)


class TestRevoke:

    def test_revoke(self, consents):
        consents.grant(HOLDER, C1, VERIFIER)
        consents.grant(HOLDER, C1, OTHER_VERIFIER)
        assert consents.revoke(HOLDER, C1, VERIFIER) is None
        assert not consents.has_consent(C1, VERIFIER)
        assert consents.has_consent(C1, OTHER_VERIFIER)

    def test_not_granted(self, consents):
        with pytest.raises(ConsentNotGranted):
            consents.revoke(HOLDER, C1, VERIFIER)

    def test_unknown_credential_is_not_granted(self, consents):
        with pytest.raises(ConsentNotGranted):
            consents.revoke(HOLDER, UNKNOWN, VERIFIER)

    def test_malformed_commitment_is_not_granted(self, consents):
        with pytest.raises(ConsentNotGranted):
            consents.revoke(HOLDER, "0x1234", VERIFIER)

    def test_revoke_after_credential_revoked(self, consents, ledger):
        consents.grant(HOLDER, C1, VERIFIER)
        ledger.revoke(ISSUER, C1)
        consents.revoke(HOLDER, C1, VERIFIER)
        assert not consents.has_consent(C1, VERIFIER)

    def test_double_revoke(self, consents):
        consents.grant(HOLDER, C1, VERIFIER)
        consents.revoke(HOLDER, C1, VERIFIER)
        with pytest.raises(ConsentNotGranted):
            consents.revoke(HOLDER, C1, VERIFIER)


class TestQueries:

    def test_lookup_tolerates_malformed_input(self, consents):
        assert not consents.has_consent("nope", VERIFIER)
        assert not consents.has_consent(C1, 42)
        assert consents.get(None, VERIFIER) is None

    def test_verifiers_for(self, consents):
        consents.grant(HOLDER, C1, OTHER_VERIFIER)
        consents.grant(HOLDER, C1, VERIFIER)
        assert consents.verifiers_for(C1) == [VERIFIER, OTHER_VERIFIER]
        assert consents.verifiers_for("nope") == []
        assert len(consents) == 2

    def test_to_dict(self, consents):
        data = consents.grant(HOLDER, C1.hex, VERIFIER.id).to_dict()
        assert data == {
            "commitment": C1.hex,
            "verifier": VERIFIER.id,
            "granted": True,
            "granted_at": NOW,
            "granted_by": HOLDER.id,
        }


class TestEventsAndReplay:

    def test_events(self, consents, store, bus):
        published = []
        bus.subscribe(ConsentGiven, ConsentRevoked)(published.append)
        consents.grant(HOLDER, C1, VERIFIER)
        consents.revoke(HOLDER, C1, VERIFIER)

        events = store.read_stream(f"consent:{C1.hex}:{VERIFIER.id}")
        assert [type(e) for e in events] == [ConsentGiven, ConsentRevoked]
        assert all(e.actor == HOLDER.id for e in events)
        assert published == events

    def test_failed_grant_emits_nothing(self, consents, store):
        before = store.total_events
        with pytest.raises(CredentialNotFound):
            consents.grant(HOLDER, UNKNOWN, VERIFIER)
        assert store.total_events == before

    def test_rebuild(self, consents, ledger, store, bus, clock):
        consents.grant(HOLDER, C1, VERIFIER)
        clock.advance(9)
        consents.grant(HOLDER, C1, OTHER_VERIFIER)
        consents.revoke(HOLDER, C1, VERIFIER)

        fresh = ConsentMatrix(ledger, store, bus, clock=FakeClock(0))
        fresh.rebuild()
        assert not fresh.has_consent(C1, VERIFIER)
        assert fresh.get(C1, OTHER_VERIFIER).granted_at == NOW + 9

    def test_replay_rejects_revoke_without_grant(self, ledger, bus):
        store = EventStore()
        store.append("consent:x", [ConsentRevoked(commitment=C1.hex, verifier=VERIFIER.id)])
        with pytest.raises(InvariantViolation):
            ConsentMatrix(ledger, store, bus).rebuild()
