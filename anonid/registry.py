"""
Issuer Registry

Tracks which principals may issue credentials. Only the single configured
Administrator can trust or distrust an issuer; distrust is reversible.

State Machine:

    (unknown) ──add──▶ ACTIVE ──remove──▶ INACTIVE ──add──▶ ACTIVE ...

``is_trusted`` is a lock-free lookup used live by the ledger at issuance
time and by the verification orchestrator on every verify.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from anonid.errors import AlreadyTrusted, InvalidIssuer, NotAdministrator, NotTrusted
from anonid.events import (
    Event,
    EventBus,
    EventSourcedComponent,
    EventStore,
    IssuerAdded,
    IssuerRemoved,
)
from anonid.hardening import Clock, InvariantChecker, KeyedLockManager, unix_now
from anonid.identity import Principal
from anonid.observability import CoreLayer, get_logger

log = get_logger("registry", CoreLayer.REGISTRY)

PrincipalLike = Union[Principal, str]


class IssuerStatus(Enum):
    UNKNOWN = "unknown"
    ACTIVE = "active"
    INACTIVE = "inactive"


ISSUER_TRANSITIONS = {
    IssuerStatus.UNKNOWN: {IssuerStatus.ACTIVE},
    IssuerStatus.ACTIVE: {IssuerStatus.INACTIVE},
    IssuerStatus.INACTIVE: {IssuerStatus.ACTIVE},
}


@dataclass(frozen=True)
class TrustedIssuer:
    """Current trust record for an issuer principal."""
    issuer: Principal
    active: bool
    changed_at: int
    changed_by: Principal

    @property
    def status(self) -> IssuerStatus:
        return IssuerStatus.ACTIVE if self.active else IssuerStatus.INACTIVE


def issuer_lock_key(issuer: Principal) -> str:
    return f"issuer:{issuer.id}"


class IssuerRegistry(EventSourcedComponent):
    """
    Administrator-controlled set of trusted issuers.

    Example:
        registry = IssuerRegistry(admin, EventStore(), EventBus())
        registry.add_issuer(admin, issuer)
        registry.is_trusted(issuer)   # True
    """

    def __init__(
        self,
        administrator: PrincipalLike,
        store: EventStore,
        bus: EventBus,
        locks: Optional[KeyedLockManager] = None,
        clock: Clock = unix_now,
    ):
        super().__init__(store, bus)
        self.administrator = Principal.of(administrator)
        self.locks = locks if locks is not None else KeyedLockManager("issuer")
        self._clock = clock
        self._issuers: Dict[str, TrustedIssuer] = {}

    def _require_administrator(self, caller: Principal, action: str) -> None:
        if self.administrator.is_sentinel or not caller.same_as(self.administrator):
            log.warning(
                "Rejected non-administrator caller",
                operation=action,
                error_code=NotAdministrator.__name__,
                caller=caller.id,
            )
            raise NotAdministrator(f"{caller.id or '<sentinel>'} is not the administrator", caller=caller.id)

    def add_issuer(self, caller: PrincipalLike, issuer: PrincipalLike) -> TrustedIssuer:
        """Trust ``issuer``. Re-trusting a previously removed issuer is allowed."""
        caller = Principal.of(caller)
        self._require_administrator(caller, "add_issuer")
        issuer = Principal.of(issuer)
        if issuer.is_sentinel:
            raise InvalidIssuer("Issuer cannot be the sentinel principal", issuer=issuer.id)

        with self.locks.hold(issuer_lock_key(issuer)):
            if self.is_trusted(issuer):
                raise AlreadyTrusted(f"{issuer.id} is already trusted", issuer=issuer.id)
            event = IssuerAdded(issuer=issuer.id, actor=caller.id, occurred_at=self._clock())
            self._commit(event)
            record = self._issuers[issuer.id]

        log.info("Issuer trusted", operation="add_issuer", issuer=issuer.id)
        self._publish(event)
        return record

    def remove_issuer(self, caller: PrincipalLike, issuer: PrincipalLike) -> TrustedIssuer:
        """Withdraw trust. Credentials already issued stay on the ledger."""
        caller = Principal.of(caller)
        self._require_administrator(caller, "remove_issuer")
        issuer = Principal.of(issuer)

        with self.locks.hold(issuer_lock_key(issuer)):
            if not self.is_trusted(issuer):
                raise NotTrusted(f"{issuer.id or '<sentinel>'} is not trusted", issuer=issuer.id)
            event = IssuerRemoved(issuer=issuer.id, actor=caller.id, occurred_at=self._clock())
            self._commit(event)
            record = self._issuers[issuer.id]

        log.info("Issuer trust removed", operation="remove_issuer", issuer=issuer.id)
        self._publish(event)
        return record

    def is_trusted(self, issuer: PrincipalLike) -> bool:
        """Pure lookup; False for unknown or malformed identifiers."""
        key = issuer.id if isinstance(issuer, Principal) else issuer
        if not isinstance(key, str):
            return False
        record = self._issuers.get(key)
        return record is not None and record.active

    def get_issuer(self, issuer: PrincipalLike) -> Optional[TrustedIssuer]:
        key = issuer.id if isinstance(issuer, Principal) else issuer
        return self._issuers.get(key) if isinstance(key, str) else None

    def list_issuers(self, active_only: bool = True) -> List[TrustedIssuer]:
        records = sorted(self._issuers.values(), key=lambda r: r.issuer.id)
        if active_only:
            return [r for r in records if r.active]
        return records

    def _status(self, issuer_id: str) -> IssuerStatus:
        record = self._issuers.get(issuer_id)
        return record.status if record is not None else IssuerStatus.UNKNOWN

    def _reset(self) -> None:
        self._issuers.clear()

    def handle_event(self, event: Event) -> None:
        if isinstance(event, IssuerAdded):
            target = IssuerStatus.ACTIVE
        elif isinstance(event, IssuerRemoved):
            target = IssuerStatus.INACTIVE
        else:
            return

        InvariantChecker.check_state_transition(
            self._status(event.issuer), target, ISSUER_TRANSITIONS
        )
        self._issuers[event.issuer] = TrustedIssuer(
            issuer=Principal(event.issuer),
            active=target is IssuerStatus.ACTIVE,
            changed_at=event.occurred_at,
            changed_by=Principal(event.actor),
        )


__all__ = [
    "IssuerStatus",
    "TrustedIssuer",
    "IssuerRegistry",
    "issuer_lock_key",
]
