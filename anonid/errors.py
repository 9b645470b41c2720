"""
Authorization Core Error Taxonomy

Every failure raised by a mutating operation is an ``AuthorizationCoreError``
carrying a stable ``code`` (the exception class name) and a ``category``:

    authorization   caller is not permitted to perform the operation
    not_found       the addressed entity does not exist
    state_conflict  the entity exists but is in the wrong state
    validation      an argument is malformed or a reserved sentinel

A raised error never leaves partial state behind. ``verify`` never raises;
it collapses every failure into ``False``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ErrorCategory(Enum):
    """Coarse classification of core errors."""
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    VALIDATION = "validation"


class AuthorizationCoreError(Exception):
    """Base class for all errors raised by the authorization core."""

    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.__class__.__name__
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


# =============================================================================
# CATEGORY BASES
# =============================================================================

class AuthorizationError(AuthorizationCoreError):
    category = ErrorCategory.AUTHORIZATION


class NotFoundError(AuthorizationCoreError):
    category = ErrorCategory.NOT_FOUND


class StateConflictError(AuthorizationCoreError):
    category = ErrorCategory.STATE_CONFLICT


class InputValidationError(AuthorizationCoreError):
    category = ErrorCategory.VALIDATION


# =============================================================================
# AUTHORIZATION
# =============================================================================

class NotAdministrator(AuthorizationError):
    """Caller is not the configured Administrator."""


class NotTrustedIssuer(AuthorizationError):
    """Issuer is not active in the registry at issuance time."""


class NotOriginalIssuer(AuthorizationError):
    """Only the principal that issued a credential may revoke it."""


# =============================================================================
# NOT FOUND
# =============================================================================

class CredentialNotFound(NotFoundError):
    """No credential is recorded under the commitment."""


class ConsentNotGranted(NotFoundError):
    """No consent is recorded for the (commitment, verifier) pair."""


# =============================================================================
# STATE CONFLICT
# =============================================================================

class CredentialAlreadyExists(StateConflictError):
    """A credential is already recorded under the commitment."""


class AlreadyRevoked(StateConflictError):
    """The credential has already been revoked."""


class CredentialRevoked(StateConflictError):
    """The credential is revoked; consent can no longer be granted."""


class ConsentAlreadyGranted(StateConflictError):
    """Consent for the (commitment, verifier) pair already exists."""


class AlreadyTrusted(StateConflictError):
    """The issuer is already active in the registry."""


class NotTrusted(StateConflictError):
    """The issuer is not currently active in the registry."""


# =============================================================================
# VALIDATION
# =============================================================================

class InvalidCommitment(InputValidationError):
    """Commitment is malformed or the zero sentinel."""


class InvalidVerifier(InputValidationError):
    """Verifier principal is the sentinel."""


class InvalidIssuer(InputValidationError):
    """Issuer principal is the sentinel."""


class InvalidPrincipal(InputValidationError):
    """Principal identifier is malformed."""


__all__ = [
    "ErrorCategory",
    "AuthorizationCoreError",
    "AuthorizationError",
    "NotFoundError",
    "StateConflictError",
    "InputValidationError",
    "NotAdministrator",
    "NotTrustedIssuer",
    "NotOriginalIssuer",
    "CredentialNotFound",
    "ConsentNotGranted",
    "CredentialAlreadyExists",
    "AlreadyRevoked",
    "CredentialRevoked",
    "ConsentAlreadyGranted",
    "AlreadyTrusted",
    "NotTrusted",
    "InvalidCommitment",
    "InvalidVerifier",
    "InvalidIssuer",
    "InvalidPrincipal",
]
