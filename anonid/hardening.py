"""
Validation and Hardening Utilities

Input validation, constant-time comparison, clock, and thread-safety
primitives shared by the registry, ledger, consent matrix, and orchestrator.

Security Model:
    - All inputs are untrusted until validated
    - All cryptographic comparisons are constant-time
    - All state mutations happen under the lock of the key they touch

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hmac
import os
import re
import secrets
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class InvariantViolation(Exception):
    """State machine invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    @property
    def message(self) -> str:
        return "; ".join(e.message for e in self.errors)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# TIMESTAMP UTILITIES
# =============================================================================

Clock = Callable[[], int]


def unix_now() -> int:
    """
    Current time in whole seconds since the Unix epoch.

    For deterministic runs set ``SOURCE_DATE_EPOCH`` (seconds since epoch).
    """
    sde = os.environ.get("SOURCE_DATE_EPOCH")
    if sde is not None and sde.strip() != "":
        try:
            return int(sde.strip(), 10)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
    return int(time.time())


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    # Patterns
    PRINCIPAL_PATTERN = re.compile(r'^[A-Za-z0-9:._%#/+-]+$')
    DID_PATTERN = re.compile(r'^did:[a-z0-9]+:[a-zA-Z0-9._:%-]+$')
    HEX_PATTERN = re.compile(r'^[a-f0-9]+$')

    # Limits
    MAX_PRINCIPAL_LENGTH = 256
    COMMITMENT_BYTES = 32

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: int = 4096,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        """Validate a string value without altering it."""
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        if '\x00' in value or value != value.strip():
            errors.append(ValidationError(field_name, "Contains whitespace padding or null bytes", value))

        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if pattern and value and not pattern.match(value):
            errors.append(ValidationError(field_name, "Does not match required pattern", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_principal_id(cls, value: Any, field_name: str = "principal") -> ValidationResult:
        """Validate a principal identifier. The empty string is allowed (sentinel)."""
        if value == "":
            return ValidationResult.success(value)
        return cls.validate_string(
            value, field_name,
            min_length=1, max_length=cls.MAX_PRINCIPAL_LENGTH,
            pattern=cls.PRINCIPAL_PATTERN,
        )

    @classmethod
    def validate_did(cls, value: Any) -> ValidationResult:
        """Validate a DID."""
        return cls.validate_string(
            value, "did",
            min_length=8, max_length=cls.MAX_PRINCIPAL_LENGTH,
            pattern=cls.DID_PATTERN,
        )

    @classmethod
    def validate_hex_bytes(
        cls,
        value: Any,
        field_name: str,
        length: int,
    ) -> ValidationResult:
        """Validate a ``0x``-prefixed (or bare) hex string of exact byte length."""
        result = cls.validate_string(value, field_name, min_length=1, max_length=2 + 2 * length)
        if not result.is_valid:
            return result

        text = result.sanitized_value.lower()
        if text.startswith("0x"):
            text = text[2:]

        if len(text) != 2 * length or not cls.HEX_PATTERN.match(text):
            return ValidationResult.failure([
                ValidationError(field_name, f"Must be {length} bytes as hex ({2 * length} hex chars)", value)
            ])

        return ValidationResult.success(bytes.fromhex(text))

    @classmethod
    def validate_bytes(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: int = 65536,
    ) -> ValidationResult:
        """Validate bytes."""
        errors = []

        if isinstance(value, (bytearray, memoryview)):
            value = bytes(value)

        if not isinstance(value, bytes):
            errors.append(ValidationError(field_name, f"Expected bytes, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} bytes)", value))

        if len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} bytes)", value))

        if errors:
            return ValidationResult.failure(errors)

        return ValidationResult.success(value)

    @classmethod
    def validate_timestamp(cls, value: Any, field_name: str = "timestamp") -> ValidationResult:
        """Validate a Unix timestamp in whole seconds."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer seconds, got {type(value).__name__}", value)
            ])
        if value < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Timestamp cannot be negative", value)
            ])
        return ValidationResult.success(value)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(a.encode(), b.encode())

    @staticmethod
    def secure_random_bytes(n_bytes: int = 32) -> bytes:
        """Generate cryptographically secure random bytes."""
        return secrets.token_bytes(n_bytes)


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value

    def reset(self, value: int = 0) -> None:
        """Atomically reset the counter to the given value."""
        with self._lock:
            self._value = value


class KeyedLockManager:
    """
    Hands out one re-entrant lock per key.

    Mutations on the same key are serialized; mutations on different keys
    proceed in parallel. A key's entry lives only while some caller holds or
    waits for it, so the table is bounded by the calls in flight rather than
    by every key ever named.

    Example:
        locks = KeyedLockManager("credential")
        with locks.hold(commitment.hex):
            ...
    """

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = {}
        self._guard = threading.Lock()
        self._acquisitions = AtomicCounter()

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """
        Acquire the locks for ``keys`` in sorted order and release on exit.

        Sorting gives every caller the same acquisition order, so holding
        several keys at once cannot deadlock.
        """
        ordered = sorted(set(keys))
        held: List[Tuple[str, threading.RLock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                held.append((key, lock))
            self._acquisitions.increment()
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @property
    def acquisitions(self) -> int:
        return self._acquisitions.get()


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}"
            )

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )


__all__ = [
    "ValidationError",
    "InvariantViolation",
    "ValidationResult",
    "Clock",
    "unix_now",
    "Validators",
    "CryptoUtils",
    "AtomicCounter",
    "KeyedLockManager",
    "InvariantChecker",
]
