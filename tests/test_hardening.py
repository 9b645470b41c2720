"""Validators, keyed locks, invariant checks, and the clock."""

import threading
import time
from enum import Enum

import pytest

from anonid.hardening import (
    AtomicCounter,
    InvariantChecker,
    InvariantViolation,
    KeyedLockManager,
    Validators,
    unix_now,
)


class TestValidators:

    def test_principal_allows_empty_sentinel(self):
        assert Validators.validate_principal_id("").is_valid

    def test_principal_rejects_padding(self):
        result = Validators.validate_principal_id(" did:key:zAbc")
        assert not result.is_valid
        assert "whitespace" in result.message

    def test_principal_rejects_non_string(self):
        assert not Validators.validate_principal_id(42).is_valid

    def test_hex_bytes_accepts_prefixed_and_bare(self):
        a = Validators.validate_hex_bytes("0x" + "ab" * 4, "c", 4)
        b = Validators.validate_hex_bytes("AB" * 4, "c", 4)
        assert a.sanitized_value == b.sanitized_value == bytes([0xAB] * 4)

    def test_hex_bytes_wrong_length(self):
        assert not Validators.validate_hex_bytes("0xabcd", "c", 4).is_valid

    def test_hex_bytes_non_hex(self):
        assert not Validators.validate_hex_bytes("0x" + "zz" * 4, "c", 4).is_valid

    def test_timestamp_rejects_bool_and_negative(self):
        assert not Validators.validate_timestamp(True).is_valid
        assert not Validators.validate_timestamp(-1).is_valid
        assert Validators.validate_timestamp(0).is_valid

    def test_string_collects_every_error(self):
        result = Validators.validate_string(" ", "name", min_length=2)
        assert not result.is_valid
        assert [e.field for e in result.errors] == ["name", "name"]
        assert "Too short" in result.message


class TestUnixNow:

    def test_source_date_epoch(self, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1234")
        assert unix_now() == 1234

    def test_bad_source_date_epoch(self, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "soon")
        with pytest.raises(ValueError):
            unix_now()

    def test_wall_clock(self, monkeypatch):
        monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)
        assert abs(unix_now() - int(time.time())) <= 1


class TestKeyedLockManager:

    def test_entries_live_only_while_held(self):
        locks = KeyedLockManager()
        with locks.hold("a"):
            assert len(locks) == 1
            with locks.hold("a", "b"):
                assert len(locks) == 2
            assert len(locks) == 1
        assert len(locks) == 0

    def test_waiter_keeps_entry_alive(self):
        locks = KeyedLockManager()
        entered = threading.Event()

        def waiter():
            with locks.hold("k"):
                entered.set()

        with locks.hold("k"):
            t = threading.Thread(target=waiter)
            t.start()
            t.join(timeout=0.1)
            assert not entered.is_set()
        t.join(timeout=5)
        assert entered.is_set()
        assert len(locks) == 0

    def test_hold_is_reentrant(self):
        locks = KeyedLockManager()
        with locks.hold("a"):
            with locks.hold("a", "b"):
                pass
        assert locks.acquisitions == 2

    def test_hold_serializes_same_key(self):
        locks = KeyedLockManager()
        counter = {"value": 0}

        def bump():
            for _ in range(200):
                with locks.hold("k"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["value"] == 800

    def test_released_after_exception(self):
        locks = KeyedLockManager()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        assert len(locks) == 0

        acquired = []

        def grab():
            with locks.hold("a"):
                acquired.append(True)

        t = threading.Thread(target=grab)
        t.start()
        t.join(timeout=2)
        assert acquired == [True]


class TestInvariantChecker:

    class Light(Enum):
        RED = "red"
        GREEN = "green"

    def test_allowed_transition(self):
        transitions = {self.Light.RED: {self.Light.GREEN}}
        InvariantChecker.check_state_transition(self.Light.RED, self.Light.GREEN, transitions)

    def test_forbidden_transition(self):
        transitions = {self.Light.RED: {self.Light.GREEN}}
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_state_transition(self.Light.GREEN, self.Light.RED, transitions)

    def test_monotonic(self):
        InvariantChecker.check_monotonic_increase("seq", 1, 1)
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_monotonic_increase("seq", 2, 1)


def test_atomic_counter():
    counter = AtomicCounter()
    assert counter.increment() == 1
    assert counter.increment(5) == 6
    counter.reset()
    assert counter.get() == 0
