"""Error taxonomy: stable codes and categories."""

import pytest

from anonid.errors import (
    AlreadyRevoked,
    AlreadyTrusted,
    AuthorizationCoreError,
    ConsentAlreadyGranted,
    ConsentNotGranted,
    CredentialAlreadyExists,
    CredentialNotFound,
    CredentialRevoked,
    ErrorCategory,
    InvalidCommitment,
    InvalidIssuer,
    InvalidVerifier,
    NotAdministrator,
    NotOriginalIssuer,
    NotTrusted,
    NotTrustedIssuer,
)


class TestErrorTaxonomy:

    @pytest.mark.parametrize("error_cls", [NotAdministrator, NotTrustedIssuer, NotOriginalIssuer])
    def test_authorization_errors(self, error_cls):
        assert error_cls().category is ErrorCategory.AUTHORIZATION

    @pytest.mark.parametrize("error_cls", [CredentialNotFound, ConsentNotGranted])
    def test_not_found_errors(self, error_cls):
        assert error_cls().category is ErrorCategory.NOT_FOUND

    @pytest.mark.parametrize("error_cls", [
        CredentialAlreadyExists, AlreadyRevoked, ConsentAlreadyGranted,
        AlreadyTrusted, NotTrusted, CredentialRevoked,
    ])
    def test_state_conflict_errors(self, error_cls):
        assert error_cls().category is ErrorCategory.STATE_CONFLICT

    @pytest.mark.parametrize("error_cls", [InvalidCommitment, InvalidVerifier, InvalidIssuer])
    def test_validation_errors(self, error_cls):
        assert error_cls().category is ErrorCategory.VALIDATION

    def test_code_is_class_name(self):
        assert CredentialNotFound("missing").code == "CredentialNotFound"

    def test_default_message(self):
        assert str(AlreadyRevoked()) == "AlreadyRevoked"

    def test_all_errors_share_base(self):
        assert issubclass(NotTrusted, AuthorizationCoreError)
        assert issubclass(InvalidVerifier, AuthorizationCoreError)

    def test_to_dict_stringifies_context(self):
        err = ConsentAlreadyGranted("dup", commitment="0xab", verifier=7)
        d = err.to_dict()
        assert d == {
            "code": "ConsentAlreadyGranted",
            "category": "state_conflict",
            "message": "dup",
            "context": {"commitment": "0xab", "verifier": "7"},
        }
