"""Proof verifiers: public inputs, Pedersen opening proofs, Groth16."""

import json

import pytest
from py_ecc.optimized_bn128 import G1, curve_order, multiply

from anonid.commitment import Commitment, commit_payload
from anonid.identity import Principal
from anonid.schema import DocumentValidationError
from anonid.zkp import (
    FieldElement,
    Groth16Proof,
    Groth16VerificationKey,
    Groth16Verifier,
    OpeningProof,
    PedersenOpeningProver,
    PedersenOpeningVerifier,
    ProofSystem,
    PublicInputs,
    to_field_element,
)

from support import ISSUER, NOW, TrapdoorSetup


class TestFieldElements:

    def test_reduction(self):
        assert FieldElement.from_int(curve_order + 5).to_int() == 5
        assert FieldElement.from_int(curve_order + 5).to_decimal() == "5"

    def test_unreduced_rejected(self):
        with pytest.raises(ValueError):
            FieldElement(format(curve_order, "064x"))

    def test_address_issuer_maps_to_integer(self):
        addr = "0x" + "00" * 19 + "2a"
        assert to_field_element(Principal(addr)).to_int() == 42

    def test_did_issuer_maps_to_hash(self):
        a = to_field_element(Principal("did:key:z6MkA"))
        b = to_field_element(Principal("did:key:z6MkB"))
        assert a != b

    def test_flags(self):
        assert to_field_element(True) == FieldElement.one()
        assert to_field_element(False) == FieldElement.zero()

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            to_field_element(-1)


class TestPublicInputs:

    def test_wire_form(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        assert inputs.to_list() == [opening.commitment.hex, ISSUER.id, str(NOW), "0"]
        assert PublicInputs.from_list(inputs.to_list()) == inputs

    def test_from_list_accepts_numbers(self, opening):
        inputs = PublicInputs.from_list([opening.commitment.hex, ISSUER.id, NOW, 1])
        assert inputs.timestamp == NOW
        assert inputs.revoked is True

    @pytest.mark.parametrize("values", [
        [],
        ["0x" + "01" * 32, "issuer", "1"],
        ["0x" + "01" * 32, "issuer", "1", "0", "extra"],
        "0x0101",
    ])
    def test_shape_enforced(self, values):
        with pytest.raises(ValueError):
            PublicInputs.from_list(values)

    def test_flag_must_be_binary(self, opening):
        with pytest.raises(ValueError):
            PublicInputs.from_list([opening.commitment.hex, ISSUER.id, NOW, 2])

    def test_timestamp_must_be_non_negative_integer(self, opening):
        with pytest.raises(ValueError):
            PublicInputs.from_list([opening.commitment.hex, ISSUER.id, "-5", 0])

    def test_signals(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        signals = inputs.signals()
        assert len(signals) == 4
        assert signals[0] == opening.commitment.to_int() % curve_order
        assert signals[2] == NOW
        assert signals[3] == 0


class TestPedersenOpening:

    def test_valid_proof(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        assert PedersenOpeningVerifier().check(proof, inputs, opening.commitment)

    def test_accepts_serialized_forms(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        wire = json.loads(json.dumps(proof.to_dict()))
        assert PedersenOpeningVerifier().check(wire, inputs.to_list(), opening.commitment.hex)

    def test_wrong_commitment(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        other = commit_payload({"name": "Mallory"}).commitment
        assert not PedersenOpeningVerifier().check(proof, inputs, other)

    def test_public_inputs_bound_into_challenge(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        later = PublicInputs.for_credential(opening.commitment, ISSUER, NOW + 1)
        assert not PedersenOpeningVerifier().check(proof, later, opening.commitment)

    def test_tampered_response(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        forged = OpeningProof(t=proof.t, z1=(proof.z1 + 1) % curve_order, z2=proof.z2)
        assert not PedersenOpeningVerifier().check(forged, inputs, opening.commitment)

    def test_proof_from_other_opening_rejected(self, opening):
        other = commit_payload({"name": "Mallory"})
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        other_inputs = PublicInputs.for_credential(other.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(other, other_inputs)
        assert not PedersenOpeningVerifier().check(proof, inputs, opening.commitment)

    def test_prover_refuses_mismatched_inputs(self, opening):
        other = commit_payload({"name": "Mallory"}).commitment
        with pytest.raises(ValueError):
            PedersenOpeningProver().prove(opening, PublicInputs.for_credential(other, ISSUER, NOW))

    @pytest.mark.parametrize("proof", [
        None,
        {},
        {"scheme": "pedersen-opening", "t": "0x00", "z1": "0x00", "z2": "0x00"},
        {"pi_a": ["1", "2", "1"]},
        "not a proof",
    ])
    def test_malformed_proof_returns_false(self, opening, proof):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        assert PedersenOpeningVerifier().check(proof, inputs, opening.commitment) is False

    def test_malformed_inputs_return_false(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = PedersenOpeningProver().prove(opening, inputs)
        assert PedersenOpeningVerifier().check(proof, ["garbage"], opening.commitment) is False
        assert PedersenOpeningVerifier().check(proof, inputs, "0x12") is False

    def test_schema_rejects_unreduced_scalars(self, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        data = PedersenOpeningProver().prove(opening, inputs).to_dict()
        data["z1"] = "0x" + format(curve_order, "064x")
        with pytest.raises(ValueError):
            OpeningProof.from_dict(data)

    def test_proof_system(self):
        assert PedersenOpeningVerifier().proof_system is ProofSystem.PEDERSEN_OPENING
        assert not ProofSystem.PEDERSEN_OPENING.requires_trusted_setup()


@pytest.fixture(scope="module")
def groth16_verifier(trapdoor):
    return Groth16Verifier(trapdoor.verification_key)


class TestGroth16:

    def test_key_document_round_trip(self, trapdoor):
        doc = json.loads(json.dumps(trapdoor.verification_key_dict()))
        key = Groth16VerificationKey.from_dict(doc)
        assert key.n_public == 4
        assert key.digest == trapdoor.verification_key.digest

    def test_key_schema_enforced(self, trapdoor):
        doc = trapdoor.verification_key_dict()
        del doc["vk_delta_2"]
        with pytest.raises(DocumentValidationError):
            Groth16VerificationKey.from_dict(doc)

    def test_key_npublic_must_match_ic(self, trapdoor):
        doc = trapdoor.verification_key_dict()
        doc["nPublic"] = 3
        with pytest.raises(ValueError):
            Groth16VerificationKey.from_dict(doc)

    def test_key_for_other_arity_rejected(self):
        with pytest.raises(ValueError):
            Groth16Verifier(TrapdoorSetup.generate(n_public=2, seed=3).verification_key)

    def test_off_curve_point_rejected(self, trapdoor):
        doc = trapdoor.verification_key_dict()
        doc["vk_alpha_1"] = ["1", "3", "1"]
        with pytest.raises(ValueError):
            Groth16VerificationKey.from_dict(doc)

    def test_valid_proof(self, trapdoor, groth16_verifier, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = trapdoor.prove(inputs.signals())
        assert groth16_verifier.check(proof.to_dict(), inputs.to_list(), opening.commitment)

    def test_proof_for_other_inputs_rejected(self, trapdoor, groth16_verifier, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        stale = PublicInputs.for_credential(opening.commitment, ISSUER, NOW - 60)
        proof = trapdoor.prove(stale.signals())
        assert not groth16_verifier.check(proof, inputs, opening.commitment)

    def test_commitment_must_match_inputs(self, trapdoor, groth16_verifier, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        proof = trapdoor.prove(inputs.signals())
        assert not groth16_verifier.check(proof, inputs, Commitment.from_int(1))

    def test_infinity_points_rejected(self, groth16_verifier, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        doc = {
            "pi_a": ["0", "1", "0"],
            "pi_b": [["1", "0"], ["1", "0"], ["0", "0"]],
            "pi_c": ["0", "1", "0"],
        }
        assert groth16_verifier.check(doc, inputs, opening.commitment) is False

    def test_malformed_proof_document(self, groth16_verifier, opening):
        inputs = PublicInputs.for_credential(opening.commitment, ISSUER, NOW)
        assert groth16_verifier.check({"pi_a": "nope"}, inputs, opening.commitment) is False

    def test_signal_range_checked(self, trapdoor, groth16_verifier):
        proof = Groth16Proof(a=multiply(G1, 2), b=trapdoor.verification_key.beta2, c=multiply(G1, 3))
        assert not groth16_verifier.verify_signals(proof, [curve_order, 0, 0, 0])
        assert not groth16_verifier.verify_signals(proof, [0, 0, 0])

    def test_from_file(self, trapdoor, tmp_path, opening):
        path = tmp_path / "verification_key.json"
        trapdoor.write_verification_key(path)
        verifier = Groth16Verifier.from_file(path)
        assert verifier.proof_system is ProofSystem.GROTH16
        assert verifier.verification_key.digest == trapdoor.verification_key.digest
