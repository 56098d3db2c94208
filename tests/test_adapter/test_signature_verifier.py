"""
Test suite for EIP-712 payment authorization signing and verification.
"""
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from s402_gate.adapters.evm.signatures import (
    build_payment_typed_data,
    sign_payment_authorization,
    sign_permit,
)
from s402_gate.adapters.evm.standards import EIP2612PermitTypedData
from s402_gate.adapters.evm.verifies import (
    compute_payment_hash,
    recover_payment_signer,
    verify_payment_signature,
)
from s402_gate.schemas.bases import BaseSignature
from test_mocks import (
    MOCK_FACILITATOR,
    MOCK_OTHER_ADDRESS,
    MOCK_OTHER_PRIVATE_KEY,
    MOCK_OWNER_ADDRESS,
    MOCK_OWNER_PRIVATE_KEY,
    MOCK_TOKEN,
    create_mock_domain,
    create_mock_payment,
    create_signed_proof,
    tamper_r,
)


def test_valid_signature_verifies():
    proof = create_signed_proof()
    assert verify_payment_signature(proof.payment, proof.auth_sig, create_mock_domain())


def test_recovered_signer_is_owner():
    proof = create_signed_proof()
    signer = recover_payment_signer(proof.payment, proof.auth_sig, create_mock_domain())
    assert signer == MOCK_OWNER_ADDRESS


@pytest.mark.parametrize(
    "field, value",
    [
        ("owner", MOCK_OTHER_ADDRESS),
        ("value", "1000000000000001"),
        ("deadline", 1),
        ("recipient", "0x0000000000000000000000000000000000000003"),
        ("nonce", "0x" + "22" * 32),
    ],
)
def test_mutating_any_field_breaks_verification(field, value):
    proof = create_signed_proof()
    mutated = proof.payment.model_copy(update={field: value})
    assert not verify_payment_signature(mutated, proof.auth_sig, create_mock_domain())


def test_signature_by_someone_else_is_rejected():
    payment = create_mock_payment()
    proof = create_signed_proof(payment=payment, private_key=MOCK_OTHER_PRIVATE_KEY)
    assert not verify_payment_signature(payment, proof.auth_sig, create_mock_domain())


def test_tampered_r_is_rejected():
    proof = create_signed_proof()
    assert not verify_payment_signature(proof.payment, tamper_r(proof.auth_sig), create_mock_domain())


def test_domain_is_part_of_the_signature():
    proof = create_signed_proof()
    assert not verify_payment_signature(proof.payment, proof.auth_sig, create_mock_domain(chain_id=97))
    other_contract = "0x0000000000000000000000000000000000000bad"
    assert not verify_payment_signature(
        proof.payment, proof.auth_sig, create_mock_domain(facilitator=other_contract)
    )


def test_address_case_does_not_matter():
    proof = create_signed_proof()
    owner = proof.payment.owner
    for variant in (owner.lower(), "0x" + owner[2:].upper()):
        recased = proof.payment.model_copy(update={"owner": variant})
        assert verify_payment_signature(recased, proof.auth_sig, create_mock_domain())


def test_spender_is_forced_to_facilitator():
    payment = create_mock_payment()
    typed = build_payment_typed_data(payment, create_mock_domain()).to_dict()
    assert typed["message"]["spender"] == MOCK_FACILITATOR.lower()
    assert typed["primaryType"] == "PaymentAuthorization"
    assert [f["name"] for f in typed["types"]["PaymentAuthorization"]] == [
        "owner", "spender", "value", "deadline", "recipient", "nonce",
    ]


def test_signature_fields_are_well_formed():
    proof = create_signed_proof()
    sig = proof.auth_sig
    assert sig.v in (27, 28)
    assert len(sig.r) == 66 and len(sig.s) == 66
    assert sig.validate_format()
    assert len(sig.to_packed_hex()) == 132


def test_signature_base_requires_format_check():
    with pytest.raises(TypeError):
        BaseSignature(signature_type="raw")


def test_malformed_signature_returns_false():
    proof = create_signed_proof()
    zero = proof.auth_sig.model_copy(update={"r": "0x" + "00" * 32, "s": "0x" + "00" * 32})
    assert verify_payment_signature(proof.payment, zero, create_mock_domain()) is False


def test_payment_hash_is_stable_and_field_sensitive():
    payment = create_mock_payment(deadline=1_900_000_000)
    digest = compute_payment_hash(payment)
    assert digest.startswith("0x") and len(digest) == 66
    assert compute_payment_hash(payment) == digest
    assert compute_payment_hash(payment.model_copy(update={"value": "1"})) != digest


def test_permit_signature_recovers_to_owner():
    sig = sign_permit(
        private_key=MOCK_OWNER_PRIVATE_KEY,
        token=MOCK_TOKEN,
        chain_id=56,
        spender=MOCK_FACILITATOR,
        value=10**15,
        deadline=1_900_000_000,
        nonce=0,
    )
    assert sig.signature_type == "EIP2612"

    typed = EIP2612PermitTypedData(
        token_name="USD1",
        token_version="1",
        chain_id=56,
        verifying_contract=MOCK_TOKEN.lower(),
        owner=MOCK_OWNER_ADDRESS.lower(),
        spender=MOCK_FACILITATOR.lower(),
        value=10**15,
        nonce=0,
        deadline=1_900_000_000,
    )
    signer = Account.recover_message(encode_typed_data(full_message=typed.to_dict()), vrs=sig.to_vrs())
    assert signer == MOCK_OWNER_ADDRESS


def test_sign_then_verify_uses_same_encoding():
    payment = create_mock_payment()
    domain = create_mock_domain()
    sig = sign_payment_authorization(private_key=MOCK_OWNER_PRIVATE_KEY, payment=payment, domain=domain)
    assert sig.signature_type == "S402Authorization"
    assert verify_payment_signature(payment, sig, domain)
