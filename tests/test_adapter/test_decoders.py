"""
Test suite for PaymentSettled log and settlement call data decoding.
"""
import pytest
from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic, function_abi_to_4byte_selector, keccak

from s402_gate.adapters.evm.decoders import (
    SettlementCall,
    decode_settlement_calldata,
    decode_settlement_log,
)
from s402_gate.adapters.evm.FACILITATOR_ABI import (
    get_payment_settled_event_abi,
    get_settle_payment_abi,
    get_settle_payment_with_permit_abi,
)
from test_mocks import (
    MOCK_TOKEN,
    create_mock_payment,
    create_signed_proof,
    encode_settlement_calldata,
    encode_settlement_log,
    encode_transfer_log,
)


def test_abi_topics_and_selectors():
    assert function_abi_to_4byte_selector(get_settle_payment_abi()[0]) == keccak(
        text="settlePayment((address,uint256,uint256,address,bytes32),(uint8,bytes32,bytes32))"
    )[:4]
    plain, with_token = get_payment_settled_event_abi()
    assert event_abi_to_log_topic(plain) == keccak(
        text="PaymentSettled(address,address,uint256,uint256,bytes32)"
    )
    assert event_abi_to_log_topic(with_token) == keccak(
        text="PaymentSettled(address,address,address,uint256,uint256,bytes32)"
    )


@pytest.mark.parametrize("with_token", [False, True])
def test_decode_both_event_shapes(with_token):
    payment = create_mock_payment()
    event = decode_settlement_log(encode_settlement_log(payment, platform_fee=7, with_token=with_token))

    assert event is not None
    assert event.sender == payment.owner.lower()
    assert event.recipient == payment.recipient.lower()
    assert event.value == payment.amount
    assert event.platform_fee == 7
    assert event.nonce == payment.nonce
    assert event.token == (MOCK_TOKEN.lower() if with_token else None)


def test_decode_log_accepts_hex_strings():
    payment = create_mock_payment()
    log = encode_settlement_log(payment)
    hex_log = {
        "topics": ["0x" + t.hex() for t in log["topics"]],
        "data": "0x" + log["data"].hex(),
    }
    event = decode_settlement_log(hex_log)
    assert event is not None and event.nonce == payment.nonce


def test_unrelated_logs_are_skipped():
    assert decode_settlement_log(encode_transfer_log()) is None
    assert decode_settlement_log({"topics": [], "data": b""}) is None


def test_truncated_event_data_is_skipped():
    log = encode_settlement_log(create_mock_payment())
    log["data"] = log["data"][:40]
    assert decode_settlement_log(log) is None


@pytest.mark.parametrize("with_permit, name", [(False, "settlePayment"), (True, "settlePaymentWithPermit")])
def test_decode_settlement_calls(with_permit, name):
    proof = create_signed_proof()
    call = decode_settlement_calldata(
        encode_settlement_calldata(proof.payment, with_permit=with_permit, signature=proof.auth_sig)
    )
    assert call == SettlementCall(
        function=name,
        owner=proof.payment.owner.lower(),
        value=proof.payment.amount,
        deadline=proof.payment.deadline,
        recipient=proof.payment.recipient.lower(),
        nonce=proof.payment.nonce,
    )


def test_decode_calldata_from_hex_string():
    payment = create_mock_payment()
    call = decode_settlement_calldata("0x" + encode_settlement_calldata(payment).hex())
    assert call is not None and call.function == "settlePayment"


def test_unknown_selector_returns_none():
    transfer = bytes.fromhex("a9059cbb") + bytes(64)
    assert decode_settlement_calldata(transfer) is None


def test_short_or_garbled_calldata_raises():
    with pytest.raises(DecodingError):
        decode_settlement_calldata(b"\x01\x02")

    selector = function_abi_to_4byte_selector(get_settle_payment_with_permit_abi()[0])
    with pytest.raises(DecodingError):
        decode_settlement_calldata(selector + b"\x00" * 10)
