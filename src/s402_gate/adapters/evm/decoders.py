"""
Typed Decoders for Facilitator Logs and Call Data

The settlement verifier never inspects raw ABI bytes itself; it hands each
receipt log to ``decode_settlement_log`` and the transaction input to
``decode_settlement_calldata``.  Both decoders are built once, at import
time, from the ABI fragments in ``FACILITATOR_ABI``: event decoders are keyed
by topic0 and call decoders by 4-byte selector, so the set of recognised
shapes is closed and adding a shape means adding an ABI entry.

Decoded values are normalised for comparison: addresses are lowercase
0x-hex, ``bytes32`` values are lowercase 0x-hex, integers are ``int``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex
from eth_utils.abi import (
    collapse_if_tuple,
    event_abi_to_log_topic,
    function_abi_to_4byte_selector,
    get_abi_input_names,
    get_abi_input_types,
)

from .FACILITATOR_ABI import (
    get_payment_settled_event_abi,
    get_settle_payment_abi,
    get_settle_payment_with_permit_abi,
)


@dataclass(frozen=True)
class SettlementEvent:
    """A decoded ``PaymentSettled`` log."""
    sender: str
    recipient: str
    value: int
    platform_fee: int
    nonce: str
    token: Optional[str] = None


@dataclass(frozen=True)
class SettlementCall:
    """The payment struct embedded in a decoded settlement call."""
    function: str
    owner: str
    value: int
    deadline: int
    recipient: str
    nonce: str


# ---------------------------------------------------------------------------
# Byte helpers
# ---------------------------------------------------------------------------

def to_bytes(value: Any) -> bytes:
    """Accept ``bytes``/``HexBytes`` or a 0x-hex string and return ``bytes``."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return decode_hex(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def _hex(value: bytes) -> str:
    return encode_hex(bytes(value))


def _topic_address(topic: bytes) -> str:
    return _hex(topic[-20:])


# ---------------------------------------------------------------------------
# Event decoding
# ---------------------------------------------------------------------------

class _EventDecoder:
    """Decodes one ``PaymentSettled`` shape from (topics, data)."""

    def __init__(self, entry: Mapping[str, Any]) -> None:
        self.topic0 = bytes(event_abi_to_log_topic(entry))
        self.indexed: List[str] = [i["name"] for i in entry["inputs"] if i.get("indexed")]
        unindexed = [i for i in entry["inputs"] if not i.get("indexed")]
        self.data_names: List[str] = [i["name"] for i in unindexed]
        self.data_types: List[str] = [collapse_if_tuple(i) for i in unindexed]

    def decode(self, topics: Sequence[bytes], data: bytes) -> SettlementEvent:
        if len(topics) != len(self.indexed) + 1:
            raise DecodingError(
                f"Expected {len(self.indexed) + 1} topics, got {len(topics)}"
            )
        fields: Dict[str, Any] = {
            name: _topic_address(topic) for name, topic in zip(self.indexed, topics[1:])
        }
        fields.update(zip(self.data_names, decode(self.data_types, data)))
        return SettlementEvent(
            sender=fields["from"],
            recipient=fields["to"],
            value=int(fields["value"]),
            platform_fee=int(fields["platformFee"]),
            nonce=_hex(fields["nonce"]),
            token=fields.get("token"),
        )


_EVENT_DECODERS: Dict[bytes, _EventDecoder] = {
    decoder.topic0: decoder
    for decoder in (_EventDecoder(entry) for entry in get_payment_settled_event_abi())
}


def decode_settlement_log(log: Mapping[str, Any]) -> Optional[SettlementEvent]:
    """
    Decode a receipt log as a ``PaymentSettled`` event.

    Logs from other contracts or events (token ``Transfer``, ``Approval`` ...)
    are expected inside a settlement receipt and are skipped.

    Args:
        log: Receipt log mapping with ``topics`` and ``data``.

    Returns:
        The decoded event, or ``None`` when the log is not a well-formed
        ``PaymentSettled`` event of a known shape.
    """
    topics = [to_bytes(t) for t in log.get("topics") or []]
    if not topics:
        return None
    decoder = _EVENT_DECODERS.get(topics[0])
    if decoder is None:
        return None
    try:
        return decoder.decode(topics, to_bytes(log.get("data") or b""))
    except (DecodingError, ValueError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Call data decoding
# ---------------------------------------------------------------------------

class _CallDecoder:
    """Decodes one settlement function's arguments into named values."""

    def __init__(self, entry: Mapping[str, Any]) -> None:
        self.name: str = entry["name"]
        self.selector = bytes(function_abi_to_4byte_selector(entry))
        self.arg_names: List[str] = get_abi_input_names(entry)
        self.arg_types: List[str] = get_abi_input_types(entry)
        payment_input = next(i for i in entry["inputs"] if i["name"] == "payment")
        self.payment_fields: List[str] = [c["name"] for c in payment_input["components"]]

    def decode(self, args_data: bytes) -> SettlementCall:
        args = dict(zip(self.arg_names, decode(self.arg_types, args_data)))
        payment = dict(zip(self.payment_fields, args["payment"]))
        return SettlementCall(
            function=self.name,
            owner=payment["owner"].lower(),
            value=int(payment["value"]),
            deadline=int(payment["deadline"]),
            recipient=payment["recipient"].lower(),
            nonce=_hex(payment["nonce"]),
        )


_CALL_DECODERS: Dict[bytes, _CallDecoder] = {
    decoder.selector: decoder
    for decoder in (
        _CallDecoder(entry)
        for entry in get_settle_payment_abi() + get_settle_payment_with_permit_abi()
    )
}


def decode_settlement_calldata(data: Any) -> Optional[SettlementCall]:
    """
    Decode transaction input as ``settlePayment`` or ``settlePaymentWithPermit``.

    Args:
        data: Transaction ``input`` as bytes or 0x-hex string.

    Returns:
        The embedded payment struct, or ``None`` when the selector belongs to
        neither settlement function.

    Raises:
        DecodingError: If the input is shorter than a selector or the
            arguments do not decode against the function's ABI.
    """
    raw = to_bytes(data)
    if len(raw) < 4:
        raise DecodingError(f"Call data too short: {len(raw)} bytes")

    decoder = _CALL_DECODERS.get(raw[:4])
    if decoder is None:
        return None

    return decoder.decode(raw[4:])
