"""
EVM Adapter Schema Models

Pydantic models for S402 payment proofs and their verification.  All
classes inherit from the base schema hierarchy in ``schemas.bases``.

Payment classes:
    - PaymentData: The PaymentAuthorization terms a caller signs.
    - EVMECDSASignature: v/r/s signature for the payment authorization or an
      EIP-2612 permit (use ``signature_type`` to distinguish).
    - S402Proof: Everything a caller submits to pass the gate.

Result / confirmation classes:
    - SettlementResult: On-chain settlement verification outcome.
    - EVMTransactionConfirmation: Client-side settlement transaction receipt.

Request context:
    - S402Context: Attached to a granted request, handed to the protected handler.
"""

import asyncio
from typing import Optional, Dict, Any, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field
from web3 import Web3

from ...schemas.bases import (
    BaseSignature,
    BaseVerificationResult,
    BaseTransactionConfirmation,
    CanonicalModel,
    VerificationStatus,
)

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
BYTES32_PATTERN = r"^0x[0-9a-fA-F]{64}$"


class EVMECDSASignature(BaseSignature):
    """
    EVM ECDSA signature (v, r, s).

    Use ``signature_type`` to identify the signing standard:

    * ``"S402Authorization"``: facilitator ``PaymentAuthorization`` (EIP-712).
    * ``"EIP2612"``: token ``permit()`` approval.

    The type tag is local bookkeeping and never sent on the wire; see
    ``to_wire``.

    Attributes:
        signature_type: One of ``"S402Authorization"``, ``"EIP2612"``.
        v: ECDSA recovery ID (27 or 28).
        r: r component, 0x-prefixed 64-char hex string.
        s: s component, 0x-prefixed 64-char hex string.

    Example::

        sig = EVMECDSASignature(v=27, r="0x" + "a" * 64, s="0x" + "b" * 64)
        sig.validate_format()
    """

    signature_type: Literal["S402Authorization", "EIP2612"] = Field(
        default="S402Authorization", description="Signing standard", exclude=True
    )
    v: int = Field(..., ge=27, le=28, description="ECDSA recovery ID (27 or 28)")
    r: str = Field(..., pattern=BYTES32_PATTERN, description="Signature r component (0x + 64 hex chars)")
    s: str = Field(..., pattern=BYTES32_PATTERN, description="Signature s component (0x + 64 hex chars)")

    def validate_format(self) -> bool:
        """
        Validate v/r/s components.

        Returns:
            True when all components pass.

        Raises:
            ValueError: Descriptive message on the first failed check.
        """
        if self.v not in (27, 28):
            raise ValueError(f"Invalid recovery ID: {self.v}. Must be 27 or 28")

        for name, val in [("r", self.r), ("s", self.s)]:
            hex_str = val[2:] if val[:2].lower() == "0x" else val
            if len(hex_str) != 64:
                raise ValueError(f"Invalid {name}: expected 64 hex chars, got {len(hex_str)}")
            try:
                int(hex_str, 16)
            except ValueError:
                raise ValueError(f"Invalid {name}: not valid hexadecimal")

        return True

    def to_vrs(self) -> Tuple[int, int, int]:
        """Return ``(v, r, s)`` as integers, the form ``Account.recover_message`` takes."""
        return self.v, int(self.r, 16), int(self.s, 16)

    def to_contract_tuple(self) -> Tuple[int, bytes, bytes]:
        """Return ``(v, r, s)`` as ABI values for the facilitator's ``(uint8,bytes32,bytes32)`` struct."""
        return self.v, bytes.fromhex(self.r[2:]), bytes.fromhex(self.s[2:])

    def to_packed_hex(self) -> str:
        """
        Encode v/r/s into a packed 65-byte hex string (``r || s || v``).

        Returns:
            0x-prefixed 132-character hex string.
        """
        self.validate_format()
        return "0x" + self.r[2:] + self.s[2:] + format(self.v, "02x")

    def to_wire(self) -> Dict[str, Any]:
        return {"v": self.v, "r": self.r, "s": self.s}


class PaymentData(CanonicalModel):
    """
    S402 payment authorization terms.

    Issued by the gate in a 402 challenge, filled in with ``owner`` and signed
    by the caller, then echoed back inside an ``S402Proof``.

    Attributes:
        owner: Payer address (zero address in a challenge with no declared owner).
        value: Amount in the token's smallest unit, as a decimal string.
        deadline: Unix timestamp after which the authorization is void.
        recipient: Address receiving the funds.
        nonce: bytes32 hex string, fresh per challenge.
    """

    owner: str = Field(..., pattern=ADDRESS_PATTERN, description="Payer address")
    value: str = Field(..., pattern=r"^\d+$", description="Amount in smallest units (decimal string)")
    deadline: int = Field(..., gt=0, description="Unix timestamp deadline")
    recipient: str = Field(..., pattern=ADDRESS_PATTERN, description="Payee address")
    nonce: str = Field(..., pattern=BYTES32_PATTERN, description="bytes32 nonce")

    @property
    def amount(self) -> int:
        """``value`` as an integer."""
        return int(self.value)

    def to_contract_tuple(self) -> Tuple[str, int, int, str, bytes]:
        """
        ABI values for the facilitator's payment struct
        ``(address owner, uint256 value, uint256 deadline, address recipient, bytes32 nonce)``.
        """
        return (
            Web3.to_checksum_address(self.owner),
            self.amount,
            self.deadline,
            Web3.to_checksum_address(self.recipient),
            bytes.fromhex(self.nonce[2:]),
        )


class S402Proof(CanonicalModel):
    """
    Proof of payment submitted in the ``s402Proof`` body field.

    Attributes:
        payment: The signed PaymentData.
        auth_sig: Signature over the PaymentAuthorization (wire name ``authSig``).
        permit_sig: Optional EIP-2612 permit signature (wire name ``permitSig``).
        tx_hash: Settlement transaction hash (wire name ``txHash``); required by
                 every discipline that verifies on-chain.
    """

    payment: PaymentData
    auth_sig: EVMECDSASignature = Field(..., alias="authSig")
    permit_sig: Optional[EVMECDSASignature] = Field(None, alias="permitSig")
    tx_hash: Optional[str] = Field(None, alias="txHash", pattern=BYTES32_PATTERN)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase wire names, omitting absent optionals."""
        wire: Dict[str, Any] = {
            "payment": self.payment.to_dict(),
            "authSig": self.auth_sig.to_wire(),
        }
        if self.permit_sig is not None:
            wire["permitSig"] = self.permit_sig.to_wire()
        if self.tx_hash is not None:
            wire["txHash"] = self.tx_hash
        return wire


class SettlementResult(BaseVerificationResult):
    """
    Outcome of verifying a settlement transaction on-chain.

    ``status`` carries the failure reason; ``message`` carries the short
    error text callers see (e.g. ``"Insufficient confirmations: 1/2"``).

    Attributes:
        verification_type: Always ``"evm_settlement"``.
        tx_hash:           Transaction hash that was checked.
        confirmations:     Confirmations observed (0 when not found or on provider error).
        verified_via:      ``"event"`` or ``"calldata"`` when verified.
    """

    verification_type: Literal["evm_settlement"] = Field(default="evm_settlement", description="Verification type identifier")
    tx_hash: Optional[str] = Field(None, description="Settlement transaction hash")
    confirmations: int = Field(default=0, ge=0, description="Block confirmations observed")
    verified_via: Optional[Literal["event", "calldata"]] = Field(None, description="Path that matched the payment")

    @property
    def verified(self) -> bool:
        return self.is_success()

    @property
    def reason(self) -> Optional[VerificationStatus]:
        return None if self.is_success() else self.status

    @property
    def error(self) -> Optional[str]:
        return None if self.is_success() else self.message


class EVMTransactionConfirmation(BaseTransactionConfirmation):
    """
    Settlement transaction sent by the client.

    Returned by ``S402Client.settle_payment``.  When the client runs in async
    mode the transaction is only broadcast, ``status`` is ``PENDING`` and the
    receipt fields are empty.

    Attributes:
        confirmation_type: Always "evm"
        tx_hash: Transaction hash (0x-prefixed hex string)
        method: Facilitator function that was called
        block_number: Block number containing transaction
        gas_used: Actual gas consumed by transaction
        from_address: Transaction sender address
        to_address: Facilitator address
    """

    confirmation_type: Literal["evm"] = Field(default="evm", description="Confirmation type identifier")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string)")
    method: Literal["settlePayment", "settlePaymentWithPermit"] = Field(..., description="Facilitator function called")
    block_number: Optional[int] = Field(None, ge=0, description="Block number containing transaction")
    gas_used: Optional[int] = Field(None, ge=0, description="Actual gas consumed by transaction")
    from_address: Optional[str] = Field(None, description="Transaction sender address")
    to_address: Optional[str] = Field(None, description="Transaction receiver/contract address")


class S402Context(BaseModel):
    """
    Verification context attached to a granted request.

    Created once per request and discarded with it.  Under the async
    discipline ``verification`` is the background task that resolves to a
    ``SettlementResult``; it is informational and never revokes access.
    """

    owner: str
    value: int
    payment: PaymentData
    tx_hash: Optional[str] = None
    verified_async: bool = False
    verification: Optional[asyncio.Future] = None
    settlement: Optional[SettlementResult] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"S402Context(owner={self.owner}, value={self.value}, tx_hash={self.tx_hash}, async={self.verified_async})"
