"""
HTTP Request/Response Schema Models for the S402 Payment Protocol

This module defines the Pydantic models exchanged between a caller and a
gated endpoint.  The flow consists of:

1. Caller requests a gated route without a proof and receives a 402 with a
   ``Server402ResponsePayload`` (the challenge)
2. Caller signs the payment, settles it on-chain through the facilitator
3. Caller repeats the request with ``s402Proof`` in the JSON body
4. The gate either runs the handler or answers with an
   ``ErrorResponsePayload`` (400 for malformed proofs, 403 for rejected ones)

Wire names are camelCase; models accept either form on input.
"""

from typing import Optional, List, Dict, Any, Literal

from pydantic import Field

from .bases import CanonicalModel
from ..adapters.evm.schemas import PaymentData
from ..adapters.evm.standards import EIP712Domain


# ============================================================================
# Step 1: Server's 402 Payment Required Response
# ============================================================================

class TypedDataDescriptor(CanonicalModel):
    """EIP-712 domain and type list the caller must sign with.

    Attributes:
        domain: Facilitator domain (name, version, chainId, verifyingContract).
        types: ``{"PaymentAuthorization": [...]}`` field list.
    """
    domain: EIP712Domain
    types: Dict[str, List[Dict[str, str]]]


class Server402ResponsePayload(CanonicalModel):
    """Challenge returned with status 402 when a gated route is called without a proof.

    Attributes:
        error: Always ``"PAYMENT_REQUIRED"``.
        message: Human-readable instruction.
        facilitator: Settlement contract address (also the EIP-712 verifying contract).
        token: Token the payment is denominated in.
        chain_id: Chain the facilitator lives on (wire name ``chainId``).
        route_key: Route identifier the price was resolved for (wire name ``routeKey``).
        payment: Unsigned payment terms with a fresh nonce and deadline.
        typed_data: Domain and types for signing (wire name ``typedData``).
    """
    error: Literal["PAYMENT_REQUIRED"] = "PAYMENT_REQUIRED"
    message: str = Field(default="Payment required via S402.")
    facilitator: str
    token: str
    chain_id: int = Field(..., alias="chainId")
    route_key: str = Field(..., alias="routeKey")
    payment: PaymentData
    typed_data: TypedDataDescriptor = Field(..., alias="typedData")


# ============================================================================
# Step 3: Rejections
# ============================================================================

class ErrorResponsePayload(CanonicalModel):
    """Body of a 400 or 403 rejection.

    Attributes:
        error: ``"INVALID_PROOF_FORMAT"`` or ``"PAYMENT_VERIFICATION_FAILED"``.
        message: What failed.
        details: Pydantic error list (400) or an explanation (403).
        reason: Machine-readable failure reason (403 only).
        fields: Failing payment fields for parameter mismatches.
    """
    error: str
    message: str
    details: Optional[Any] = None
    reason: Optional[str] = None
    fields: Optional[List[str]] = None
