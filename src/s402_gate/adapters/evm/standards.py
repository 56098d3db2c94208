from dataclasses import dataclass, field
from typing import Dict, Any, List


# -----------------------------
# EIP-712 Domain
# -----------------------------

@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.
    Used to prevent signature replay across domains.
    """
    name: str
    version: str
    chainId: int
    verifyingContract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
        }


EIP712_DOMAIN_TYPE: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

#: Type list advertised to clients in the 402 challenge body.
PAYMENT_AUTHORIZATION_TYPES: Dict[str, List[Dict[str, str]]] = {
    "PaymentAuthorization": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
        {"name": "recipient", "type": "address"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


# -----------------------------
# S402: Payment Authorization
# -----------------------------


@dataclass
class PaymentAuthorizationMessage:
    """
    Message payload for the facilitator's ``PaymentAuthorization`` type.

    ``spender`` is not part of the payment the caller sees; it is always the
    facilitator address (the domain's ``verifyingContract``), so a signature
    can only be redeemed through that contract.

    Attributes:
        owner: Address paying and signing.
        spender: Facilitator address allowed to move the funds.
        value: Amount in the token's smallest unit (uint256).
        deadline: Unix timestamp after which the authorization is void.
        recipient: Address receiving the funds.
        nonce: bytes32 hex string, fresh per challenge.
    """
    owner: str
    spender: str
    value: int
    deadline: int
    recipient: str
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "deadline": self.deadline,
            "recipient": self.recipient,
            "nonce": self.nonce,
        }


@dataclass
class PaymentAuthorizationTypedData:
    """
    Container for S402 typed data usable with EIP-712 signing routines.

    ``to_dict()`` yields ``{types, primaryType, domain, message}``, the
    layout consumed by ``eth_account.messages.encode_typed_data`` and
    ``eth_signTypedData_v4``.

    Attributes:
        domain: EIP712Domain of the facilitator.
        message: PaymentAuthorizationMessage carrying the payload.
        primary_type: Always "PaymentAuthorization".
        types: The typed definitions required by EIP-712 (automatically set).
    """
    domain: EIP712Domain
    message: PaymentAuthorizationMessage

    primary_type: str = "PaymentAuthorization"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": list(EIP712_DOMAIN_TYPE),
            "PaymentAuthorization": list(PAYMENT_AUTHORIZATION_TYPES["PaymentAuthorization"]),
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        """Return a dictionary compatible with EIP-712 structured signing."""
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


# -----------------------------
# EIP-2612: Permit
# -----------------------------


@dataclass
class EIP2612PermitTypedData:
    """
    EIP-712 typed-data container for an EIP-2612 ``permit`` approval.

    Signed by the payer when the facilitator's allowance is below the payment
    value; the facilitator submits it to the token in the same transaction
    as the settlement (``settlePaymentWithPermit``).

    Attributes:
        token_name:          Token's EIP-712 domain name ("USD1").
        token_version:       Token's EIP-712 domain version ("1").
        chain_id:            EVM network ID.
        verifying_contract:  Token contract address.
        owner:               Token holder granting the allowance.
        spender:             Facilitator address receiving the allowance.
        value:               Allowance in the token's smallest unit.
        nonce:               Token-side permit nonce for ``owner``.
        deadline:            Unix timestamp after which the permit is invalid.
    """

    token_name: str
    token_version: str
    chain_id: int
    verifying_contract: str
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": list(EIP712_DOMAIN_TYPE),
            "Permit": [
                {"name": "owner",    "type": "address"},
                {"name": "spender",  "type": "address"},
                {"name": "value",    "type": "uint256"},
                {"name": "nonce",    "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
            ],
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        """Return a dict compatible with EIP-712 structured signing."""
        return {
            "types": self.types,
            "primaryType": "Permit",
            "domain": {
                "name": self.token_name,
                "version": self.token_version,
                "chainId": self.chain_id,
                "verifyingContract": self.verifying_contract,
            },
            "message": {
                "owner": self.owner,
                "spender": self.spender,
                "value": self.value,
                "nonce": self.nonce,
                "deadline": self.deadline,
            },
        }
