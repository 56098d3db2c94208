"""
S402 Facilitator Smart Contract ABI Module

ABI definitions for the facilitator's settlement entry points, its
``isPaymentUsed`` view and the ``PaymentSettled`` event.

Deployed facilitators emit ``PaymentSettled`` in one of two shapes, with or
without an indexed ``token`` topic.  Both are listed so event decoding works
against either deployment.
"""

from typing import Dict, Any, List


# (address owner, uint256 value, uint256 deadline, address recipient, bytes32 nonce)
PAYMENT_STRUCT_COMPONENTS: List[Dict[str, str]] = [
    {"name": "owner", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
    {"name": "recipient", "type": "address"},
    {"name": "nonce", "type": "bytes32"},
]

# (uint8 v, bytes32 r, bytes32 s)
SIGNATURE_STRUCT_COMPONENTS: List[Dict[str, str]] = [
    {"name": "v", "type": "uint8"},
    {"name": "r", "type": "bytes32"},
    {"name": "s", "type": "bytes32"},
]


def get_settle_payment_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for `settlePayment(payment, authSig)`.

    Used when the owner has already approved the facilitator for at least
    the payment value.
    """
    return [
        {
            "name": "settlePayment",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "payment", "type": "tuple", "components": PAYMENT_STRUCT_COMPONENTS},
                {"name": "authSig", "type": "tuple", "components": SIGNATURE_STRUCT_COMPONENTS},
            ],
            "outputs": [],
        }
    ]


def get_settle_payment_with_permit_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for `settlePaymentWithPermit(payment, permitSig, authSig)`.

    The facilitator submits the EIP-2612 permit to the token before pulling
    the funds, so no prior approval is needed.
    """
    return [
        {
            "name": "settlePaymentWithPermit",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "payment", "type": "tuple", "components": PAYMENT_STRUCT_COMPONENTS},
                {"name": "permitSig", "type": "tuple", "components": SIGNATURE_STRUCT_COMPONENTS},
                {"name": "authSig", "type": "tuple", "components": SIGNATURE_STRUCT_COMPONENTS},
            ],
            "outputs": [],
        }
    ]


def get_is_payment_used_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the `isPaymentUsed(owner, recipient, value, deadline, nonce)` view.
    """
    return [
        {
            "name": "isPaymentUsed",
            "type": "function",
            "stateMutability": "view",
            "inputs": [
                {"name": "owner", "type": "address"},
                {"name": "recipient", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
            "outputs": [{"name": "", "type": "bool"}],
        }
    ]


def get_payment_settled_event_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for both `PaymentSettled` event shapes.

    Returns:
        List[Dict[str, Any]]: ``PaymentSettled(from, to, value, platformFee, nonce)``
        followed by ``PaymentSettled(token, from, to, value, platformFee, nonce)``.
    """
    return [
        {
            "name": "PaymentSettled",
            "type": "event",
            "anonymous": False,
            "inputs": [
                {"name": "from", "type": "address", "indexed": True},
                {"name": "to", "type": "address", "indexed": True},
                {"name": "value", "type": "uint256", "indexed": False},
                {"name": "platformFee", "type": "uint256", "indexed": False},
                {"name": "nonce", "type": "bytes32", "indexed": False},
            ],
        },
        {
            "name": "PaymentSettled",
            "type": "event",
            "anonymous": False,
            "inputs": [
                {"name": "token", "type": "address", "indexed": True},
                {"name": "from", "type": "address", "indexed": True},
                {"name": "to", "type": "address", "indexed": True},
                {"name": "value", "type": "uint256", "indexed": False},
                {"name": "platformFee", "type": "uint256", "indexed": False},
                {"name": "nonce", "type": "bytes32", "indexed": False},
            ],
        },
    ]


def get_facilitator_abi() -> List[Dict[str, Any]]:
    """Full facilitator ABI used by the client's contract object."""
    return (
        get_settle_payment_abi()
        + get_settle_payment_with_permit_abi()
        + get_is_payment_used_abi()
    )
