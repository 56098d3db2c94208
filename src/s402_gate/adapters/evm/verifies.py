"""
EVM Signature Verification Helpers

Off-chain verification of the S402 ``PaymentAuthorization`` signature.  All
cryptographic operations are performed in-process using ``eth_account``;
nothing here touches the network.

Current coverage
----------------
verify_payment_signature
    Rebuild the EIP-712 typed data from a ``PaymentData`` (with ``spender``
    forced to the facilitator), recover the signer from (v, r, s) and
    confirm it matches ``payment.owner``.

compute_payment_hash
    ``keccak256(abi.encodePacked(owner, value, deadline, recipient, nonce))``,
    a stable identifier for a payment in logs.
"""

import logging

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .standards import EIP712Domain
from .schemas import EVMECDSASignature, PaymentData
from .signatures import build_payment_typed_data

logger = logging.getLogger(__name__)


def recover_payment_signer(
    payment: PaymentData,
    signature: EVMECDSASignature,
    domain: EIP712Domain,
) -> str:
    """
    Recover the address that signed ``payment`` under ``domain``.

    Raises:
        Exception: Whatever ``eth_account`` raises for malformed input or an
            unrecoverable signature.
    """
    typed_data = build_payment_typed_data(payment, domain)
    signable = encode_typed_data(full_message=typed_data.to_dict())
    return Account.recover_message(signable, vrs=signature.to_vrs())


def verify_payment_signature(
    payment: PaymentData,
    signature: EVMECDSASignature,
    domain: EIP712Domain,
) -> bool:
    """
    Verify an S402 ``PaymentAuthorization`` signature.

    The typed data is rebuilt from ``payment`` with ``spender`` set to
    ``domain.verifyingContract``, hashed per EIP-712, and the signer is
    recovered from (v, r, s).  Verification succeeds only when the recovered
    address equals ``payment.owner`` (case-insensitive).

    Mutating any field of ``payment`` after signing, or signing under a
    different domain, changes the digest and therefore the recovered
    address.

    Args:
        payment:   The payment terms as submitted by the caller.
        signature: The caller's ``authSig``.
        domain:    The facilitator domain the gate expects.

    Returns:
        ``True`` if the signature is valid for ``payment.owner``, ``False``
        otherwise.  Recovery errors are reported as ``False``.

    Example::

        domain = build_s402_domain(chain_id=56, facilitator=S402_FACILITATOR)
        assert verify_payment_signature(proof.payment, proof.auth_sig, domain)
    """
    try:
        recovered = recover_payment_signer(payment, signature, domain)
    except Exception as e:
        logger.warning(
            "Signature recovery failed",
            extra={"owner": payment.owner, "error": str(e)},
        )
        return False

    if recovered.lower() != payment.owner.lower():
        logger.warning(
            "EIP-712 signature verification failed: signer mismatch",
            extra={"expected": payment.owner, "recovered": recovered},
        )
        return False

    logger.debug("EIP-712 signature verified", extra={"owner": payment.owner})
    return True


def compute_payment_hash(payment: PaymentData) -> str:
    """
    Compute ``keccak256(abi.encodePacked(owner, value, deadline, recipient, nonce))``.

    This is a reference identifier for logging and debugging; the facilitator
    computes its own canonical hash on-chain.

    Returns:
        0x-prefixed 64-character hex string.
    """
    digest = Web3.solidity_keccak(
        ["address", "uint256", "uint256", "address", "bytes32"],
        [
            Web3.to_checksum_address(payment.owner),
            payment.amount,
            payment.deadline,
            Web3.to_checksum_address(payment.recipient),
            bytes.fromhex(payment.nonce[2:]),
        ],
    )
    return Web3.to_hex(digest)
