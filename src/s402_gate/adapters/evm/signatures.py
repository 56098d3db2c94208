"""
EVM Signing and Settlement Utilities

Client-side helpers for the S402 flow.  Signing is performed in-process
with ``eth_account``; the on-chain helpers read token state and send the
facilitator's settlement transaction through an ``AsyncWeb3`` instance.

Exported helpers
----------------
build_s402_domain
    The facilitator's EIP-712 domain for a chain.

build_payment_typed_data
    Wrap a ``PaymentData`` in a ``PaymentAuthorizationTypedData`` envelope
    with ``spender`` forced to the domain's verifying contract.  Shared with
    the verifier so both sides hash exactly the same structure.

sign_payment_authorization
    Sign the PaymentAuthorization and return an ``EVMECDSASignature``.

sign_permit
    Sign an EIP-2612 permit granting the facilitator an allowance.

query_erc20_allowance / query_permit_nonce
    Token reads the client performs before choosing a settlement method.

send_settlement_transaction
    Build, sign and broadcast ``settlePayment`` or ``settlePaymentWithPermit``.
"""

import logging
from dataclasses import replace
from typing import Optional

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception

from .standards import (
    EIP712Domain,
    PaymentAuthorizationMessage,
    PaymentAuthorizationTypedData,
    EIP2612PermitTypedData,
)
from .schemas import EVMECDSASignature, EVMTransactionConfirmation, PaymentData
from .constants import S402_DOMAIN_NAME, S402_DOMAIN_VERSION
from .ERC20_ABI import get_allowance_abi, get_nonces_abi
from .FACILITATOR_ABI import get_facilitator_abi
from ...schemas.bases import TransactionStatus
from ...engine.exceptions import PaymentSettlementError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed-data builders
# ---------------------------------------------------------------------------

def build_s402_domain(*, chain_id: int, facilitator: str) -> EIP712Domain:
    """Return the facilitator's EIP-712 domain (``S402Facilitator`` v1) on ``chain_id``."""
    return EIP712Domain(
        name=S402_DOMAIN_NAME,
        version=S402_DOMAIN_VERSION,
        chainId=chain_id,
        verifyingContract=facilitator,
    )


def build_payment_typed_data(
    payment: PaymentData,
    domain: EIP712Domain,
) -> PaymentAuthorizationTypedData:
    """
    Wrap ``payment`` in an EIP-712 ``PaymentAuthorizationTypedData`` envelope.

    ``spender`` is always ``domain.verifyingContract``.  Addresses, the
    domain's included, are lowercased so mixed-case input with a bad
    checksum still hashes to the same 20 bytes.

    Args:
        payment: Payment terms (``owner`` already filled in).
        domain:  Facilitator domain from ``build_s402_domain`` or a 402 challenge.

    Returns:
        ``PaymentAuthorizationTypedData`` whose ``to_dict()`` is compatible with
        ``eth_account`` and ``eth_signTypedData_v4``.
    """
    message = PaymentAuthorizationMessage(
        owner=payment.owner.lower(),
        spender=domain.verifyingContract.lower(),
        value=payment.amount,
        deadline=payment.deadline,
        recipient=payment.recipient.lower(),
        nonce=payment.nonce,
    )
    return PaymentAuthorizationTypedData(
        domain=replace(domain, verifyingContract=domain.verifyingContract.lower()),
        message=message,
    )


# ---------------------------------------------------------------------------
# Signers
# ---------------------------------------------------------------------------

def _signature_from(signed, signature_type: str) -> EVMECDSASignature:
    return EVMECDSASignature(
        signature_type=signature_type,
        v=signed.v,
        r="0x" + format(signed.r, "064x"),
        s="0x" + format(signed.s, "064x"),
    )


def sign_payment_authorization(
    *,
    private_key: str,
    payment: PaymentData,
    domain: EIP712Domain,
) -> EVMECDSASignature:
    """
    Sign an S402 ``PaymentAuthorization``.

    Args:
        private_key: Hex-encoded secp256k1 key of ``payment.owner``.
        payment:     Payment terms with ``owner`` set to the signer's address.
        domain:      Facilitator EIP-712 domain.

    Returns:
        ``EVMECDSASignature`` with ``signature_type="S402Authorization"``.

    Example::

        domain = build_s402_domain(chain_id=56, facilitator=S402_FACILITATOR)
        auth_sig = sign_payment_authorization(
            private_key="0x...", payment=payment, domain=domain
        )
    """
    typed_data = build_payment_typed_data(payment, domain)
    signed = Account.sign_typed_data(private_key, full_message=typed_data.to_dict())
    return _signature_from(signed, "S402Authorization")


def sign_permit(
    *,
    private_key: str,
    token: str,
    chain_id: int,
    spender: str,
    value: int,
    deadline: int,
    nonce: int,
    token_name: str = "USD1",
    token_version: str = "1",
) -> EVMECDSASignature:
    """
    Sign an EIP-2612 ``permit`` for exactly ``value``.

    Args:
        private_key:   Token holder's key; the owner is derived from it.
        token:         Token contract address (permit ``verifyingContract``).
        chain_id:      EVM network ID.
        spender:       Facilitator address receiving the allowance.
        value:         Allowance in smallest units.
        deadline:      Permit deadline (the payment deadline in the S402 flow).
        nonce:         Current ``nonces(owner)`` value on the token.
        token_name:    Token EIP-712 domain name.
        token_version: Token EIP-712 domain version.

    Returns:
        ``EVMECDSASignature`` with ``signature_type="EIP2612"``.
    """
    owner = Account.from_key(private_key).address
    typed_data = EIP2612PermitTypedData(
        token_name=token_name,
        token_version=token_version,
        chain_id=chain_id,
        verifying_contract=token.lower(),
        owner=owner.lower(),
        spender=spender.lower(),
        value=value,
        nonce=nonce,
        deadline=deadline,
    )
    signed = Account.sign_typed_data(private_key, full_message=typed_data.to_dict())
    return _signature_from(signed, "EIP2612")


# ---------------------------------------------------------------------------
# Token reads
# ---------------------------------------------------------------------------

async def query_erc20_allowance(w3: AsyncWeb3, token_addr: str, owner: str, spender: str) -> int:
    """
    Retrieve the amount of tokens ``owner`` allowed ``spender`` to withdraw.

    Args:
        w3: The AsyncWeb3 instance connected to the target chain.
        token_addr: The ERC20 token contract address.
        owner: The token holder.
        spender: The address authorized to spend (the facilitator).

    Returns:
        int: The remaining allowance in the token's base units.

    Raises:
        Web3Exception: If the contract call fails or the node returns an error.
    """
    contract = w3.eth.contract(address=w3.to_checksum_address(token_addr), abi=get_allowance_abi())
    try:
        allowance = await contract.functions.allowance(
            w3.to_checksum_address(owner), w3.to_checksum_address(spender)
        ).call()
    except Web3Exception as e:
        raise Web3Exception(
            f"Failed to query allowance for token {token_addr}. "
            f"Owner: {owner}, Spender: {spender}. Error: {e}"
        ) from e
    return int(allowance)


async def query_permit_nonce(w3: AsyncWeb3, token_addr: str, owner: str) -> int:
    """Return the token's EIP-2612 ``nonces(owner)``."""
    contract = w3.eth.contract(address=w3.to_checksum_address(token_addr), abi=get_nonces_abi())
    return int(await contract.functions.nonces(w3.to_checksum_address(owner)).call())


# ---------------------------------------------------------------------------
# Settlement transaction
# ---------------------------------------------------------------------------

async def send_settlement_transaction(
    w3: AsyncWeb3,
    *,
    facilitator: str,
    private_key: str,
    payment: PaymentData,
    auth_sig: EVMECDSASignature,
    permit_sig: Optional[EVMECDSASignature] = None,
    wait: bool = True,
    timeout: float = 120,
) -> EVMTransactionConfirmation:
    """
    Sign and broadcast the facilitator settlement transaction.

    Calls ``settlePaymentWithPermit`` when ``permit_sig`` is given, otherwise
    ``settlePayment``.

    Args:
        w3: An instance of AsyncWeb3.
        facilitator: Facilitator contract address.
        private_key: Hex private key of the payer (transaction sender).
        payment: Signed payment terms.
        auth_sig: Signature over the PaymentAuthorization.
        permit_sig: Optional EIP-2612 permit signature.
        wait: If True, waits for one confirmation before returning.
        timeout: Receipt wait timeout in seconds.

    Returns:
        ``EVMTransactionConfirmation``; ``PENDING`` when ``wait`` is False.

    Raises:
        PaymentSettlementError: If the transaction reverts or cannot be sent.
    """
    if not private_key:
        raise ValueError("Private key is required for signing.")

    account = Account.from_key(private_key)
    sender_addr = account.address
    contract = w3.eth.contract(address=w3.to_checksum_address(facilitator), abi=get_facilitator_abi())

    if permit_sig is not None:
        method = "settlePaymentWithPermit"
        call = contract.functions.settlePaymentWithPermit(
            payment.to_contract_tuple(),
            permit_sig.to_contract_tuple(),
            auth_sig.to_contract_tuple(),
        )
    else:
        method = "settlePayment"
        call = contract.functions.settlePayment(
            payment.to_contract_tuple(),
            auth_sig.to_contract_tuple(),
        )

    nonce = await w3.eth.get_transaction_count(sender_addr)
    chain_id = await w3.eth.chain_id

    tx_params = {
        "chainId": chain_id,
        "from": sender_addr,
        "nonce": nonce,
    }

    # 10% buffer over the estimate
    try:
        gas_estimate = await call.estimate_gas({"from": sender_addr})
        tx_params["gas"] = int(gas_estimate * 1.1)
    except Web3Exception as e:
        raise PaymentSettlementError(f"{method} would revert: {e}") from e

    try:
        fee_history = await w3.eth.fee_history(1, "latest", [25.0])
        base_fee = fee_history["baseFeePerGas"][-1]
        priority_fee = fee_history["reward"][0][0]
        tx_params["maxPriorityFeePerGas"] = priority_fee
        tx_params["maxFeePerGas"] = (base_fee * 2) + priority_fee
    except (Web3Exception, KeyError, IndexError):
        # Fallback to legacy gas price
        tx_params["gasPrice"] = await w3.eth.gas_price

    transaction = await call.build_transaction(tx_params)
    signed_tx = w3.eth.account.sign_transaction(transaction, private_key)
    tx_hash = await w3.eth.send_raw_transaction(signed_tx.raw_transaction)
    tx_hex = w3.to_hex(tx_hash)

    logger.info(
        "Settlement transaction broadcast",
        extra={"tx_hash": tx_hex, "method": method, "owner": payment.owner, "wait": wait},
    )

    if not wait:
        return EVMTransactionConfirmation(
            status=TransactionStatus.PENDING,
            tx_hash=tx_hex,
            method=method,
            from_address=sender_addr,
            to_address=facilitator,
        )

    try:
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    except Web3Exception as e:
        raise PaymentSettlementError(f"Timed out waiting for {tx_hex}: {e}", tx_hash=tx_hex) from e

    if receipt["status"] != 1:
        raise PaymentSettlementError(f"Transaction failed: {tx_hex}", tx_hash=tx_hex)

    return EVMTransactionConfirmation(
        status=TransactionStatus.SUCCESS,
        confirmations=1,
        tx_hash=tx_hex,
        method=method,
        block_number=receipt["blockNumber"],
        gas_used=receipt.get("gasUsed"),
        from_address=sender_addr,
        to_address=facilitator,
    )
