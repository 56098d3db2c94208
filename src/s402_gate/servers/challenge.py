"""
402 challenge construction.

A challenge carries fresh payment terms (32-byte random nonce, deadline ten
minutes out) together with the EIP-712 domain and types the caller needs to
sign them.
"""

import logging
import secrets
import time
from typing import Optional

from ..adapters.evm.constants import CHALLENGE_WINDOW_SECONDS, ZERO_ADDRESS, is_valid_evm_address
from ..adapters.evm.schemas import PaymentData
from ..adapters.evm.signatures import build_s402_domain
from ..adapters.evm.standards import EIP712Domain, PAYMENT_AUTHORIZATION_TYPES
from ..schemas.https import Server402ResponsePayload, TypedDataDescriptor

logger = logging.getLogger(__name__)


def generate_nonce() -> str:
    """Return a random bytes32 as 0x-prefixed hex."""
    return "0x" + secrets.token_hex(32)


def build_payment_request(
    *,
    price: int,
    recipient: str,
    owner: Optional[str] = None,
    now: Optional[int] = None,
) -> PaymentData:
    """
    Create unsigned payment terms for one attempt.

    An ``owner`` that is not a valid address is ignored and the zero address
    is used instead; the caller fills in its own address before signing.
    """
    if owner is not None and not is_valid_evm_address(owner):
        logger.debug("Ignoring malformed owner in challenge request", extra={"owner": owner})
        owner = None
    issued_at = int(time.time()) if now is None else now
    return PaymentData(
        owner=owner or ZERO_ADDRESS,
        value=str(price),
        deadline=issued_at + CHALLENGE_WINDOW_SECONDS,
        recipient=recipient,
        nonce=generate_nonce(),
    )


def build_payment_challenge(
    *,
    route_key: str,
    price: int,
    recipient: str,
    chain_id: int,
    facilitator: str,
    token: str,
    owner: Optional[str] = None,
    domain: Optional[EIP712Domain] = None,
    now: Optional[int] = None,
) -> Server402ResponsePayload:
    """
    Build the 402 body for ``route_key``.

    Args:
        route_key: Route identifier echoed back as ``routeKey``.
        price: Resolved price in smallest units.
        recipient: Resolved payee.
        chain_id: Chain of the facilitator.
        facilitator: Settlement contract (also the verifying contract).
        token: Payment token.
        owner: Caller-declared payer, if any.
        domain: Pre-built domain; derived from ``chain_id``/``facilitator`` if omitted.
        now: Issue time override in unix seconds.

    Returns:
        ``Server402ResponsePayload`` ready to serialize with ``to_dict()``.
    """
    payment = build_payment_request(price=price, recipient=recipient, owner=owner, now=now)
    domain = domain or build_s402_domain(chain_id=chain_id, facilitator=facilitator)

    logger.debug(
        "Built payment request",
        extra={"route_key": route_key, "value": payment.value, "deadline": payment.deadline, "nonce": payment.nonce},
    )

    return Server402ResponsePayload(
        facilitator=facilitator,
        token=token,
        chainId=chain_id,
        routeKey=route_key,
        payment=payment,
        typedData=TypedDataDescriptor(domain=domain, types=PAYMENT_AUTHORIZATION_TYPES),
    )
