"""
Built-in event handlers for the S402 gating workflow.

Implements the request state machine:

    ProofRequestEvent
        no proof            -> PaymentChallengeEvent (402)
        malformed proof     -> ProofRejectedEvent (400)
        wrong terms         -> ProofRejectedEvent (403)
        bad signature       -> ProofRejectedEvent (403)
        otherwise           -> SignatureVerifiedEvent
    SignatureVerifiedEvent
        async discipline    -> AccessGrantedEvent (verification in background),
                               or inline as below when the pool is full
        sync / optional     -> SettlementVerifiedEvent | SettlementFailedEvent
    SettlementVerifiedEvent -> AccessGrantedEvent
    SettlementFailedEvent   -> ProofRejectedEvent (403)

Under the optional discipline every rejection turns into an
``AccessGrantedEvent`` without a context.
"""

import json
import logging
import time
from typing import Any, List, Optional

from pydantic import ValidationError

from ..engine.events import (
    EventBus,
    Dependencies,
    VerificationMode,
    ProofRequestEvent,
    SignatureVerifiedEvent,
    SettlementVerifiedEvent,
    SettlementFailedEvent,
    PaymentChallengeEvent,
    ProofRejectedEvent,
    AccessGrantedEvent,
)
from ..engine.exceptions import (
    PaymentVerificationError,
    SchemaInvalidError,
    ParameterMismatchError,
    SignatureInvalidError,
    SettlementVerificationError,
)
from ..engine.workers import PoolSaturatedError
from ..adapters.evm.schemas import S402Proof, S402Context, SettlementResult
from ..adapters.evm.settlement import SettlementVerifier
from ..adapters.evm.verifies import verify_payment_signature
from ..schemas.https import ErrorResponsePayload
from .challenge import build_payment_challenge

logger = logging.getLogger(__name__)

REJECTION_DETAILS = (
    "Either the signature is invalid, payment parameters are incorrect, "
    "or the payment was not settled on-chain."
)


# ==================== Proof checks ====================

def parse_proof(raw: Any) -> S402Proof:
    """
    Validate the raw ``s402Proof`` body field.

    Raises:
        SchemaInvalidError: With pydantic's error list when the shape is wrong.
    """
    try:
        return S402Proof.model_validate(raw)
    except ValidationError as e:
        errors = json.loads(e.json(include_url=False))
        raise SchemaInvalidError("S402 proof has invalid format", errors=errors) from e


def validate_payment_parameters(
    proof: S402Proof,
    *,
    price: int,
    recipient: str,
    chain_id: int,
    expected_chain_id: int,
    now: Optional[int] = None,
) -> None:
    """
    Check the proof's terms against the route's current terms.

    Every failing field is collected before raising.

    Raises:
        ParameterMismatchError: Listing each failing field.
    """
    now = int(time.time()) if now is None else now
    payment = proof.payment
    fields: List[str] = []
    errors: List[str] = []

    if not proof.tx_hash:
        fields.append("txHash")
        errors.append("Transaction hash is required for verification")

    if payment.value != str(price):
        fields.append("value")
        errors.append(f"Invalid payment value: expected {price}, got {payment.value}")

    if payment.recipient.lower() != recipient.lower():
        fields.append("recipient")
        errors.append(f"Invalid recipient: expected {recipient}, got {payment.recipient}")

    if payment.deadline <= now:
        fields.append("deadline")
        errors.append(f"Payment deadline expired: {payment.deadline} <= {now}")

    if chain_id != expected_chain_id:
        fields.append("chainId")
        errors.append(f"Invalid chain ID: expected {expected_chain_id}, configured as {chain_id}")

    if fields:
        logger.warning("Proof validation failed", extra={"fields": fields, "owner": payment.owner})
        raise ParameterMismatchError(fields, errors)


def _rejection(error: PaymentVerificationError) -> ProofRejectedEvent:
    if isinstance(error, SchemaInvalidError):
        return ProofRejectedEvent(
            status_code=400,
            error=ErrorResponsePayload(
                error="INVALID_PROOF_FORMAT",
                message=error.message,
                details=error.errors,
            ),
        )
    return ProofRejectedEvent(
        status_code=403,
        error=ErrorResponsePayload(
            error="PAYMENT_VERIFICATION_FAILED",
            message=error.message,
            details=REJECTION_DETAILS,
            reason=error.reason,
            fields=error.fields if isinstance(error, ParameterMismatchError) else None,
        ),
    )


def _reject(
    error: PaymentVerificationError,
    mode: VerificationMode,
    route_key: str,
) -> ProofRejectedEvent | AccessGrantedEvent:
    if mode is VerificationMode.OPTIONAL:
        logger.warning(
            "Optional S402 validation failed, proceeding without context",
            extra={"route_key": route_key, "reason": error.reason, "error": error.message},
        )
        return AccessGrantedEvent(context=None)
    logger.warning(
        "S402 verification failed",
        extra={"route_key": route_key, "reason": error.reason, "error": error.message},
    )
    return _rejection(error)


async def verify_in_background(
    verifier: SettlementVerifier,
    context: S402Context,
    route_key: str,
) -> SettlementResult:
    """Run settlement verification for an already granted request and log the outcome."""
    result = await verifier.verify(context.tx_hash, context.payment)
    context.settlement = result
    if result.verified:
        logger.info(
            "Background blockchain verification completed successfully",
            extra={"tx_hash": context.tx_hash, "confirmations": result.confirmations, "route_key": route_key},
        )
    else:
        logger.warning(
            "Background blockchain verification failed (access already granted)",
            extra={
                "tx_hash": context.tx_hash,
                "reason": result.status.value,
                "error": result.error,
                "route_key": route_key,
            },
        )
    return result


# ==================== Event Handlers ====================

async def handle_proof_request(
    event: ProofRequestEvent,
    deps: Dependencies,
) -> PaymentChallengeEvent | ProofRejectedEvent | SignatureVerifiedEvent | AccessGrantedEvent:
    """Issue a challenge, or run the schema, parameter and signature checks."""
    settings = deps.settings
    price, recipient = deps.pricing.resolve(event.route_key)
    logger.debug(
        "S402 gate invoked",
        extra={"route_key": event.route_key, "price": price, "recipient": recipient, "mode": event.mode.value},
    )

    if event.proof is None:
        if event.mode is VerificationMode.OPTIONAL:
            return AccessGrantedEvent(context=None)
        challenge = build_payment_challenge(
            route_key=event.route_key,
            price=price,
            recipient=recipient,
            chain_id=settings.chain_id,
            facilitator=settings.facilitator,
            token=settings.token,
            owner=event.owner,
            domain=deps.domain,
        )
        logger.info("Returning 402 Payment Required", extra={"route_key": event.route_key, "owner": event.owner})
        return PaymentChallengeEvent(challenge=challenge)

    try:
        proof = parse_proof(event.proof)
        logger.info(
            "S402 proof submitted, beginning validation",
            extra={"route_key": event.route_key, "owner": proof.payment.owner, "nonce": proof.payment.nonce},
        )
        validate_payment_parameters(
            proof,
            price=price,
            recipient=recipient,
            chain_id=settings.chain_id,
            expected_chain_id=settings.expected_chain_id,
        )
        if not verify_payment_signature(proof.payment, proof.auth_sig, deps.domain):
            raise SignatureInvalidError("Invalid signature: EIP-712 signature verification failed")
    except PaymentVerificationError as e:
        return _reject(e, event.mode, event.route_key)

    return SignatureVerifiedEvent(route_key=event.route_key, mode=event.mode, proof=proof)


async def handle_signature_verified(
    event: SignatureVerifiedEvent,
    deps: Dependencies,
) -> AccessGrantedEvent | SettlementVerifiedEvent | SettlementFailedEvent:
    """Verify settlement inline, or hand it to the background pool under the async discipline."""
    payment = event.proof.payment
    context = S402Context(
        owner=payment.owner,
        value=payment.amount,
        payment=payment,
        tx_hash=event.proof.tx_hash,
    )

    if event.mode is VerificationMode.ASYNC:
        try:
            context.verification = deps.pool.submit(
                verify_in_background(deps.verifier, context, event.route_key),
                name=f"s402-verify-{context.tx_hash}",
            )
        except PoolSaturatedError:
            logger.warning(
                "Background pool full, verifying inline",
                extra={"route_key": event.route_key, "tx_hash": context.tx_hash},
            )
        else:
            context.verified_async = True
            logger.info(
                "Payment accepted, blockchain verification running in background",
                extra={"route_key": event.route_key, "owner": context.owner, "value": context.value, "nonce": payment.nonce},
            )
            return AccessGrantedEvent(context=context)

    logger.debug("Verifying transaction on-chain", extra={"tx_hash": context.tx_hash, "nonce": payment.nonce})
    result = await deps.verifier.verify(context.tx_hash, payment)
    if not result.verified:
        return SettlementFailedEvent(route_key=event.route_key, mode=event.mode, result=result)

    context.settlement = result
    logger.info(
        "Payment verified, granting access",
        extra={
            "route_key": event.route_key,
            "owner": context.owner,
            "value": context.value,
            "tx_hash": context.tx_hash,
            "confirmations": result.confirmations,
        },
    )
    return SettlementVerifiedEvent(context=context)


async def handle_settlement_verified(
    event: SettlementVerifiedEvent,
    deps: Dependencies,
) -> AccessGrantedEvent:
    return AccessGrantedEvent(context=event.context)


async def handle_settlement_failed(
    event: SettlementFailedEvent,
    deps: Dependencies,
) -> ProofRejectedEvent | AccessGrantedEvent:
    result = event.result
    error = SettlementVerificationError(
        result.error or "unknown error",
        reason=result.status.value,
        confirmations=result.confirmations,
    )
    return _reject(error, event.mode, event.route_key)


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize an event bus with the built-in gating handlers."""
    event_bus = EventBus()
    event_bus.subscribe(ProofRequestEvent, handle_proof_request)
    event_bus.subscribe(SignatureVerifiedEvent, handle_signature_verified)
    event_bus.subscribe(SettlementVerifiedEvent, handle_settlement_verified)
    event_bus.subscribe(SettlementFailedEvent, handle_settlement_failed)
    return event_bus
