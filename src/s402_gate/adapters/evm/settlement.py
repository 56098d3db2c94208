"""
On-Chain Settlement Verification

Confirms that a transaction hash settles a specific ``PaymentData`` through
the S402 facilitator.  Checks run in order and stop at the first failure:

1. **Receipt**: the transaction must be mined.
2. **Depth**: ``head - receipt.blockNumber + 1`` must reach the configured
   minimum confirmations.
3. **Status**: the receipt must report success.
4. **Target**: the transaction must have been sent to the facilitator.
5. **Events**: a ``PaymentSettled`` log matching sender, recipient, nonce
   and value (net or gross of the platform fee) verifies the payment.
6. **Call data**: failing that, the transaction input is decoded as a
   settlement call whose payment struct must match exactly, and the
   transaction sender must be the owner.

The verifier never raises: any unexpected error (RPC failure, timeout) is
reported as ``PROVIDER_ERROR`` so a transient hiccup degrades to "not yet
verified".  Re-running ``verify`` on the same inputs is safe; a result
that failed on depth becomes verified once the chain has advanced.
"""

import logging
from typing import Any, Dict, Optional

from eth_abi.exceptions import DecodingError

from .chain import ChainClient
from .decoders import decode_settlement_calldata, decode_settlement_log
from .schemas import PaymentData, SettlementResult
from ...schemas.bases import VerificationStatus

logger = logging.getLogger(__name__)


class SettlementVerifier:
    """
    Verifies S402 settlement transactions against expected payments.

    Args:
        chain: Read-only chain client (``Web3ChainClient`` in production).
        facilitator: Facilitator contract address the transaction must target.
        minimum_confirmations: Required depth, inclusive of the receipt block.
    """

    def __init__(
        self,
        chain: ChainClient,
        *,
        facilitator: str,
        minimum_confirmations: int = 2,
    ) -> None:
        if minimum_confirmations < 1:
            raise ValueError("minimum_confirmations must be at least 1")
        self.chain = chain
        self.facilitator = facilitator
        self.minimum_confirmations = minimum_confirmations

    async def verify(self, tx_hash: str, payment: PaymentData) -> SettlementResult:
        """
        Verify that ``tx_hash`` settled ``payment``.

        Args:
            tx_hash: 0x-prefixed settlement transaction hash.
            payment: Payment terms the transaction is expected to settle.

        Returns:
            ``SettlementResult``; ``verified`` is True only when every check
            passes.  ``status`` holds the failure reason otherwise.
        """
        try:
            return await self._verify(tx_hash, payment)
        except Exception as e:
            logger.error(
                "Failed to verify transaction",
                extra={"tx_hash": tx_hash, "error": repr(e)},
            )
            return SettlementResult(
                status=VerificationStatus.PROVIDER_ERROR,
                is_valid=False,
                message="Verification failed",
                error_details={"error": str(e)},
                tx_hash=tx_hash,
                confirmations=0,
            )

    async def _verify(self, tx_hash: str, payment: PaymentData) -> SettlementResult:
        confirmations = 0

        def _fail(
            status: VerificationStatus,
            message: str,
            error_details: Optional[Dict[str, Any]] = None,
        ) -> SettlementResult:
            return SettlementResult(
                status=status,
                is_valid=False,
                message=message,
                error_details=error_details,
                tx_hash=tx_hash,
                confirmations=confirmations,
            )

        def _ok(verified_via: str) -> SettlementResult:
            logger.info(
                f"Transaction verified successfully via {verified_via}",
                extra={
                    "tx_hash": tx_hash,
                    "confirmations": confirmations,
                    "owner": payment.owner,
                    "recipient": payment.recipient,
                    "value": payment.value,
                    "verified_via": verified_via,
                },
            )
            return SettlementResult(
                status=VerificationStatus.SUCCESS,
                is_valid=True,
                message="Settlement verified",
                tx_hash=tx_hash,
                confirmations=confirmations,
                verified_via=verified_via,
            )

        # ------------------------------------------------------------------
        # 1. Receipt
        # ------------------------------------------------------------------
        receipt = await self.chain.get_transaction_receipt(tx_hash)
        if receipt is None:
            logger.warning("Transaction not found on-chain", extra={"tx_hash": tx_hash})
            return _fail(VerificationStatus.TRANSACTION_NOT_FOUND, "Transaction not found")

        # ------------------------------------------------------------------
        # 2. Confirmations
        # ------------------------------------------------------------------
        head = await self.chain.get_block_number()
        confirmations = max(0, head - receipt["blockNumber"] + 1)
        logger.debug(
            "Checking transaction confirmations",
            extra={
                "tx_hash": tx_hash,
                "block_number": receipt["blockNumber"],
                "current_block": head,
                "confirmations": confirmations,
                "minimum_required": self.minimum_confirmations,
            },
        )
        if confirmations < self.minimum_confirmations:
            logger.warning(
                "Insufficient confirmations",
                extra={"tx_hash": tx_hash, "confirmations": confirmations, "required": self.minimum_confirmations},
            )
            return _fail(
                VerificationStatus.INSUFFICIENT_CONFIRMATIONS,
                f"Insufficient confirmations: {confirmations}/{self.minimum_confirmations}",
                {"have": confirmations, "need": self.minimum_confirmations},
            )

        # ------------------------------------------------------------------
        # 3. Status
        # ------------------------------------------------------------------
        if receipt["status"] != 1:
            logger.warning("Transaction failed on-chain", extra={"tx_hash": tx_hash, "status": receipt["status"]})
            return _fail(VerificationStatus.TRANSACTION_FAILED, "Transaction failed")

        # ------------------------------------------------------------------
        # 4. Target contract
        # ------------------------------------------------------------------
        target = receipt.get("to")
        if not target or target.lower() != self.facilitator.lower():
            logger.warning(
                "Transaction did not call the facilitator contract",
                extra={"tx_hash": tx_hash, "actual_target": target, "expected_target": self.facilitator},
            )
            return _fail(
                VerificationStatus.WRONG_CONTRACT,
                "Wrong contract called",
                {"to": target, "expected": self.facilitator},
            )

        # ------------------------------------------------------------------
        # 5. PaymentSettled events
        # ------------------------------------------------------------------
        expected_value = payment.amount
        settled_events = 0
        for log in receipt.get("logs") or []:
            event = decode_settlement_log(log)
            if event is None:
                continue
            settled_events += 1
            value_matches = (
                event.value == expected_value
                or event.value + event.platform_fee == expected_value
            )
            if (
                event.sender == payment.owner.lower()
                and event.recipient == payment.recipient.lower()
                and event.nonce == payment.nonce.lower()
                and value_matches
            ):
                return _ok("event")

        logger.warning("No PaymentSettled event found, verifying via calldata", extra={"tx_hash": tx_hash})

        # ------------------------------------------------------------------
        # 6. Call data
        # ------------------------------------------------------------------
        tx = await self.chain.get_transaction(tx_hash)
        if tx is None:
            logger.error("Unable to fetch transaction data", extra={"tx_hash": tx_hash})
            return _fail(VerificationStatus.TRANSACTION_DATA_UNAVAILABLE, "Transaction data unavailable")

        try:
            call = decode_settlement_calldata(tx.get("input") or b"")
        except (DecodingError, ValueError, TypeError) as e:
            logger.error("Failed to parse transaction calldata", extra={"tx_hash": tx_hash, "error": str(e)})
            return _fail(VerificationStatus.CALLDATA_UNPARSEABLE, "Unable to parse transaction calldata")

        if call is None:
            logger.warning("Transaction did not call a settlement function", extra={"tx_hash": tx_hash})
            return _fail(VerificationStatus.UNEXPECTED_FUNCTION_CALL, "Unexpected function call")

        sender = tx.get("from") or ""
        matches = {
            "owner": call.owner == payment.owner.lower(),
            "recipient": call.recipient == payment.recipient.lower(),
            "value": call.value == expected_value,
            "deadline": call.deadline == payment.deadline,
            "nonce": call.nonce == payment.nonce.lower(),
            "signer": sender.lower() == payment.owner.lower(),
        }
        if not all(matches.values()):
            mismatched = [name for name, ok in matches.items() if not ok]
            logger.warning(
                "Transaction calldata does not match expected payment",
                extra={"tx_hash": tx_hash, "mismatched": mismatched},
            )
            if settled_events:
                return _fail(
                    VerificationStatus.NO_MATCHING_SETTLEMENT_EVENT,
                    "No matching PaymentSettled event",
                    {"settled_events": settled_events, "mismatched": mismatched},
                )
            return _fail(
                VerificationStatus.PAYMENT_PARAMETERS_MISMATCH,
                "Payment parameters mismatch",
                {"mismatched": mismatched},
            )

        return _ok("calldata")
