"""
HTTP 402 Payment Flow for S402 Gates

Provides a transparent layer over httpx that answers 402 Payment Required
responses by signing the payment, settling it through the facilitator and
retrying the request with the resulting ``s402Proof``.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from pydantic import ValidationError
from web3 import AsyncHTTPProvider, AsyncWeb3

from ..adapters.evm.constants import (
    S402_FACILITATOR,
    USD1_TOKEN,
    BNB_CHAIN_ID,
    get_chain_config,
    get_private_key_from_env,
)
from ..adapters.evm.FACILITATOR_ABI import get_is_payment_used_abi
from ..adapters.evm.schemas import (
    EVMECDSASignature,
    EVMTransactionConfirmation,
    PaymentData,
    S402Proof,
)
from ..adapters.evm.signatures import (
    sign_payment_authorization,
    sign_permit,
    query_erc20_allowance,
    query_permit_nonce,
    send_settlement_transaction,
)
from ..engine.exceptions import PaymentRequiredError, PaymentSettlementError
from ..schemas.https import Server402ResponsePayload

logger = logging.getLogger(__name__)


class S402Client(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient with automatic S402 payment handling.

    On a 402 response the client:
    1. Parses the challenge and fills in its own address as ``owner``
    2. Signs the PaymentAuthorization under the challenge's domain
    3. Settles through ``settlePayment``, or ``settlePaymentWithPermit`` with
       a freshly signed EIP-2612 permit when the facilitator's allowance is
       below the payment value
    4. Retries the original request once with ``s402Proof`` merged into the
       JSON body

    Fully compatible with httpx.AsyncClient - supports all methods, properties,
    and can be used as an async context manager.

    Usage:
        ```python
        async with S402Client(private_key="0x...", base_url="https://api.example.com") as client:
            response = await client.post("/tools/example", json={"query": "..."})
        ```
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
        rpc_url: Optional[str] = None,
        facilitator: str = S402_FACILITATOR,
        token: str = USD1_TOKEN,
        chain_id: int = BNB_CHAIN_ID,
        auto_settle: bool = True,
        async_mode: bool = False,
        receipt_timeout: float = 120,
        **kwargs,
    ):
        """
        Initialize the client.

        Args:
            private_key: Payer key (default: ``S402_PRIVATE_KEY`` from the environment)
            w3: AsyncWeb3 instance (default: built from ``rpc_url`` or the chain table)
            rpc_url: JSON-RPC endpoint used when ``w3`` is not given
            facilitator: Facilitator the client is willing to settle through
            token: Token the client is willing to pay in
            chain_id: Chain the client settles on
            auto_settle: Settle automatically on 402; otherwise raise ``PaymentRequiredError``
            async_mode: Return right after broadcasting instead of waiting for a confirmation
            receipt_timeout: Seconds to wait for the settlement receipt
            **kwargs: All standard httpx.AsyncClient arguments (timeout, headers, etc.)
        """
        super().__init__(**kwargs)
        self._private_key = private_key or get_private_key_from_env()
        self.address: Optional[str] = (
            Account.from_key(self._private_key).address if self._private_key else None
        )
        self.facilitator = facilitator
        self.token = token
        self.chain_id = chain_id
        self.auto_settle = auto_settle
        self.async_mode = async_mode
        self.receipt_timeout = receipt_timeout
        self._w3 = w3
        self._rpc_url = rpc_url

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            rpc_url = self._rpc_url or get_chain_config(self.chain_id).public_rpc_url
            self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        return self._w3

    # =========================================================================
    # Override httpx.AsyncClient.request to add 402 handling
    # =========================================================================

    async def request(
        self,
        method: str,
        url: httpx._types.URLTypes,
        **kwargs
    ) -> httpx.Response:
        """
        Execute HTTP request with automatic 402 handling.

        All other httpx methods (get, post, etc.) go through this override.
        The retry sends the original JSON body (if any) with ``s402Proof``
        added.

        Raises:
            PaymentRequiredError: On 402 when ``auto_settle`` is disabled.
            PaymentSettlementError: When signing or settlement fails.
        """
        response = await super().request(method, url, **kwargs)
        if response.status_code != 402:
            return response

        challenge = self._parse_402_payload(response)
        if not self.auto_settle:
            raise PaymentRequiredError("Payment required (auto_settle disabled)", challenge=challenge)

        proof = await self._pay(challenge)
        kwargs["json"] = self._merge_proof(kwargs.get("json"), proof)
        return await super().request(method, url, **kwargs)

    # =========================================================================
    # Core 402 Handling Logic
    # =========================================================================

    def _parse_402_payload(self, response: httpx.Response) -> Server402ResponsePayload:
        try:
            return Server402ResponsePayload.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise PaymentRequiredError(f"Unreadable 402 challenge: {e}") from e

    def _check_challenge(self, challenge: Server402ResponsePayload) -> None:
        """Refuse challenges that point at a contract, token or chain the client was not configured for."""
        mismatches = []
        if challenge.facilitator.lower() != self.facilitator.lower():
            mismatches.append(f"facilitator {challenge.facilitator}")
        if challenge.typed_data.domain.verifyingContract.lower() != self.facilitator.lower():
            mismatches.append(f"verifyingContract {challenge.typed_data.domain.verifyingContract}")
        if challenge.token.lower() != self.token.lower():
            mismatches.append(f"token {challenge.token}")
        if challenge.chain_id != self.chain_id:
            mismatches.append(f"chainId {challenge.chain_id}")
        if mismatches:
            raise PaymentSettlementError(f"Challenge does not match client configuration: {', '.join(mismatches)}")

    async def _pay(self, challenge: Server402ResponsePayload) -> S402Proof:
        """Sign and settle the challenge's payment, returning the proof to submit."""
        if not self._private_key:
            raise PaymentSettlementError("A private key is required to settle payments")
        self._check_challenge(challenge)

        payment = challenge.payment.model_copy(update={"owner": self.address})
        auth_sig = sign_payment_authorization(
            private_key=self._private_key,
            payment=payment,
            domain=challenge.typed_data.domain,
        )

        allowance = await query_erc20_allowance(self.w3, self.token, self.address, self.facilitator)
        permit_sig = None
        if allowance < payment.amount:
            permit_nonce = await query_permit_nonce(self.w3, self.token, self.address)
            permit_sig = sign_permit(
                private_key=self._private_key,
                token=self.token,
                chain_id=self.chain_id,
                spender=self.facilitator,
                value=payment.amount,
                deadline=payment.deadline,
                nonce=permit_nonce,
            )
            logger.info("Settling payment with permit (insufficient allowance)", extra={"allowance": allowance})
        else:
            logger.info("Settling payment (allowance exists)", extra={"allowance": allowance})

        confirmation = await self.settle_payment(payment, auth_sig, permit_sig, wait=not self.async_mode)
        logger.info(
            "Payment settled" if not self.async_mode else "Payment submitted",
            extra={"tx_hash": confirmation.tx_hash, "route_key": challenge.route_key, "async_mode": self.async_mode},
        )
        return S402Proof(
            payment=payment,
            auth_sig=auth_sig,
            permit_sig=permit_sig,
            tx_hash=confirmation.tx_hash,
        )

    @staticmethod
    def _merge_proof(body: Any, proof: S402Proof) -> Dict[str, Any]:
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise PaymentSettlementError("Cannot attach s402Proof to a non-object JSON body")
        return {**body, "s402Proof": proof.to_wire()}

    # =========================================================================
    # Manual settlement
    # =========================================================================

    async def settle_payment(
        self,
        payment: PaymentData,
        auth_sig: EVMECDSASignature,
        permit_sig: Optional[EVMECDSASignature] = None,
        wait: bool = True,
    ) -> EVMTransactionConfirmation:
        """
        Settle a signed payment without making an API request.

        Raises:
            PaymentSettlementError: If the transaction cannot be sent or reverts.
        """
        if not self._private_key:
            raise PaymentSettlementError("A private key is required to settle payments")
        return await send_settlement_transaction(
            self.w3,
            facilitator=self.facilitator,
            private_key=self._private_key,
            payment=payment,
            auth_sig=auth_sig,
            permit_sig=permit_sig,
            wait=wait,
            timeout=self.receipt_timeout,
        )

    async def is_payment_used(self, payment: PaymentData) -> bool:
        """Ask the facilitator whether ``payment`` has already been settled."""
        contract = self.w3.eth.contract(
            address=self.w3.to_checksum_address(self.facilitator),
            abi=get_is_payment_used_abi(),
        )
        owner, value, deadline, recipient, nonce = payment.to_contract_tuple()
        return bool(
            await contract.functions.isPaymentUsed(owner, recipient, value, deadline, nonce).call()
        )
