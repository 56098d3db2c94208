"""
Chain Client

The narrow read-only view of a chain that settlement verification needs.
``SettlementVerifier`` depends on the ``ChainClient`` protocol; production
code injects ``Web3ChainClient`` (an ``AsyncWeb3`` wrapper) and tests inject
an in-memory fake.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Protocol

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound

logger = logging.getLogger(__name__)


class ChainClient(Protocol):
    """Read-only chain access used by the settlement verifier."""

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """Receipt with ``blockNumber``, ``status``, ``to`` and ``logs``, or ``None`` if unknown."""
        ...

    async def get_block_number(self) -> int:
        """Current head block number."""
        ...

    async def get_transaction(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """Transaction with ``input`` and ``from``, or ``None`` if unknown."""
        ...


class Web3ChainClient:
    """
    ``ChainClient`` backed by an ``AsyncWeb3`` instance.

    Every call is bounded by ``request_timeout`` seconds; a timeout surfaces
    as ``asyncio.TimeoutError`` and is treated by the verifier like any other
    provider error.

    Args:
        w3: Connected ``AsyncWeb3`` instance.
        request_timeout: Upper bound for a single RPC round trip, in seconds.
    """

    def __init__(self, w3: AsyncWeb3, request_timeout: float = 10.0) -> None:
        self.w3 = w3
        self.request_timeout = request_timeout

    @classmethod
    def from_rpc_url(cls, rpc_url: str, request_timeout: float = 10.0) -> "Web3ChainClient":
        """Build a client over an HTTP JSON-RPC endpoint."""
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), request_timeout=request_timeout)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            return await asyncio.wait_for(
                self.w3.eth.get_transaction_receipt(tx_hash), self.request_timeout
            )
        except TransactionNotFound:
            logger.debug("Receipt not found", extra={"tx_hash": tx_hash})
            return None

    async def get_block_number(self) -> int:
        return await asyncio.wait_for(self.w3.eth.block_number, self.request_timeout)

    async def get_transaction(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            return await asyncio.wait_for(
                self.w3.eth.get_transaction(tx_hash), self.request_timeout
            )
        except TransactionNotFound:
            logger.debug("Transaction not found", extra={"tx_hash": tx_hash})
            return None
