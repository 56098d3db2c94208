"""
Test suite for Web3ChainClient over a mocked AsyncWeb3.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import TransactionNotFound

from s402_gate.adapters.evm.chain import Web3ChainClient
from test_mocks import MOCK_TX_HASH


def make_w3(**eth) -> MagicMock:
    w3 = MagicMock()
    for name, value in eth.items():
        setattr(w3.eth, name, value)
    return w3


async def head(number):
    return number


async def never_answers(*args, **kwargs):
    await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_receipt_and_transaction_pass_through():
    receipt = {"status": 1, "blockNumber": 10, "logs": []}
    tx = {"from": "0x01", "input": b""}
    w3 = make_w3(
        get_transaction_receipt=AsyncMock(return_value=receipt),
        get_transaction=AsyncMock(return_value=tx),
    )
    client = Web3ChainClient(w3)

    assert await client.get_transaction_receipt(MOCK_TX_HASH) == receipt
    assert await client.get_transaction(MOCK_TX_HASH) == tx
    w3.eth.get_transaction_receipt.assert_awaited_once_with(MOCK_TX_HASH)
    w3.eth.get_transaction.assert_awaited_once_with(MOCK_TX_HASH)


@pytest.mark.asyncio
async def test_unknown_transaction_is_none():
    w3 = make_w3(
        get_transaction_receipt=AsyncMock(side_effect=TransactionNotFound("no receipt")),
        get_transaction=AsyncMock(side_effect=TransactionNotFound("no transaction")),
    )
    client = Web3ChainClient(w3)

    assert await client.get_transaction_receipt(MOCK_TX_HASH) is None
    assert await client.get_transaction(MOCK_TX_HASH) is None


@pytest.mark.asyncio
async def test_block_number():
    client = Web3ChainClient(make_w3(block_number=head(1_234)))
    assert await client.get_block_number() == 1_234


@pytest.mark.asyncio
async def test_other_provider_errors_propagate():
    w3 = make_w3(get_transaction_receipt=AsyncMock(side_effect=ConnectionError("refused")))
    with pytest.raises(ConnectionError):
        await Web3ChainClient(w3).get_transaction_receipt(MOCK_TX_HASH)


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["get_transaction_receipt", "get_transaction"])
async def test_slow_lookups_time_out(method):
    w3 = make_w3(**{method: AsyncMock(side_effect=never_answers)})
    client = Web3ChainClient(w3, request_timeout=0.01)
    with pytest.raises(asyncio.TimeoutError):
        await getattr(client, method)(MOCK_TX_HASH)


@pytest.mark.asyncio
async def test_slow_block_number_times_out():
    client = Web3ChainClient(make_w3(block_number=never_answers()), request_timeout=0.01)
    with pytest.raises(asyncio.TimeoutError):
        await client.get_block_number()


def test_from_rpc_url_keeps_timeout():
    client = Web3ChainClient.from_rpc_url("http://localhost:8545", request_timeout=3.5)
    assert client.request_timeout == 3.5
    assert client.w3.provider.endpoint_uri == "http://localhost:8545"
