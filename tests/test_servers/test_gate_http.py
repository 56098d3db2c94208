"""
Test suite for the HTTP gate.
Tests: 1) 402 challenges 2) 400/403 rejections 3) sync, async and optional disciplines
"""
import asyncio
import logging
import time

import httpx
import pytest

from s402_gate.servers import S402Server, VerificationMode
from test_mocks import (
    MOCK_OWNER_ADDRESS,
    MOCK_PRICE,
    MOCK_RECIPIENT,
    MOCK_TX_HASH,
    MockChainClient,
    create_mock_payment,
    create_mock_settings,
    create_signed_proof,
    tamper_r,
)


def make_app(chain: MockChainClient, **settings_overrides) -> S402Server:
    app = S402Server(settings=create_mock_settings(**settings_overrides), chain=chain)

    @app.post("/tools/example")
    @app.payment_required("tool.example")
    async def example(s402):
        return {"owner": s402.owner, "value": str(s402.value), "txHash": s402.tx_hash}

    @app.post("/tools/background")
    @app.payment_required("tool.example", mode=VerificationMode.ASYNC)
    async def background(s402, request):
        return {"async": s402.verified_async, "path": request.url.path}

    @app.post("/tools/optional")
    @app.payment_required("tool.example", mode="optional")
    async def optional(s402):
        return {"paid": s402 is not None}

    return app


def client_for(app: S402Server) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://gate")


def settled_chain(confirmations: int = 3) -> MockChainClient:
    chain = MockChainClient()
    chain.add_settlement(create_mock_payment(), confirmations=confirmations)
    return chain


# ==================== Challenge ====================

@pytest.mark.asyncio
async def test_no_proof_returns_402_challenge():
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        before = int(time.time())
        response = await client.post("/tools/example", json={})

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "PAYMENT_REQUIRED"
    assert body["routeKey"] == "tool.example"
    assert body["payment"]["value"] == str(MOCK_PRICE)
    assert body["payment"]["recipient"] == MOCK_RECIPIENT
    assert len(bytes.fromhex(body["payment"]["nonce"][2:])) == 32
    assert before + 600 <= body["payment"]["deadline"] <= int(time.time()) + 600


@pytest.mark.asyncio
async def test_body_owner_prefills_challenge_and_empty_body_is_accepted():
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        with_owner = await client.post("/tools/example", json={"owner": MOCK_OWNER_ADDRESS})
        empty = await client.post("/tools/example")

    assert with_owner.json()["payment"]["owner"] == MOCK_OWNER_ADDRESS
    assert empty.status_code == 402


@pytest.mark.asyncio
async def test_route_price_is_advertised():
    app = make_app(MockChainClient(), price_table={"tool.example": 42})
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={})
    assert response.json()["payment"]["value"] == "42"


# ==================== Rejections ====================

@pytest.mark.asyncio
async def test_malformed_proof_returns_400():
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": {"payment": {"owner": "0x12"}}})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INVALID_PROOF_FORMAT"
    assert isinstance(body["details"], list) and body["details"]


@pytest.mark.asyncio
async def test_value_mismatch_returns_403():
    proof = create_signed_proof(payment=create_mock_payment(value=str(MOCK_PRICE - 1)))
    app = make_app(settled_chain())
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "PAYMENT_VERIFICATION_FAILED"
    assert body["reason"] == "parameter_mismatch"
    assert body["fields"] == ["value"]
    assert "Invalid payment value" in body["message"]


@pytest.mark.asyncio
async def test_all_failing_fields_are_reported():
    payment = create_mock_payment(
        value="1",
        recipient="0x0000000000000000000000000000000000000003",
        deadline=int(time.time()) - 1,
    )
    proof = create_signed_proof(payment=payment, tx_hash=None)
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    assert response.json()["fields"] == ["txHash", "value", "recipient", "deadline"]


@pytest.mark.asyncio
async def test_unexpected_chain_id_returns_403():
    app = make_app(settled_chain(), chain_id=97)
    proof = create_signed_proof()
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    assert response.json()["fields"] == ["chainId"]


@pytest.mark.asyncio
async def test_tampered_signature_returns_403():
    proof = create_signed_proof()
    proof = proof.model_copy(update={"auth_sig": tamper_r(proof.auth_sig)})
    chain = settled_chain()
    app = make_app(chain)
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    assert response.json()["reason"] == "invalid_signature"
    assert chain.calls == []


# ==================== Sync discipline ====================

@pytest.mark.asyncio
async def test_sync_grants_access_after_settlement():
    proof = create_signed_proof()
    app = make_app(settled_chain(confirmations=2))
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire(), "query": "x"})

    assert response.status_code == 200
    assert response.json() == {"owner": MOCK_OWNER_ADDRESS, "value": str(MOCK_PRICE), "txHash": MOCK_TX_HASH}


@pytest.mark.asyncio
async def test_sync_rejects_insufficient_confirmations():
    proof = create_signed_proof()
    app = make_app(settled_chain(confirmations=1))
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    body = response.json()
    assert body["reason"] == "insufficient_confirmations"
    assert body["message"] == "Transaction verification failed: Insufficient confirmations: 1/2"


@pytest.mark.asyncio
async def test_sync_rejects_unknown_transaction():
    proof = create_signed_proof()
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        response = await client.post("/tools/example", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    assert response.json()["reason"] == "transaction_not_found"


# ==================== Async discipline ====================

@pytest.mark.asyncio
async def test_async_grants_immediately_and_logs_background_failure(caplog):
    caplog.set_level(logging.INFO, logger="s402_gate")
    proof = create_signed_proof()
    app = make_app(settled_chain(confirmations=1))
    async with client_for(app) as client:
        response = await client.post("/tools/background", json={"s402Proof": proof.to_wire()})
        await app.verification_pool.join()

    assert response.status_code == 200
    assert response.json() == {"async": True, "path": "/tools/background"}
    failures = [r for r in caplog.records if "Background blockchain verification failed" in r.getMessage()]
    assert len(failures) == 1
    assert failures[0].levelno == logging.WARNING
    assert failures[0].reason == "insufficient_confirmations"


@pytest.mark.asyncio
async def test_async_logs_background_success(caplog):
    caplog.set_level(logging.INFO, logger="s402_gate")
    proof = create_signed_proof()
    app = make_app(settled_chain(confirmations=5))
    async with client_for(app) as client:
        response = await client.post("/tools/background", json={"s402Proof": proof.to_wire()})
        await app.verification_pool.join()

    assert response.status_code == 200
    assert any("Background blockchain verification completed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_async_still_requires_a_valid_signature():
    proof = create_signed_proof()
    proof = proof.model_copy(update={"auth_sig": tamper_r(proof.auth_sig)})
    app = make_app(settled_chain())
    async with client_for(app) as client:
        response = await client.post("/tools/background", json={"s402Proof": proof.to_wire()})

    assert response.status_code == 403
    assert app.verification_pool.active == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("confirmations, status, body", [
    (3, 200, {"async": False, "path": "/tools/background"}),
    (1, 403, None),
])
async def test_async_verifies_inline_when_pool_is_full(caplog, confirmations, status, body):
    caplog.set_level(logging.WARNING, logger="s402_gate")
    proof = create_signed_proof()
    app = make_app(
        settled_chain(confirmations=confirmations),
        max_background_verifications=1,
        max_pending_verifications=1,
    )
    release = asyncio.Event()
    app.verification_pool.submit(release.wait(), name="busy")
    async with client_for(app) as client:
        response = await client.post("/tools/background", json={"s402Proof": proof.to_wire()})
    release.set()
    await app.verification_pool.join()

    assert response.status_code == status
    if body is not None:
        assert response.json() == body
    else:
        assert response.json()["reason"] == "insufficient_confirmations"
    assert any(r.getMessage() == "Background pool full, verifying inline" for r in caplog.records)


# ==================== Optional discipline ====================

@pytest.mark.asyncio
async def test_optional_without_proof_runs_handler():
    app = make_app(MockChainClient())
    async with client_for(app) as client:
        response = await client.post("/tools/optional", json={})
    assert response.status_code == 200
    assert response.json() == {"paid": False}


@pytest.mark.asyncio
async def test_optional_with_failed_proof_runs_handler_without_context():
    proof = create_signed_proof()
    app = make_app(settled_chain(confirmations=1))
    async with client_for(app) as client:
        bad = await client.post("/tools/optional", json={"s402Proof": {"garbage": True}})
        shallow = await client.post("/tools/optional", json={"s402Proof": proof.to_wire()})
    assert bad.json() == {"paid": False}
    assert shallow.json() == {"paid": False}


@pytest.mark.asyncio
async def test_optional_with_valid_proof_attaches_context():
    proof = create_signed_proof()
    app = make_app(settled_chain())
    async with client_for(app) as client:
        response = await client.post("/tools/optional", json={"s402Proof": proof.to_wire()})
    assert response.json() == {"paid": True}


# ==================== Hooks ====================

@pytest.mark.asyncio
async def test_hooks_observe_terminal_events():
    from s402_gate.engine.events import PaymentChallengeEvent

    seen = []
    app = make_app(MockChainClient())

    @app.hook(PaymentChallengeEvent)
    async def record(event, deps):
        seen.append(event.challenge.route_key)

    async with client_for(app) as client:
        await client.post("/tools/example", json={})

    assert seen == ["tool.example"]
