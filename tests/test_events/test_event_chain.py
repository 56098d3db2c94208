"""
Test suite for EventChain execution engine.
Tests: 1) Event execution order 2) Terminal event resolution 3) Hooks and BreakEvent
"""
import pytest

from s402_gate.adapters.evm.schemas import S402Context, SettlementResult
from s402_gate.engine.events import (
    AccessGrantedEvent,
    BreakEvent,
    Dependencies,
    EventBus,
    ProofRejectedEvent,
    ProofRequestEvent,
    SettlementFailedEvent,
    SettlementVerifiedEvent,
    SignatureVerifiedEvent,
    VerificationMode,
)
from s402_gate.engine.executors import EventChain
from s402_gate.engine.workers import VerificationPool
from s402_gate.schemas.bases import VerificationStatus
from s402_gate.schemas.https import ErrorResponsePayload
from s402_gate.adapters.evm.settlement import SettlementVerifier
from s402_gate.servers.flows import handle_settlement_failed
from s402_gate.servers.pricing import RoutePricing
from test_mocks import (
    MOCK_RECIPIENT,
    MockChainClient,
    create_mock_domain,
    create_mock_settings,
    create_signed_proof,
)


def make_deps() -> Dependencies:
    settings = create_mock_settings()
    return Dependencies(
        settings=settings,
        pricing=RoutePricing.from_settings(settings),
        verifier=SettlementVerifier(MockChainClient(), facilitator=settings.facilitator),
        pool=VerificationPool(),
        domain=create_mock_domain(),
    )


async def handle_request(event: ProofRequestEvent, deps: Dependencies):
    return SignatureVerifiedEvent(route_key=event.route_key, mode=event.mode, proof=create_signed_proof())


async def handle_signature(event: SignatureVerifiedEvent, deps: Dependencies):
    payment = event.proof.payment
    return SettlementVerifiedEvent(
        context=S402Context(owner=payment.owner, value=payment.amount, payment=payment, tx_hash=event.proof.tx_hash)
    )


async def handle_settled(event: SettlementVerifiedEvent, deps: Dependencies):
    return AccessGrantedEvent(context=event.context)


def make_bus() -> EventBus:
    bus = EventBus()
    bus.subscribe(ProofRequestEvent, handle_request)
    bus.subscribe(SignatureVerifiedEvent, handle_signature)
    bus.subscribe(SettlementVerifiedEvent, handle_settled)
    return bus


@pytest.mark.asyncio
async def test_events_are_yielded_in_chain_order():
    chain = EventChain(make_bus(), make_deps())
    events = [e async for e in chain.execute(ProofRequestEvent(route_key="tool.example"))]
    assert [type(e) for e in events] == [SignatureVerifiedEvent, SettlementVerifiedEvent, AccessGrantedEvent]


@pytest.mark.asyncio
async def test_resolve_returns_terminal_event():
    chain = EventChain(make_bus(), make_deps())
    result = await chain.resolve(ProofRequestEvent(route_key="tool.example"))
    assert isinstance(result, AccessGrantedEvent)
    assert result.context.payment.recipient == MOCK_RECIPIENT


@pytest.mark.asyncio
async def test_resolve_without_terminal_event_returns_none():
    bus = EventBus()
    bus.subscribe(ProofRequestEvent, handle_request)
    chain = EventChain(bus, make_deps())
    assert await chain.resolve(ProofRequestEvent(route_key="tool.example")) is None


@pytest.mark.asyncio
async def test_hooks_run_for_terminal_events():
    seen = []
    bus = make_bus()

    async def on_granted(event, deps):
        seen.append(type(event).__name__)

    bus.hook(AccessGrantedEvent, on_granted)
    await EventChain(bus, make_deps()).resolve(ProofRequestEvent(route_key="tool.example"))
    assert seen == ["AccessGrantedEvent"]


@pytest.mark.asyncio
async def test_break_event_stops_chain():
    reached = []
    bus = EventBus()

    async def stop(event, deps):
        return BreakEvent(break_reason="stop")

    async def after_break(event, deps):
        reached.append(event)

    bus.subscribe(ProofRequestEvent, stop)
    bus.subscribe(BreakEvent, after_break)
    events = [e async for e in EventChain(bus, make_deps()).execute(ProofRequestEvent(route_key="x"))]
    assert [type(e) for e in events] == [BreakEvent]
    assert reached == []


@pytest.mark.asyncio
async def test_handler_returning_non_event_raises():
    bus = EventBus()

    async def bad(event, deps):
        return {"not": "an event"}

    bus.subscribe(ProofRequestEvent, bad)
    with pytest.raises(TypeError):
        await EventChain(bus, make_deps()).resolve(ProofRequestEvent(route_key="x"))


def test_subscribe_requires_coroutine_function():
    bus = EventBus()
    with pytest.raises(TypeError):
        bus.subscribe(ProofRequestEvent, lambda event, deps: None)
    with pytest.raises(TypeError):
        bus.hook(ProofRequestEvent, lambda event, deps: None)


@pytest.mark.asyncio
async def test_settlement_failure_becomes_rejection_or_grant():
    result = SettlementResult(
        status=VerificationStatus.WRONG_CONTRACT,
        is_valid=False,
        message="Transaction not sent to S402 facilitator",
    )
    rejected = await handle_settlement_failed(
        SettlementFailedEvent(route_key="tool.example", mode=VerificationMode.SYNC, result=result),
        make_deps(),
    )
    assert isinstance(rejected, ProofRejectedEvent)
    assert rejected.status_code == 403
    assert rejected.error == ErrorResponsePayload(
        error="PAYMENT_VERIFICATION_FAILED",
        message="Transaction verification failed: Transaction not sent to S402 facilitator",
        details=rejected.error.details,
        reason="wrong_contract",
    )

    granted = await handle_settlement_failed(
        SettlementFailedEvent(route_key="tool.example", mode=VerificationMode.OPTIONAL, result=result),
        make_deps(),
    )
    assert isinstance(granted, AccessGrantedEvent)
    assert granted.context is None
