"""
Event-driven system with typed events and clear data flow.

A gated request is modelled as a chain of events: the trigger carries the
raw request data, each handler returns the next event, and the chain ends at
a terminal event (challenge, rejection or grant) the server turns into an
HTTP response.  Dependencies are injected separately from business data.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, Any, Callable, Optional, Awaitable, AsyncGenerator

from pydantic import BaseModel, ConfigDict

from ..adapters.evm.schemas import S402Proof, S402Context, SettlementResult
from ..adapters.evm.settlement import SettlementVerifier
from ..adapters.evm.standards import EIP712Domain
from ..schemas.https import Server402ResponsePayload, ErrorResponsePayload
from .workers import VerificationPool

if TYPE_CHECKING:
    from ..servers.config import S402Settings
    from ..servers.pricing import RoutePricing


class VerificationMode(str, Enum):
    """How a gated route treats on-chain settlement."""
    SYNC = "sync"
    ASYNC = "async"
    OPTIONAL = "optional"


# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


# ==================== Trigger Events (External) ====================

class ProofRequestEvent(BaseModel, BaseEvent):
    """External trigger: a gated route was called."""
    route_key: str
    mode: VerificationMode = VerificationMode.SYNC
    proof: Optional[Any] = None
    owner: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ProofRequestEvent(route={self.route_key}, mode={self.mode.value}, proof={'yes' if self.proof else 'no'})"


# ==================== Intermediate Events ====================

class SignatureVerifiedEvent(BaseModel, BaseEvent):
    """Proof passed schema, parameter and signature checks."""
    route_key: str
    mode: VerificationMode
    proof: S402Proof

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SignatureVerifiedEvent(owner={self.proof.payment.owner}, tx={self.proof.tx_hash})"


class SettlementVerifiedEvent(BaseModel, BaseEvent):
    """On-chain settlement confirmed while the request waited."""
    context: S402Context

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SettlementVerifiedEvent(tx={self.context.tx_hash})"


class SettlementFailedEvent(BaseModel, BaseEvent):
    """On-chain settlement could not be confirmed while the request waited."""
    route_key: str
    mode: VerificationMode
    result: SettlementResult

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"SettlementFailedEvent(reason={self.result.reason})"


# ==================== Result Events ====================

class PaymentChallengeEvent(BaseModel, BaseEvent):
    """Result: payment required, 402 response payload."""
    challenge: Server402ResponsePayload

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"PaymentChallengeEvent(route={self.challenge.route_key}, value={self.challenge.payment.value})"


class ProofRejectedEvent(BaseModel, BaseEvent):
    """Result: proof rejected (400 for malformed proofs, 403 otherwise)."""
    status_code: int
    error: ErrorResponsePayload

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ProofRejectedEvent(status={self.status_code}, reason={self.error.reason})"


class AccessGrantedEvent(BaseModel, BaseEvent):
    """Result: run the protected handler.

    ``context`` is ``None`` only under the optional discipline.
    """
    context: Optional[S402Context] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"AccessGrantedEvent(context={self.context!r})"


class BreakEvent(BaseModel, BaseEvent):
    """Internal event to break the event chain."""
    break_reason: str = ""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "BreakEvent()"


TERMINAL_EVENTS = (PaymentChallengeEvent, ProofRejectedEvent, AccessGrantedEvent)


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for infrastructure dependencies (read-only)."""
    settings: "S402Settings"
    pricing: "RoutePricing"
    verifier: SettlementVerifier
    pool: VerificationPool
    domain: EIP712Domain


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        self._subscribers: Dict[type, list[EventHandlerFunc]] = {}
        self._hooks: Dict[type, list[EventHookFunc]] = {}

    def subscribe(self, event_class: type[BaseEvent], handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.
        Multiple handlers can be subscribed to the same event type and run concurrently.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")
        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks run before subscribers and their return value is ignored.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")
        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.

        Yields:
            Results from all subscribers as they complete. Yields nothing if
            no subscribers are registered.
        """
        hooks = self._hooks.get(type(event), [])
        await asyncio.gather(*(hook(event, deps) for hook in hooks))

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        for coro in asyncio.as_completed([handler(event, deps) for handler in handlers]):
            yield await coro
