"""
S402 Payment Gate - Event-driven FastAPI wrapper.

``S402Server`` is a ``FastAPI`` application whose routes can be gated with
``payment_required``.  Each gated call runs the S402 event chain and either
answers directly (402 challenge, 400/403 rejection) or invokes the route
handler with the verified ``S402Context``.
"""

import inspect
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..engine.events import (
    EventBus,
    Dependencies,
    BaseEvent,
    VerificationMode,
    ProofRequestEvent,
    PaymentChallengeEvent,
    ProofRejectedEvent,
    AccessGrantedEvent,
)
from ..engine.executors import EventChain
from ..engine.workers import VerificationPool
from ..adapters.evm.chain import ChainClient, Web3ChainClient
from ..adapters.evm.settlement import SettlementVerifier
from ..adapters.evm.signatures import build_s402_domain
from .config import S402Settings, load_settings
from .flows import setup_event_bus
from .pricing import RoutePricing

logger = logging.getLogger(__name__)


class S402Server(FastAPI):
    """FastAPI server with S402 pay-per-call gating."""

    def __init__(
        self,
        settings: Optional[S402Settings] = None,
        chain: Optional[ChainClient] = None,
        pricing: Optional[RoutePricing] = None,
        **fastapi_kwargs,
    ):
        """Initialize the gate.

        Args:
            settings: Gate settings (default: ``load_settings()`` from the environment)
            chain: Chain client used for settlement checks (default: ``Web3ChainClient``
                   over ``settings.resolved_rpc_url``)
            pricing: Route pricing (default: built from ``settings``)
            **fastapi_kwargs: FastAPI arguments (title, version, lifespan, etc.)
        """
        self.settings = settings or load_settings()
        self.pricing = pricing or RoutePricing.from_settings(self.settings)
        self.chain = chain or Web3ChainClient.from_rpc_url(
            self.settings.resolved_rpc_url,
            request_timeout=self.settings.request_timeout,
        )
        self.verifier = SettlementVerifier(
            self.chain,
            facilitator=self.settings.facilitator,
            minimum_confirmations=self.settings.minimum_confirmations,
        )
        self.verification_pool = VerificationPool(
            self.settings.max_background_verifications,
            max_pending=self.settings.max_pending_verifications,
        )
        self.domain = build_s402_domain(
            chain_id=self.settings.chain_id,
            facilitator=self.settings.facilitator,
        )
        self.depends = Dependencies(
            settings=self.settings,
            pricing=self.pricing,
            verifier=self.verifier,
            pool=self.verification_pool,
            domain=self.domain,
        )
        self.event_bus: EventBus = setup_event_bus()

        self._user_lifespan = fastapi_kwargs.pop("lifespan", None)
        super().__init__(lifespan=self._lifespan, **fastapi_kwargs)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        try:
            if self._user_lifespan is None:
                yield
            else:
                async with self._user_lifespan(app) as state:
                    yield state
        finally:
            await self.verification_pool.shutdown()

    def subscribe(self, event_class: type[BaseEvent], handler: Callable) -> None:
        """Register an event handler.

        Args:
            event_class: Event type to handle
            handler: Async function(event, deps) -> Optional[BaseEvent]
        """
        self.event_bus.subscribe(event_class, handler)

    def add_hook(self, event_class: type[BaseEvent], hook: Callable) -> None:
        """Register an event hook for side effects.

        Example:
            ```python
            async def audit(event, deps):
                audit_log.append(event.context.tx_hash)

            app.add_hook(AccessGrantedEvent, audit)
            ```
        """
        self.event_bus.hook(event_class, hook)

    def hook(self, event_class: type[BaseEvent]) -> Callable:
        """Decorator form of ``add_hook``.

        Example:
            @app.hook(ProofRejectedEvent)
            async def on_rejected(event, deps):
                await alert(event.error.reason)
        """
        def decorator(hook_func: Callable) -> Callable:
            self.event_bus.hook(event_class, hook_func)
            return hook_func
        return decorator

    async def run_gate(
        self,
        route_key: str,
        body: Dict[str, Any],
        mode: VerificationMode = VerificationMode.SYNC,
    ) -> Optional[BaseEvent]:
        """Run the gating chain for one request body and return its terminal event."""
        owner = body.get("owner")
        event_chain = EventChain(self.event_bus, self.depends)
        return await event_chain.resolve(
            ProofRequestEvent(
                route_key=route_key,
                mode=mode,
                proof=body.get("s402Proof"),
                owner=owner if isinstance(owner, str) else None,
            )
        )

    def payment_required(
        self,
        route_key: str,
        mode: VerificationMode = VerificationMode.SYNC,
    ) -> Callable:
        """Decorator to gate a route behind an S402 payment.

        The handler is called with the ``S402Context`` as its first argument
        (``None`` under ``VerificationMode.OPTIONAL`` when no valid proof was
        sent) and, if it declares a ``request`` parameter, the ``Request``.
        Its return value is passed through untouched.

        Example:
            ```python
            @app.post("/tools/example")
            @app.payment_required("tool.example")
            async def example(s402):
                return {"paid_by": s402.owner}
            ```
        """
        mode = VerificationMode(mode)

        def decorator(route_handler: Callable) -> Callable:
            wants_request = "request" in inspect.signature(route_handler).parameters

            async def wrapper(request: Request):
                body = await _read_json_object(request)
                event = await self.run_gate(route_key, body, mode)

                if isinstance(event, PaymentChallengeEvent):
                    return JSONResponse(status_code=402, content=event.challenge.to_dict())

                if isinstance(event, ProofRejectedEvent):
                    return JSONResponse(status_code=event.status_code, content=event.error.to_dict())

                if isinstance(event, AccessGrantedEvent):
                    request.state.s402 = event.context
                    if wants_request:
                        return await route_handler(event.context, request=request)
                    return await route_handler(event.context)

                return JSONResponse(
                    status_code=500,
                    content={"error": "Payment verification failed"},
                )

            wrapper.__name__ = route_handler.__name__
            wrapper.__doc__ = route_handler.__doc__
            return wrapper

        return decorator


async def _read_json_object(request: Request) -> Dict[str, Any]:
    """Return the JSON body if it is an object, otherwise an empty dict."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Request body is not JSON", extra={"path": request.url.path})
        return {}
    return payload if isinstance(payload, dict) else {}
