"""
Gate configuration.

``S402Settings`` is a ``pydantic-settings`` model read from ``S402_*``
environment variables and an optional ``.env`` file.  Prices given as strings
(the environment's only form) are human token amounts and are stored in
smallest units; integers passed from Python are taken as smallest units.

Environment Variables:
    - S402_CHAIN_ID: chain the facilitator lives on (default 56)
    - S402_RPC_URL: JSON-RPC endpoint (default: the chain table entry)
    - S402_FACILITATOR: facilitator contract address
    - S402_TOKEN: payment token address
    - S402_RECIPIENT: default payee
    - S402_BASE_PRICE: default price, e.g. ``0.001``
    - S402_PRICE_TABLE: ``route;price`` pairs separated by whitespace, or a JSON object
    - S402_ROUTE_RECIPIENTS: ``route;address`` pairs separated by whitespace, or a JSON object
    - S402_MINIMUM_CONFIRMATIONS: 1-100 (default 2)
    - S402_EXPECTED_CHAIN_ID: chain id proofs must be issued for (default 56)
    - S402_MAX_BACKGROUND_VERIFICATIONS: async verification concurrency (default 64)
    - S402_MAX_PENDING_VERIFICATIONS: queued async verifications before falling
      back to inline checks (default: four times the concurrency)
    - S402_REQUEST_TIMEOUT: RPC timeout in seconds (default 10)
"""

import json
import logging
from typing import Annotated, Any, Dict, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError

from ..adapters.evm.constants import (
    S402_FACILITATOR,
    USD1_TOKEN,
    USD1_DECIMALS,
    BNB_CHAIN_ID,
    amount_to_value,
    get_chain_config,
    is_valid_evm_address,
)
from ..engine.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT = "0x0000000000000000000000000000000000000002"


def _parse_pairs(raw: str) -> Dict[str, str]:
    """Parse ``key;value`` pairs separated by whitespace, or a JSON object."""
    raw = raw.strip()
    if not raw:
        return {}

    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("must be a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    pairs: Dict[str, str] = {}
    for entry in raw.split():
        key, sep, value = entry.partition(";")
        if not sep or not key or not value:
            raise ValueError(f"entry {entry!r} is not in 'route;value' form")
        pairs[key] = value
    return pairs


def _human_prices(raw: str) -> Dict[str, int]:
    table: Dict[str, int] = {}
    for route_key, price in _parse_pairs(raw).items():
        try:
            table[route_key] = amount_to_value(amount=price, decimals=USD1_DECIMALS)
        except ValueError as e:
            raise ValueError(f"invalid price for route {route_key!r}: {e}") from e
    return table


class S402Settings(BaseSettings):
    """
    Read-only settings shared by every gated route.

    Attributes:
        chain_id: Chain used for the EIP-712 domain and challenges.
        rpc_url: JSON-RPC endpoint; falls back to the chain table.
        facilitator: Settlement contract and EIP-712 verifying contract.
        token: Token payments are denominated in.
        recipient: Default payee.
        base_price: Default price in smallest units.
        price_table: Per-route prices in smallest units.
        route_recipients: Per-route payee overrides.
        minimum_confirmations: Required settlement depth.
        expected_chain_id: Chain id the gate accepts proofs for.
        max_background_verifications: Concurrency of the async discipline.
        max_pending_verifications: Cap on queued background verifications.
        request_timeout: Upper bound for a single RPC call, in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="S402_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    chain_id: int = BNB_CHAIN_ID
    rpc_url: Optional[str] = None
    facilitator: str = S402_FACILITATOR
    token: str = USD1_TOKEN
    recipient: str = DEFAULT_RECIPIENT
    base_price: int = Field(default=10**15, ge=0)
    price_table: Annotated[Dict[str, int], NoDecode] = Field(default_factory=dict)
    route_recipients: Annotated[Dict[str, str], NoDecode] = Field(default_factory=dict)
    minimum_confirmations: int = Field(default=2, ge=1, le=100)
    expected_chain_id: int = BNB_CHAIN_ID
    max_background_verifications: int = Field(default=64, ge=1)
    max_pending_verifications: Optional[int] = Field(default=None, ge=1)
    request_timeout: float = Field(default=10.0, gt=0)

    @field_validator("base_price", mode="before")
    @classmethod
    def _human_base_price(cls, v: Any) -> Any:
        if isinstance(v, str):
            return amount_to_value(amount=v, decimals=USD1_DECIMALS)
        return v

    @field_validator("price_table", mode="before")
    @classmethod
    def _human_price_table(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _human_prices(v)
        return v

    @field_validator("route_recipients", mode="before")
    @classmethod
    def _route_recipient_pairs(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _parse_pairs(v)
        return v

    @field_validator("facilitator", "token", "recipient")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not is_valid_evm_address(v):
            raise ValueError(f"invalid EVM address: {v!r}")
        return v

    @field_validator("route_recipients")
    @classmethod
    def _check_route_recipients(cls, v: Dict[str, str]) -> Dict[str, str]:
        for route_key, address in v.items():
            if not is_valid_evm_address(address):
                raise ValueError(f"invalid recipient for route {route_key!r}: {address!r}")
        return v

    @field_validator("price_table")
    @classmethod
    def _check_prices(cls, v: Dict[str, int]) -> Dict[str, int]:
        for route_key, price in v.items():
            if price < 0:
                raise ValueError(f"negative price for route {route_key!r}")
        return v

    @model_validator(mode="after")
    def _check_pending_cap(self) -> "S402Settings":
        if (
            self.max_pending_verifications is not None
            and self.max_pending_verifications < self.max_background_verifications
        ):
            raise ValueError("max_pending_verifications must be at least max_background_verifications")
        return self

    @property
    def resolved_rpc_url(self) -> str:
        """``rpc_url`` if set, otherwise the chain table's public endpoint."""
        if self.rpc_url:
            return self.rpc_url
        return get_chain_config(self.chain_id).public_rpc_url


def parse_price_table(raw: str) -> Dict[str, int]:
    """
    Parse a price table into smallest units.

    Both ``"tool.example;0.001 tool.analytics;0.002"`` and
    ``'{"tool.example": "0.001"}'`` are accepted; prices are human USD1 amounts.

    Raises:
        ConfigurationError: On malformed entries or unrepresentable amounts.
    """
    try:
        return _human_prices(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid S402_PRICE_TABLE: {e}") from e


def load_settings(**overrides: Any) -> S402Settings:
    """
    Build ``S402Settings`` from the environment and ``.env``.

    Args:
        **overrides: Field values that take precedence over the environment.

    Raises:
        ConfigurationError: If any value is missing its expected form or out of range.
    """
    try:
        settings = S402Settings(**overrides)
    except (ValidationError, SettingsError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.info(
        "Configuration loaded",
        extra={
            "chain_id": settings.chain_id,
            "recipient": settings.recipient,
            "base_price": settings.base_price,
            "routes": sorted(settings.price_table),
            "minimum_confirmations": settings.minimum_confirmations,
        },
    )
    return settings
