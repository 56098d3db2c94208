"""
EVM Chain Configuration and S402 Deployment Constants

Provides the facilitator/token deployment addresses, the EIP-712 domain
identity used by the S402 facilitator, the supported chain table and the
token unit conversion helpers shared by the gate and the client.
"""

import os
from contextlib import contextmanager
from typing import Dict, Optional
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from pydantic import BaseModel, Field

from web3 import Web3
import dotenv

from ...engine.exceptions import ConfigurationError

dotenv.load_dotenv()


class EvmAssetConfig(BaseModel):
    """Token asset configuration."""
    symbol: str
    address: str = Field(..., description="Token contract address")
    name: str = Field(..., description="EIP-2612 permit domain name")
    decimals: int = Field(..., description="Token decimals")
    version: str = Field(..., description="EIP-2612 permit domain version")


class EvmChainConfig(BaseModel):
    """EVM blockchain network configuration."""
    chain_id: int
    name: str = Field(..., description="Human-readable network name")
    type: str = Field(default="evm", description="Blockchain type")
    public_rpc_url: str = Field(..., description="Public JSON-RPC endpoint")
    explorer_url: str = Field(..., description="Block explorer URL")
    assets: Dict[str, EvmAssetConfig] = Field(default_factory=dict, description="Supported assets")


# ---------------------------------------------------------------------------
# S402 deployment
# ---------------------------------------------------------------------------

#: S402 facilitator (settlement contract) on BNB Smart Chain.
S402_FACILITATOR: str = "0x605c5c8d83152bd98ecAc9B77a845349DA3c48a3"

#: USD1 stablecoin, the only token the facilitator settles.
USD1_TOKEN: str = "0x8d0D000Ee44948FC98c9B98A4FA4921476f08B0d"
USD1_DECIMALS: int = 18

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"

BNB_CHAIN_ID: int = 56
BSC_TESTNET_CHAIN_ID: int = 97

#: EIP-712 domain identity of the facilitator's PaymentAuthorization.
S402_DOMAIN_NAME: str = "S402Facilitator"
S402_DOMAIN_VERSION: str = "1"

#: Lifetime of a challenge, in seconds.
CHALLENGE_WINDOW_SECONDS: int = 600


_EVM_CHAINS_DATA: Dict[int, Dict] = {
    56: {
        "name": "BNB Smart Chain",
        "type": "evm",
        "public_rpc_url": "https://binance.llamarpc.com",
        "explorer_url": "https://bscscan.com",
        "assets": {
            "USD1": {
                "address": USD1_TOKEN,
                "name": "USD1",
                "decimals": USD1_DECIMALS,
                "version": "1",
            }
        },
    },
    97: {
        "name": "BSC Testnet",
        "type": "evm",
        "public_rpc_url": "https://data-seed-prebsc-1-s1.binance.org:8545",
        "explorer_url": "https://testnet.bscscan.com",
        "assets": {
            "USD1": {
                "address": USD1_TOKEN,
                "name": "USD1",
                "decimals": USD1_DECIMALS,
                "version": "1",
            }
        },
    },
}


def get_chain_config(chain_id: int) -> EvmChainConfig:
    """
    Look up the network configuration for ``chain_id``.

    Args:
        chain_id: EVM chain id (56 BNB Smart Chain, 97 BSC Testnet).

    Returns:
        EvmChainConfig: Parsed configuration including the USD1 asset entry.

    Raises:
        ConfigurationError: If the chain is not supported.
    """
    raw = _EVM_CHAINS_DATA.get(chain_id)
    if raw is None:
        supported = ", ".join(str(c) for c in sorted(_EVM_CHAINS_DATA))
        raise ConfigurationError(f"Unsupported chain id {chain_id} (supported: {supported})")

    assets = {
        symbol: EvmAssetConfig(symbol=symbol, **asset)
        for symbol, asset in raw["assets"].items()
    }
    return EvmChainConfig(
        chain_id=chain_id,
        name=raw["name"],
        type=raw["type"],
        public_rpc_url=raw["public_rpc_url"],
        explorer_url=raw["explorer_url"],
        assets=assets,
    )


def get_chain_name(chain_id: int) -> str:
    """Return the network name for ``chain_id`` or ``"Unknown Chain"``."""
    raw = _EVM_CHAINS_DATA.get(chain_id)
    return raw["name"] if raw else "Unknown Chain"


def get_private_key_from_env() -> Optional[str]:
    """
    Load the payer's EVM private key from environment variables.

    Environment Variable:
        - S402_PRIVATE_KEY: 0x-prefixed hex private key used by ``S402Client``

    Returns:
        str: Private key from environment, or None if not configured
    """
    return os.getenv("S402_PRIVATE_KEY")


def is_valid_evm_address(addr: Optional[str]) -> bool:
    """
    Check whether ``addr`` is a syntactically valid EVM address.

    Accepts 0x-prefixed, 42-character hex strings in any letter case.
    Checksums are not enforced.
    """
    if not isinstance(addr, str) or not addr.startswith("0x") or len(addr) != 42:
        return False
    return Web3.is_address(addr.lower())


@contextmanager
def _exact_context(number: Decimal, shift: int):
    """Decimal context wide enough to move ``number`` by ``shift`` places without rounding."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(number.as_tuple().digits) + abs(shift))
        ctx.traps[Inexact] = True
        yield ctx


def amount_to_value(*, amount: float | int | str | Decimal, decimals: int) -> int:
    """Convert a human-readable token `amount` into smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. "0.001" USD1). Accepts float/int/str/Decimal.
        decimals: Token decimals (18 for USD1).

    Returns:
        int: Smallest-unit integer value.

    Raises:
        ValueError: If inputs are invalid or the amount cannot be represented in smallest units.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        # str() avoids binary-float artifacts (0.1 -> 0.1000000000000000055...)
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if not dec_amount.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")

    if dec_amount < 0:
        raise ValueError("amount must be non-negative")

    with _exact_context(dec_amount, decimals):
        scaled = dec_amount.scaleb(decimals)

    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"amount {amount!r} is not representable with decimals={decimals} "
            f"(would create fractional smallest units)"
        )

    return int(scaled)


def value_to_amount(*, value: int | str | Decimal, decimals: int) -> Decimal:
    """Convert a smallest-unit integer `value` into an exact human-readable `Decimal`.

    Args:
        value: Smallest-unit integer value (e.g. 10**15 for 0.001 USD1).
        decimals: Token decimals.

    Returns:
        Decimal: Human-readable amount.

    Raises:
        ValueError: If inputs are invalid.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value < 0:
        raise ValueError("value must be non-negative")

    if dec_value != dec_value.to_integral_value():
        raise ValueError("value must be an integer in smallest units")

    with _exact_context(dec_value, decimals):
        return dec_value.scaleb(-decimals)


def format_token_amount(value: int | str, decimals: int = USD1_DECIMALS) -> str:
    """Render a smallest-unit value as a decimal string, e.g. ``"0.001"`` or ``"2.0"``."""
    amount = value_to_amount(value=value, decimals=decimals)
    text = format(amount.normalize(), "f")
    if "." not in text:
        text += ".0"
    return text
