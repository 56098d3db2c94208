"""
Route pricing and recipient resolution.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple, Union

from .config import S402Settings

logger = logging.getLogger(__name__)


class RoutePricing:
    """
    Maps a route key to the price and payee a proof must carry.

    Lookups are plain dict reads, so the gate re-resolves on every request
    and a proof is always checked against the current terms.

    Args:
        base_price: Price for routes without an entry, in smallest units.
        recipient: Payee for routes without an override.
        price_table: Per-route prices in smallest units.
        route_recipients: Per-route payee overrides.
    """

    def __init__(
        self,
        base_price: int,
        recipient: str,
        price_table: Optional[Mapping[str, int]] = None,
        route_recipients: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.base_price = int(base_price)
        self.recipient = recipient
        self._prices: Dict[str, int] = dict(price_table or {})
        self._recipients: Dict[str, str] = dict(route_recipients or {})

    @classmethod
    def from_settings(cls, settings: S402Settings) -> "RoutePricing":
        return cls(
            base_price=settings.base_price,
            recipient=settings.recipient,
            price_table=settings.price_table,
            route_recipients=settings.route_recipients,
        )

    def price_for(self, route_key: str) -> int:
        if route_key in self._prices:
            price = self._prices[route_key]
            logger.debug("Route-specific price", extra={"route_key": route_key, "price": price})
            return price
        logger.debug("Using base price", extra={"route_key": route_key, "price": self.base_price})
        return self.base_price

    def recipient_for(self, route_key: str) -> str:
        return self._recipients.get(route_key, self.recipient)

    def resolve(self, route_key: str) -> Tuple[int, str]:
        """Return ``(price, recipient)`` for ``route_key``."""
        return self.price_for(route_key), self.recipient_for(route_key)

    def all_prices(self) -> Dict[str, str]:
        """Every configured route price plus ``_base``, as decimal strings."""
        prices = {route_key: str(price) for route_key, price in self._prices.items()}
        prices["_base"] = str(self.base_price)
        return prices

    @staticmethod
    def validate_price(value: Union[str, int], expected: int) -> bool:
        """True iff ``value`` parses as an integer equal to ``expected``."""
        try:
            return int(value) == expected
        except (TypeError, ValueError):
            return False
