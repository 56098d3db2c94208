from s402_gate.servers.pricing import RoutePricing
from test_mocks import MOCK_RECIPIENT, create_mock_settings

OVERRIDE_RECIPIENT = "0x0000000000000000000000000000000000000007"


def make_pricing() -> RoutePricing:
    return RoutePricing(
        base_price=10**15,
        recipient=MOCK_RECIPIENT,
        price_table={"tool.analytics": 2 * 10**15},
        route_recipients={"tool.analytics": OVERRIDE_RECIPIENT},
    )


def test_resolve_route_specific_and_fallback():
    pricing = make_pricing()
    assert pricing.resolve("tool.analytics") == (2 * 10**15, OVERRIDE_RECIPIENT)
    assert pricing.resolve("tool.example") == (10**15, MOCK_RECIPIENT)


def test_all_prices_includes_base():
    assert make_pricing().all_prices() == {"tool.analytics": "2000000000000000", "_base": "1000000000000000"}


def test_validate_price():
    assert RoutePricing.validate_price("1000", 1000)
    assert RoutePricing.validate_price(1000, 1000)
    assert not RoutePricing.validate_price("1001", 1000)
    assert not RoutePricing.validate_price("1e3", 1000)
    assert not RoutePricing.validate_price(None, 1000)


def test_from_settings():
    settings = create_mock_settings(price_table={"tool.x": 5})
    pricing = RoutePricing.from_settings(settings)
    assert pricing.resolve("tool.x") == (5, MOCK_RECIPIENT)
    assert pricing.resolve("anything") == (settings.base_price, MOCK_RECIPIENT)
