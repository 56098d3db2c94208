from decimal import Decimal

import pytest

from s402_gate.adapters.evm.constants import (
    amount_to_value,
    value_to_amount,
    format_token_amount,
    get_chain_config,
    get_chain_name,
    is_valid_evm_address,
)
from s402_gate.engine.exceptions import ConfigurationError


def test_amount_to_value():
    assert amount_to_value(amount="0.001", decimals=18) == 10**15
    assert amount_to_value(amount=0.1, decimals=18) == 10**17
    assert amount_to_value(amount=2, decimals=6) == 2_000_000


def test_amount_to_value_is_exact_beyond_default_precision():
    assert amount_to_value(amount="12345678901.000000000000000001", decimals=18) == 12345678901000000000000000001
    assert amount_to_value(amount=Decimal("1" * 40), decimals=18) == int("1" * 40 + "0" * 18)
    with pytest.raises(ValueError):
        amount_to_value(amount="12345678901.0000000000000000001", decimals=18)


@pytest.mark.parametrize("amount", ["-1", "abc", "0.0000001"])
def test_amount_to_value_rejects(amount):
    with pytest.raises(ValueError):
        amount_to_value(amount=amount, decimals=6)


def test_value_to_amount_and_format():
    assert value_to_amount(value=10**15, decimals=18) == Decimal("0.001")
    assert format_token_amount(10**15) == "0.001"
    assert format_token_amount(2 * 10**18) == "2.0"
    assert format_token_amount("0") == "0.0"
    assert value_to_amount(value=12345678901000000000000000001, decimals=18) == Decimal("12345678901.000000000000000001")


def test_chain_table():
    bsc = get_chain_config(56)
    assert bsc.name == "BNB Smart Chain"
    assert bsc.assets["USD1"].decimals == 18
    assert get_chain_config(97).public_rpc_url.startswith("https://")
    assert get_chain_name(1) == "Unknown Chain"

    with pytest.raises(ConfigurationError):
        get_chain_config(1)


def test_address_validation():
    assert is_valid_evm_address("0x0000000000000000000000000000000000000002")
    assert is_valid_evm_address("0x605C5C8D83152BD98ECAC9B77A845349DA3C48A3")
    assert not is_valid_evm_address("0x1234")
    assert not is_valid_evm_address(None)
    assert not is_valid_evm_address("605c5c8d83152bd98ecac9b77a845349da3c48a3aa")
