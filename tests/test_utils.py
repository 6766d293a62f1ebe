"""Tests for utility functions."""

from decimal import Decimal

import pytest
import requests
from hexbytes import HexBytes
from web3 import Web3

from vault_engine.exceptions import InvalidAmount, ValidationError
from vault_engine.utils import (
    explorer_tx_url,
    from_base_units,
    is_already_known,
    is_rate_limit_error,
    is_user_rejection,
    parse_amount,
    same_address,
    serialise_receipt,
    to_base_units,
    to_checksum,
)


class TestBaseUnitConversion:
    """Test conversion between human amounts and token units."""

    def test_to_base_units_string(self):
        assert to_base_units("1.5", 6) == 1_500_000

    def test_to_base_units_decimal(self):
        assert to_base_units(Decimal("40"), 18) == 40 * 10**18

    def test_to_base_units_large_18_decimals(self):
        """Large balances keep full precision."""
        assert to_base_units("123456789012.123456789012345678", 18) == 123456789012123456789012345678

    def test_to_base_units_negative_raises_error(self):
        with pytest.raises(InvalidAmount):
            to_base_units("-1", 18)

    def test_to_base_units_too_many_places(self):
        with pytest.raises(InvalidAmount):
            to_base_units("0.0000001", 6)

    def test_from_base_units(self):
        assert from_base_units(1_050_000, 6) == Decimal("1.05")

    def test_from_base_units_large(self):
        assert from_base_units(123456789012123456789012345678, 18) == Decimal(
            "123456789012.123456789012345678"
        )


class TestParseAmount:
    def test_parse_int(self):
        assert parse_amount(50) == Decimal(50)

    def test_parse_strips_whitespace(self):
        assert parse_amount(" 12.5 ") == Decimal("12.5")

    @pytest.mark.parametrize("value", ["abc", "", None, True, float("nan"), "Infinity"])
    def test_parse_rejects(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value)


class TestAddresses:
    def test_to_checksum_lowercase(self):
        lowered = "0x" + "ab" * 20
        result = to_checksum(lowered)
        assert result.lower() == lowered
        assert Web3.is_checksum_address(result)

    def test_to_checksum_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            to_checksum("0x1234", field="vault")
        assert exc_info.value.field == "vault"

    def test_same_address_ignores_case(self):
        assert same_address("0x" + "AB" * 20, "0x" + "ab" * 20)
        assert not same_address(None, "0x" + "ab" * 20)


class TestErrorClassification:
    def test_rate_limit_from_http_status(self):
        response = requests.Response()
        response.status_code = 429
        assert is_rate_limit_error(requests.HTTPError("boom", response=response))

    def test_rate_limit_from_message(self):
        assert is_rate_limit_error(ValueError("Too Many Requests"))
        assert not is_rate_limit_error(ValueError("execution reverted"))

    def test_digits_in_revert_data_are_not_rate_limits(self):
        assert not is_rate_limit_error(ValueError("execution reverted at 0x4290aa" + "00" * 16 + "bb"))
        assert not is_rate_limit_error(ConnectionError("HTTPConnectionPool(port=4290): refused"))

    def test_user_rejection_by_code(self):
        assert is_user_rejection(ValueError({"code": 4001, "message": "denied"}))

    def test_user_rejection_by_message(self):
        assert is_user_rejection(RuntimeError("User rejected the request."))
        assert not is_user_rejection(RuntimeError("insufficient funds"))

    def test_already_known(self):
        assert is_already_known(ValueError({"message": "already known"}))
        assert not is_already_known(ValueError("nonce too low"))


def test_explorer_tx_url() -> None:
    assert explorer_tx_url("https://etherscan.io/", "0xabc") == "https://etherscan.io/tx/0xabc"
    assert explorer_tx_url(None, "0xabc") is None
    assert explorer_tx_url("https://etherscan.io", None) is None


def test_serialise_receipt_hexbytes() -> None:
    receipt = {
        "transactionHash": HexBytes("0x" + "12" * 32),
        "status": 1,
        "logs": [{"data": HexBytes("0x01")}],
    }

    result = serialise_receipt(receipt)

    assert result == {
        "transactionHash": "0x" + "12" * 32,
        "status": 1,
        "logs": [{"data": "0x01"}],
    }
