"""Utility functions for the vault engine."""

from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.types import ChecksumAddress

from .constants import RATE_LIMIT_MARKERS, USER_REJECTED_CODE
from .exceptions import InvalidAmount, ValidationError


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse user input into a finite Decimal."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise InvalidAmount("Amount must be numeric", field=field, value=value)
    elif isinstance(value, int | float | str):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmount("Amount must be numeric", field=field, value=value)
    else:
        raise InvalidAmount("Amount must be numeric", field=field, value=value)

    if not amount.is_finite():
        raise InvalidAmount("Amount must be finite", field=field, value=value)
    return amount


def to_base_units(value: Decimal | int | float | str, decimals: int) -> int:
    """Convert a human amount into integer token units for the given decimals."""
    amount = parse_amount(value)
    if amount < 0:
        raise InvalidAmount("Amount cannot be negative", field="amount", value=value)

    with localcontext() as ctx:
        ctx.prec = 80
        scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(
            f"Amount has more than {decimals} decimal places",
            field="amount",
            value=value,
        )
    return int(scaled)


def from_base_units(raw_value: int, decimals: int) -> Decimal:
    """Convert integer token units to Decimal."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(int(raw_value)).scaleb(-int(decimals))


def to_checksum(address: str, field: str = "address") -> ChecksumAddress:
    """Return the checksum form of an address or raise ValidationError."""
    try:
        return Web3.to_checksum_address(address)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Invalid EVM address", field=field, value=address, details={"error": str(exc)}
        ) from exc


def same_address(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


def is_rate_limit_error(exc: BaseException) -> bool:
    """Best-effort detection of HTTP 429 style failures from RPC providers."""
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        if exc.response.status_code == 429:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_user_rejection(exc: BaseException) -> bool:
    """Detect EIP-1193 user rejections surfaced by wallet signers."""
    code = getattr(exc, "code", None)
    if code == USER_REJECTED_CODE:
        return True
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], Mapping) and args[0].get("code") == USER_REJECTED_CODE:
        return True
    return "user rejected" in str(exc).lower()


def is_already_known(exc: BaseException) -> bool:
    """Detect nodes reporting that a raw transaction was already broadcast."""
    message = str(exc).lower()
    return "already known" in message or "known transaction" in message


def explorer_tx_url(explorer_url: str | None, tx_hash: str | None) -> str | None:
    """Return a block explorer link for a transaction hash."""
    if not explorer_url or not tx_hash:
        return None
    return f"{explorer_url.rstrip('/')}/tx/{tx_hash}"


def serialise_receipt(receipt: Any) -> Any:
    """Serialise web3 receipt objects into JSON-friendly structures."""
    if receipt is None:
        return None
    if isinstance(receipt, Mapping):
        return {key: serialise_receipt(value) for key, value in receipt.items()}
    if isinstance(receipt, Sequence) and not isinstance(
        receipt, str | bytes | bytearray | HexBytes
    ):
        return [serialise_receipt(item) for item in receipt]
    if isinstance(receipt, bytes | bytearray | HexBytes):
        return HexBytes(receipt).to_0x_hex()
    return receipt
