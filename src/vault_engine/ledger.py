"""Client for the off-chain withdrawal request ledger."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import requests

from .constants import DEFAULT_LEDGER_BASE_URL, DEFAULT_LEDGER_TIMEOUT, LedgerStatus
from .exceptions import LedgerUnavailable, ValidationError
from .types import LedgerEntry, LedgerSnapshot
from .utils import to_checksum

logger = logging.getLogger(__name__)


class RequestLedgerClient:
    """Fetch pending and fulfilled withdrawal requests for a vault and wallet.

    The ledger is a single source with no fallback. When it cannot be read
    the client answers with empty lists and the error text instead of
    raising, so callers are never blocked on it. The latest snapshot per
    (vault, wallet) is kept for cancellation lookups.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str = DEFAULT_LEDGER_BASE_URL,
        request_timeout: float = DEFAULT_LEDGER_TIMEOUT,
    ) -> None:
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._snapshots: dict[tuple[str, str], LedgerSnapshot] = {}
        self._lock = threading.Lock()

    def list_requests(self, vault: str, wallet: str) -> LedgerSnapshot:
        vault_address = to_checksum(vault, field="vault")
        wallet_address = to_checksum(wallet, field="wallet")

        try:
            payload = self._get("queueData", vault_address, wallet_address)
            pending, fulfilled = self._parse(payload)
        except LedgerUnavailable as exc:
            logger.warning("Ledger unavailable for %s/%s: %s", vault_address, wallet_address, exc)
            snapshot = LedgerSnapshot(
                vault=vault_address,
                wallet=wallet_address,
                error=str(exc),
                fetched_at=datetime.now(timezone.utc),
            )
        else:
            snapshot = LedgerSnapshot(
                vault=vault_address,
                wallet=wallet_address,
                pending=pending,
                fulfilled=fulfilled,
                fetched_at=datetime.now(timezone.utc),
            )
            logger.debug(
                "Ledger for %s/%s: %d pending, %d fulfilled",
                vault_address,
                wallet_address,
                len(pending),
                len(fulfilled),
            )

        with self._lock:
            self._snapshots[(vault_address.lower(), wallet_address.lower())] = snapshot
        return snapshot

    def last_snapshot(self, vault: str, wallet: str) -> LedgerSnapshot | None:
        with self._lock:
            return self._snapshots.get((vault.lower(), wallet.lower()))

    def refresh_cache(self, vault: str, wallet: str) -> bool:
        """Ask the ledger to re-index a wallet; failures are only logged."""

        vault_address = to_checksum(vault, field="vault")
        wallet_address = to_checksum(wallet, field="wallet")
        try:
            self._get("cacheQueueData", vault_address, wallet_address)
        except LedgerUnavailable as exc:
            logger.warning("Ledger cache refresh failed for %s/%s: %s", vault_address, wallet_address, exc)
            return False
        logger.info("Ledger cache refresh requested for %s/%s", vault_address, wallet_address)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get(self, endpoint: str, vault: str, wallet: str) -> Any:
        url = f"{self._base_url}/{endpoint}"
        try:
            response = self._session.get(
                url,
                params={"vaultAddress": vault, "userAddress": wallet},
                timeout=self._request_timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            raise LedgerUnavailable(
                f"Ledger request to {endpoint} failed: {exc}", endpoint=url, status_code=status
            ) from exc
        except ValueError as exc:
            raise LedgerUnavailable(
                f"Ledger returned invalid JSON from {endpoint}", endpoint=url
            ) from exc

    def _parse(self, payload: Any) -> tuple[tuple[LedgerEntry, ...], tuple[LedgerEntry, ...]]:
        if not isinstance(payload, Mapping):
            raise LedgerUnavailable("Ledger response is not an object")

        body = payload.get("result", payload)
        if body is None:
            body = {}
        if not isinstance(body, Mapping):
            raise LedgerUnavailable("Ledger result is not an object")

        return (
            self._entries(body, LedgerStatus.PENDING),
            self._entries(body, LedgerStatus.FULFILLED),
        )

    def _entries(self, body: Mapping[str, Any], status: LedgerStatus) -> tuple[LedgerEntry, ...]:
        raw = body.get(status.value)
        if raw is None:
            raw = body.get(status.value.lower(), [])
        if not isinstance(raw, Sequence) or isinstance(raw, str):
            raise LedgerUnavailable(f"Ledger {status.value} list is malformed")

        entries: list[LedgerEntry] = []
        for item in raw:
            if not isinstance(item, Mapping):
                logger.warning("Skipping malformed %s ledger entry: %r", status.value, item)
                continue
            try:
                entries.append(LedgerEntry.from_dict(item, status))
            except ValidationError as exc:
                logger.warning("Skipping %s ledger entry: %s", status.value, exc.message)
        return tuple(entries)
