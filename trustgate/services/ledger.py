"""
Ledger Adapter

Boundary to the external append-only ledger.

The gateway only needs two operations from the ledger:
- submit a trust event and get back a transaction id
- read past trust events of a group from a point in time

HttpLedgerAdapter talks to a ledger relay over HTTP:
    POST {ledger_url}/events              -> {"txHash": "0x..."}
    GET  {ledger_url}/events?groupId=&fromTs=&limit=
                                          -> [{"groupId", "oldTS", "newTS",
                                               "reason", "ts", "txHash"}, ...]

DisabledLedgerAdapter is used when no ledger is configured: submissions are
accepted locally but never confirmed, and there is no ledger history.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..common.exceptions import HistoryFetchError, LedgerSubmitError
from ..common.logging_setup import get_service_logger
from ..common.models import PointSource, TrendPoint

logger = get_service_logger("gateway.ledger")


@dataclass
class LedgerReceipt:
    """Result of a ledger submission"""
    tx_hash: str | None
    data_hash: str | None
    confirmed: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "dataHash": self.data_hash,
            "confirmed": self.confirmed,
            "error": self.error,
        }


class LedgerAdapter(ABC):
    """Operations the pipeline needs from the ledger."""

    configured: bool = True

    @abstractmethod
    async def submit(
        self,
        group_id: str,
        old_ts: float,
        new_ts: float,
        reason: str,
        data_hash: str | None,
        ts: int,
    ) -> LedgerReceipt:
        """
        Log one trust event on the ledger.

        Raises:
            LedgerSubmitError: On any failure (always retryable)
        """

    @abstractmethod
    async def query_events(self, group_id: str, from_ts: int) -> list[TrendPoint]:
        """
        Trust events of a group since from_ts.

        Raises:
            HistoryFetchError: If the ledger cannot be read
        """

    async def close(self) -> None:
        """Release client resources."""


class DisabledLedgerAdapter(LedgerAdapter):
    """Ledger not configured: nothing is confirmed, no history."""

    configured = False

    async def submit(self, group_id, old_ts, new_ts, reason, data_hash, ts) -> LedgerReceipt:
        logger.info(f"Skipping ledger write for {group_id} (ledger not configured)")
        return LedgerReceipt(
            tx_hash=None,
            data_hash=data_hash,
            confirmed=False,
            error="ledger not configured",
        )

    async def query_events(self, group_id: str, from_ts: int) -> list[TrendPoint]:
        return []


class HttpLedgerAdapter(LedgerAdapter):
    """
    Ledger relay client over HTTP.

    Every call is bounded by the client timeout; timeouts and connection
    errors surface as LedgerSubmitError / HistoryFetchError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 15.0,
        query_limit: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the ledger client.

        Args:
            base_url: Ledger relay URL
            api_key: Relay credential (sent as Bearer token)
            timeout_s: Connect/response timeout for every call
            query_limit: Maximum events requested per history query
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.query_limit = query_limit
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ============================================
    # SUBMIT
    # ============================================

    async def submit(
        self,
        group_id: str,
        old_ts: float,
        new_ts: float,
        reason: str,
        data_hash: str | None,
        ts: int,
    ) -> LedgerReceipt:
        client = self._get_client()
        payload = {
            "groupId": group_id,
            "oldTS": int(round(old_ts)),
            "newTS": int(round(new_ts)),
            "reason": reason,
            "dataHash": data_hash,
            "ts": int(ts),
        }

        try:
            response = await client.post("/events", json=payload)
        except httpx.TimeoutException as e:
            raise LedgerSubmitError("request timeout") from e
        except httpx.HTTPError as e:
            raise LedgerSubmitError(f"connection failed: {e}") from e

        if response.status_code not in (200, 201, 202):
            raise LedgerSubmitError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerSubmitError("invalid JSON in ledger response") from e

        tx_hash = None
        if isinstance(body, dict):
            tx_hash = body.get("txHash") or body.get("transactionHash")
        if not tx_hash:
            raise LedgerSubmitError("ledger response has no transaction hash")

        logger.info(f"Ledger confirmed {group_id} event: {tx_hash}")
        return LedgerReceipt(tx_hash=tx_hash, data_hash=data_hash, confirmed=True)

    # ============================================
    # HISTORY
    # ============================================

    async def query_events(self, group_id: str, from_ts: int) -> list[TrendPoint]:
        client = self._get_client()
        params = {"groupId": group_id, "fromTs": int(from_ts), "limit": self.query_limit}

        try:
            response = await client.get("/events", params=params)
        except httpx.TimeoutException as e:
            raise HistoryFetchError("request timeout", group_id=group_id) from e
        except httpx.HTTPError as e:
            raise HistoryFetchError(f"connection failed: {e}", group_id=group_id) from e

        if response.status_code != 200:
            raise HistoryFetchError(f"HTTP {response.status_code}", group_id=group_id)

        try:
            body = response.json()
        except ValueError as e:
            raise HistoryFetchError("invalid JSON in ledger response", group_id=group_id) from e

        items = body.get("events", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise HistoryFetchError("unexpected ledger response shape", group_id=group_id)

        points = []
        skipped = 0
        for item in items:
            point = self._item_to_point(item, group_id)
            if point is None:
                skipped += 1
                continue
            points.append(point)

        if skipped:
            logger.warning(f"Skipped {skipped} unparsable ledger events for {group_id}")

        points.sort(key=lambda p: p.ts)
        return points

    def _item_to_point(self, item: Any, group_id: str) -> TrendPoint | None:
        """Convert a ledger event to a TrendPoint (None if it has no usable ts)."""
        if not isinstance(item, dict):
            return None
        try:
            ts = float(item["ts"])
        except (KeyError, TypeError, ValueError):
            return None

        return TrendPoint(
            group_id=str(item.get("groupId") or group_id),
            ts=ts,
            source=PointSource.ONCHAIN,
            old_ts=_optional_float(item.get("oldTS")),
            new_ts=_optional_float(item.get("newTS")),
            reason=item.get("reason"),
            tx_hash=item.get("txHash"),
        )


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def create_ledger_adapter(
    ledger_url: str,
    api_key: str = "",
    timeout_s: float = 15.0,
) -> LedgerAdapter:
    """HTTP adapter when a URL is configured, otherwise the disabled adapter."""
    if not ledger_url:
        logger.info("Ledger URL not set: on-ledger logging disabled")
        return DisabledLedgerAdapter()
    logger.info(f"Ledger relay at {ledger_url}")
    return HttpLedgerAdapter(ledger_url, api_key=api_key, timeout_s=timeout_s)
