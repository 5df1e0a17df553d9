"""
Chain data source
Fetches the curve account and its trade history over JSON-RPC and hands
typed snapshots / TradeEvents to the core
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from curve_replay.clients.rpc_client import RPCClient, RPCError
from curve_replay.core.account_codec import (
    CurveSnapshot,
    account_info_bytes,
    decode_account_info,
)
from curve_replay.core.config import RPCConfig
from curve_replay.core.errors import DecodeError
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import get_metrics
from curve_replay.core.trade_classifier import TradeClassifier, TradeEvent, order_events


logger = get_logger(__name__)


class ChainDataSource:
    """
    Reads bonding curve state and history from an RPC node

    Usage:
        async with RPCClient(rpc_config) as rpc:
            source = ChainDataSource(rpc)
            data = await source.fetch_account_data(curve)
            events = await source.fetch_trade_events(curve, TradeClassifier())
    """

    def __init__(self, rpc: RPCClient, commitment: str = "confirmed", page_limit: int = 100):
        """
        Args:
            rpc: Started RPC client
            commitment: Commitment level for every request
            page_limit: Default signature page size
        """
        self.rpc = rpc
        self.commitment = commitment
        self.page_limit = page_limit

    @classmethod
    def from_config(cls, rpc: RPCClient, rpc_config: RPCConfig) -> "ChainDataSource":
        return cls(rpc, page_limit=rpc_config.signature_page_limit)

    async def _account_value(self, curve_address: str) -> Optional[Dict[str, Any]]:
        response = await self.rpc.call_http_rpc(
            "getAccountInfo",
            [curve_address, {"encoding": "base64", "commitment": self.commitment}]
        )
        return (response.get("result") or {}).get("value")

    async def fetch_account_data(self, curve_address: str) -> bytes:
        """
        Raw bytes of the curve account

        Raises:
            TruncatedDataError: If the account does not exist or has no data
            RPCError: If every endpoint fails
        """
        value = await self._account_value(curve_address)
        return account_info_bytes(value, curve_address)

    async def fetch_snapshot(self, curve_address: str) -> CurveSnapshot:
        """Fetch and decode the curve account in one call"""
        value = await self._account_value(curve_address)
        try:
            return decode_account_info(value, curve_address)
        except DecodeError as e:
            e.curve_address = curve_address
            raise

    async def fetch_signatures(
        self,
        curve_address: str,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Recent signatures touching the curve, newest first as the node returns them

        Returns:
            Entries with at least "signature", "slot", "blockTime" and "err"
        """
        response = await self.rpc.call_http_rpc(
            "getSignaturesForAddress",
            [curve_address, {"limit": limit or self.page_limit, "commitment": self.commitment}]
        )
        signatures = response.get("result") or []

        logger.info("signatures_fetched", curve=curve_address, count=len(signatures))
        return signatures

    async def fetch_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        response = await self.rpc.call_http_rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0
                }
            ]
        )
        return response.get("result")

    async def fetch_trade_events(
        self,
        curve_address: str,
        classifier: TradeClassifier,
        limit: Optional[int] = None,
        known_signatures: Optional[Iterable[str]] = None,
        snapshot: Optional[CurveSnapshot] = None
    ) -> List[TradeEvent]:
        """
        Fetch and classify the curve's recent trades

        Errored and already-known signatures are skipped without fetching the
        transaction. A transaction that cannot be fetched is logged, counted
        and skipped; the rest of the page is still processed.

        Args:
            curve_address: Bonding curve address
            classifier: Classifier turning balances into events
            limit: Signature page size (defaults to page_limit)
            known_signatures: Signatures already ingested by the caller
            snapshot: Current decoded account; if it is complete, the newest
                event is flagged as the migrating trade

        Returns:
            TradeEvents in replay order
        """
        known = set(known_signatures or [])
        metrics = get_metrics()

        signatures = await self.fetch_signatures(curve_address, limit)
        events: List[TradeEvent] = []
        skipped = 0

        # Oldest first, so same-slot ties keep chain order through the stable sort
        for entry in reversed(signatures):
            signature = entry.get("signature")
            if not signature or signature in known:
                skipped += 1
                continue

            if entry.get("err"):
                skipped += 1
                metrics.increment_counter("trades_ignored", labels={"reason": "transaction_error"})
                continue

            try:
                transaction = await self.fetch_transaction(signature)
            except (RPCError, aiohttp.ClientError) as e:
                skipped += 1
                metrics.increment_counter("transaction_fetch_failed")
                logger.warning(
                    "transaction_fetch_failed",
                    curve=curve_address,
                    signature=signature,
                    error=str(e)
                )
                continue

            if transaction is not None and transaction.get("blockTime") is None:
                transaction = dict(transaction, blockTime=entry.get("blockTime"))

            event = classifier.classify_transaction(signature, curve_address, transaction)
            if event is None:
                skipped += 1
                continue

            known.add(signature)
            events.append(event)

        logger.info(
            "trade_events_fetched",
            curve=curve_address,
            signatures=len(signatures),
            events=len(events),
            skipped=skipped
        )
        ordered = order_events(events)
        if snapshot is not None and snapshot.complete and ordered:
            ordered[-1] = replace(ordered[-1], complete=True)
        return ordered
