"""
Trade classifier
Turns the curve's pre/post token balances in one transaction into a TradeEvent
"""

from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import get_metrics


logger = get_logger(__name__)


DEFAULT_DUST_THRESHOLD = 1


class TradeKind(Enum):
    """Direction of a trade from the buyer's point of view"""
    BUY = "buy"
    SELL = "sell"
    NONE = "none"


@dataclass(frozen=True)
class TradeEvent:
    """One economically meaningful state transition of a curve

    token_diff is curve pre-balance minus post-balance in raw token units:
    positive when the curve sent tokens out (buy), negative when tokens
    came back to the curve (sell).
    """
    signature: str
    curve_address: str
    token_diff: int
    block_time: Optional[int] = None  # unix seconds
    sequence_hint: int = 0  # slot or insertion order
    complete: bool = False  # curve reported migration in this transaction
    pre_amount: Optional[int] = None
    post_amount: Optional[int] = None

    @property
    def kind(self) -> TradeKind:
        if self.token_diff > 0:
            return TradeKind.BUY
        if self.token_diff < 0:
            return TradeKind.SELL
        return TradeKind.NONE

    @property
    def ordering_key(self) -> Tuple[Optional[int], int]:
        return self.block_time, self.sequence_hint


def compare_ordering(
    left: Tuple[Optional[int], int],
    right: Tuple[Optional[int], int]
) -> int:
    """
    Compare two (block_time, sequence_hint) keys

    Block times are compared first when both are known; the sequence hint
    breaks ties and is the only criterion when either block time is missing.

    Returns:
        -1, 0 or 1 like a classic cmp function
    """
    left_time, left_seq = left
    right_time, right_seq = right

    if left_time is not None and right_time is not None and left_time != right_time:
        return -1 if left_time < right_time else 1
    if left_seq != right_seq:
        return -1 if left_seq < right_seq else 1
    return 0


def order_events(events: Iterable[TradeEvent]) -> List[TradeEvent]:
    """Stable sort of events into replay order"""
    return sorted(
        events,
        key=cmp_to_key(lambda a, b: compare_ordering(a.ordering_key, b.ordering_key))
    )


def dedupe_by_signature(events: Iterable[TradeEvent]) -> List[TradeEvent]:
    """Keep the first event seen for each signature, preserving order"""
    seen = set()
    unique = []
    for event in events:
        if event.signature in seen:
            continue
        seen.add(event.signature)
        unique.append(event)
    return unique


def find_owner_balance(
    balances: Optional[Sequence[Dict[str, Any]]],
    owner: str
) -> Optional[int]:
    """
    Raw token amount held by `owner` in a pre/postTokenBalances list

    Args:
        balances: Entries shaped like {"owner": ..., "uiTokenAmount": {"amount": "123"}}
        owner: Account owner to look for (the curve address)

    Returns:
        Raw integer amount, or None if the owner has no entry
    """
    for entry in balances or []:
        if entry.get("owner") != owner:
            continue
        amount = (entry.get("uiTokenAmount") or {}).get("amount")
        if amount is None:
            return None
        return int(amount)
    return None


class TradeClassifier:
    """
    Classifies curve token-balance changes into buy/sell TradeEvents

    Errored transactions, transactions where the curve has no token balance
    entry, and dust-sized changes produce no event.

    Usage:
        classifier = TradeClassifier()
        event = classifier.classify("5sig...", curve, pre_balance=1_000, post_balance=900)
        assert event.kind is TradeKind.BUY
    """

    def __init__(self, dust_threshold: int = DEFAULT_DUST_THRESHOLD):
        """
        Args:
            dust_threshold: Absolute diffs at or below this value are noise
        """
        if dust_threshold < 0:
            raise ValueError("dust_threshold must be >= 0")
        self.dust_threshold = dust_threshold

    def classify(
        self,
        signature: str,
        curve_address: str,
        pre_balance: Optional[int],
        post_balance: Optional[int],
        err: Any = None,
        block_time: Optional[int] = None,
        sequence_hint: int = 0,
        complete: bool = False
    ) -> Optional[TradeEvent]:
        """
        Classify one transaction touching the curve

        Args:
            signature: Transaction signature
            curve_address: Bonding curve address (owner of the token account)
            pre_balance: Curve token balance before the transaction (raw units)
            post_balance: Curve token balance after the transaction (raw units)
            err: Transaction execution error, if any
            block_time: Block time in unix seconds
            sequence_hint: Slot or insertion order
            complete: Whether the curve reported migration in this transaction

        Returns:
            TradeEvent or None when the transaction is not a meaningful trade
        """
        if err:
            return self._ignore(signature, curve_address, "transaction_error")

        if pre_balance is None or post_balance is None:
            return self._ignore(signature, curve_address, "curve_not_involved")

        diff = int(pre_balance) - int(post_balance)
        if abs(diff) <= self.dust_threshold:
            return self._ignore(signature, curve_address, "dust")

        event = TradeEvent(
            signature=signature,
            curve_address=curve_address,
            token_diff=diff,
            block_time=block_time,
            sequence_hint=sequence_hint,
            complete=complete,
            pre_amount=int(pre_balance),
            post_amount=int(post_balance)
        )

        get_metrics().increment_counter("trades_classified", labels={"kind": event.kind.value})
        logger.debug(
            "trade_classified",
            curve=curve_address,
            signature=signature,
            kind=event.kind.value,
            token_diff=diff
        )
        return event

    def classify_transaction(
        self,
        signature: str,
        curve_address: str,
        transaction: Optional[Dict[str, Any]],
        complete: bool = False
    ) -> Optional[TradeEvent]:
        """
        Classify a getTransaction JSON result

        Args:
            signature: Transaction signature
            curve_address: Bonding curve address
            transaction: JSON-RPC `result` object (with `meta`, `slot`, `blockTime`)
            complete: Whether the curve reported migration in this transaction

        Returns:
            TradeEvent or None
        """
        if not transaction or not transaction.get("meta"):
            return self._ignore(signature, curve_address, "missing_meta")

        meta = transaction["meta"]
        return self.classify(
            signature=signature,
            curve_address=curve_address,
            pre_balance=find_owner_balance(meta.get("preTokenBalances"), curve_address),
            post_balance=find_owner_balance(meta.get("postTokenBalances"), curve_address),
            err=meta.get("err"),
            block_time=transaction.get("blockTime"),
            sequence_hint=transaction.get("slot") or 0,
            complete=complete
        )

    def _ignore(self, signature: str, curve_address: str, reason: str) -> None:
        get_metrics().increment_counter("trades_ignored", labels={"reason": reason})
        logger.debug("trade_ignored", curve=curve_address, signature=signature, reason=reason)
        return None
