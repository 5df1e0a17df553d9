"""
Bonding curve account codec
Decodes the on-chain curve-state account into a typed snapshot

Layout (little-endian):
    0..8    discriminator (u64)
    8..16   virtual_token_reserves (u64)
    16..24  virtual_sol_reserves (u64, lamports)
    24..32  real_token_reserves (u64)
    32..40  real_sol_reserves (u64, lamports)
    40..48  token_total_supply (u64)
    48      complete (bool byte)
    49..81  creator (32-byte pubkey, new layout only: total length >= 150)
"""

import base64
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

from curve_replay.core.errors import (
    DiscriminatorMismatchError,
    InvalidReserveStateError,
    TruncatedDataError,
)
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import get_metrics


logger = get_logger(__name__)


CURVE_DISCRIMINATOR_VALUE = 6966180631402821399
CURVE_DISCRIMINATOR = struct.pack("<Q", CURVE_DISCRIMINATOR_VALUE)

DISCRIMINATOR_LENGTH = 8
MIN_ACCOUNT_LENGTH = 49  # discriminator + 5 x u64 + complete flag
NEW_LAYOUT_MIN_LENGTH = 150
CREATOR_OFFSET = 49
CREATOR_LENGTH = 32

LAMPORTS_PER_SOL = 1_000_000_000

_SCALARS = struct.Struct("<QQQQQ")


@dataclass(frozen=True)
class CurveSnapshot:
    """Decoded bonding curve account at one point in time

    All values in raw units:
    - Token values: base token units (decimals depend on the mint)
    - SOL values: lamports
    """
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool
    creator: Optional[Pubkey] = None
    discriminator: bytes = CURVE_DISCRIMINATOR

    @property
    def has_valid_reserves(self) -> bool:
        """Whether the snapshot can be priced"""
        return self.virtual_token_reserves > 0 and self.virtual_sol_reserves > 0

    def require_valid_reserves(self, curve_address: Optional[str] = None) -> None:
        """
        Raise if the snapshot cannot be priced

        Raises:
            InvalidReserveStateError: If either virtual reserve is <= 0
        """
        if not self.has_valid_reserves:
            raise InvalidReserveStateError(
                f"Invalid reserve state: virtual_sol={self.virtual_sol_reserves} "
                f"virtual_token={self.virtual_token_reserves}",
                curve_address=curve_address
            )


def decode_curve_account(data: bytes) -> CurveSnapshot:
    """
    Decode raw bonding curve account bytes

    Args:
        data: Raw account data as returned by getAccountInfo

    Returns:
        CurveSnapshot; `creator` is set only for the new (>= 150 byte) layout

    Raises:
        TruncatedDataError: Shorter than the discriminator or the fixed layout
        DiscriminatorMismatchError: Not a bonding curve account
    """
    data = bytes(data)
    metrics = get_metrics()

    if len(data) < DISCRIMINATOR_LENGTH:
        metrics.increment_counter("curve_decode_failed", labels={"reason": "truncated"})
        raise TruncatedDataError(
            f"Account data too short for discriminator: {len(data)} bytes"
        )

    discriminator = data[:DISCRIMINATOR_LENGTH]
    if discriminator != CURVE_DISCRIMINATOR:
        metrics.increment_counter("curve_decode_failed", labels={"reason": "discriminator"})
        raise DiscriminatorMismatchError(
            f"Invalid curve state discriminator: {discriminator.hex()}"
        )

    if len(data) < MIN_ACCOUNT_LENGTH:
        metrics.increment_counter("curve_decode_failed", labels={"reason": "truncated"})
        raise TruncatedDataError(
            f"Account data too short: {len(data)} bytes (need {MIN_ACCOUNT_LENGTH})"
        )

    (
        virtual_token_reserves,
        virtual_sol_reserves,
        real_token_reserves,
        real_sol_reserves,
        token_total_supply,
    ) = _SCALARS.unpack_from(data, DISCRIMINATOR_LENGTH)
    complete = data[48] != 0

    # Layout is versioned by length: older accounts carry no creator
    creator = None
    if len(data) >= NEW_LAYOUT_MIN_LENGTH:
        creator = Pubkey.from_bytes(data[CREATOR_OFFSET:CREATOR_OFFSET + CREATOR_LENGTH])

    metrics.increment_counter("curve_decoded")
    logger.debug(
        "curve_account_decoded",
        length=len(data),
        virtual_sol_reserves=virtual_sol_reserves,
        virtual_token_reserves=virtual_token_reserves,
        complete=complete,
        has_creator=creator is not None
    )

    return CurveSnapshot(
        virtual_token_reserves=virtual_token_reserves,
        virtual_sol_reserves=virtual_sol_reserves,
        real_token_reserves=real_token_reserves,
        real_sol_reserves=real_sol_reserves,
        token_total_supply=token_total_supply,
        complete=complete,
        creator=creator,
        discriminator=discriminator
    )


def encode_curve_account(snapshot: CurveSnapshot) -> bytes:
    """
    Encode a snapshot back into account bytes

    Snapshots with a creator produce the 150-byte new layout (zero padded
    after the creator); snapshots without one produce the 49-byte old layout.

    Args:
        snapshot: Snapshot to encode

    Returns:
        Raw account bytes accepted by decode_curve_account
    """
    body = snapshot.discriminator + _SCALARS.pack(
        snapshot.virtual_token_reserves,
        snapshot.virtual_sol_reserves,
        snapshot.real_token_reserves,
        snapshot.real_sol_reserves,
        snapshot.token_total_supply,
    ) + (b"\x01" if snapshot.complete else b"\x00")

    if snapshot.creator is None:
        return body

    body += bytes(snapshot.creator)
    return body.ljust(NEW_LAYOUT_MIN_LENGTH, b"\x00")


def account_info_bytes(
    account_info: Optional[Dict[str, Any]],
    curve_address: Optional[str] = None
) -> bytes:
    """
    Raw bytes from the `value` object of a base64 getAccountInfo response

    Args:
        account_info: {"data": ["<base64>", "base64"], ...}
        curve_address: Attached to the error for reporting

    Raises:
        TruncatedDataError: If the account is missing or has no data
    """
    if not account_info:
        raise TruncatedDataError(
            "No account info returned for bonding curve address",
            curve_address=curve_address
        )

    data_field = account_info.get("data") or [""]
    encoded = data_field[0] if isinstance(data_field, list) else data_field
    if not encoded:
        raise TruncatedDataError(
            "No data returned for bonding curve state",
            curve_address=curve_address
        )

    return base64.b64decode(encoded)


def decode_account_info(
    account_info: Optional[Dict[str, Any]],
    curve_address: Optional[str] = None
) -> CurveSnapshot:
    """
    Decode the `value` object of a getAccountInfo response

    Raises:
        TruncatedDataError: If the account is missing or has no data
        DiscriminatorMismatchError: Not a bonding curve account
    """
    return decode_curve_account(account_info_bytes(account_info, curve_address))


def price_from_snapshot(snapshot: CurveSnapshot, token_decimals: int) -> float:
    """
    Spot price in SOL per whole token

    Raises:
        InvalidReserveStateError: If either virtual reserve is <= 0
    """
    snapshot.require_valid_reserves()

    sol = snapshot.virtual_sol_reserves / LAMPORTS_PER_SOL
    tokens = snapshot.virtual_token_reserves / 10 ** token_decimals
    return sol / tokens


def market_cap_from_snapshot(snapshot: CurveSnapshot, token_decimals: int) -> float:
    """Market cap in SOL: spot price times decimal-normalized total supply"""
    price = price_from_snapshot(snapshot, token_decimals)
    return price * (snapshot.token_total_supply / 10 ** token_decimals)
