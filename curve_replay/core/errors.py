"""
Error taxonomy for curve decoding and replay

Decode and seed errors are raised to the caller and abort one curve only.
Replay-time problems are recorded as skipped events instead of raised.
"""

from typing import Optional


class CurveReplayError(Exception):
    """Base class for all curve decode/replay errors"""

    def __init__(
        self,
        message: str,
        curve_address: Optional[str] = None,
        signature: Optional[str] = None
    ):
        super().__init__(message)
        self.curve_address = curve_address
        self.signature = signature

    def to_dict(self) -> dict:
        """Structured form for logs and batch results"""
        return {
            "error": type(self).__name__,
            "message": str(self),
            "curve": self.curve_address,
            "signature": self.signature,
        }


class DecodeError(CurveReplayError, ValueError):
    """Raw account bytes could not be decoded into a snapshot"""


class TruncatedDataError(DecodeError):
    """Buffer too short for the fixed account layout"""


class DiscriminatorMismatchError(DecodeError):
    """Leading 8 bytes do not identify a bonding curve account"""


class InvalidReserveStateError(CurveReplayError, ValueError):
    """Virtual reserves are zero or negative where a price is required"""


class OutOfOrderEventError(CurveReplayError):
    """Event ordering key is lower than the last applied event's"""
