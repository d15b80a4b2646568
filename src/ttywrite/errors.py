from __future__ import annotations

import enum


class AbortReason(enum.Enum):
    NO_SENDER = "no-sender"
    NO_RECEIVER = "no-receiver"
    TOO_MANY_RETRIES = "too-many-retries"
    TIMED_OUT = "timed-out"
    CANCELED_BY_PEER = "canceled-by-peer"
    OUT_OF_SEQUENCE = "out-of-sequence"
    DESTINATION_EXHAUSTED = "destination-exhausted"
    UNDERLYING_IO_ERROR = "underlying-io-error"

    @property
    def retryable(self) -> bool:
        """Whether a boot-style caller should start a fresh session after this."""
        return self not in (AbortReason.DESTINATION_EXHAUSTED, AbortReason.UNDERLYING_IO_ERROR)


class TransferError(Exception):
    """A session reached its ``ABORTED`` state."""

    def __init__(self, reason: AbortReason, message: str = "", bytes_transferred: int = 0):
        super().__init__(message or reason.value)
        self.reason = reason
        self.bytes_transferred = bytes_transferred

    @property
    def retryable(self) -> bool:
        return self.reason.retryable


class CodecError(ValueError):
    pass


class UnrecognizedByte(CodecError):
    def __init__(self, value: int):
        super().__init__(f"unrecognized leading byte 0x{value:02X}")
        self.value = value


class ChecksumMismatch(CodecError):
    pass


class MalformedBlockNumber(CodecError):
    pass
