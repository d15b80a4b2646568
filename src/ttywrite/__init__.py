"""XMODEM-style file transfer over a serial line.

The package keeps framing and sequencing apart:
- ``packet`` maps packets to and from wire bytes and knows nothing about sessions
- ``sender`` and ``receiver`` are explicit state machines over a byte channel
- ``retry`` holds the one retry/timeout policy both roles share

Callers normally only need :func:`transmit` and :func:`receive`.
"""

from .errors import AbortReason, TransferError
from .packet import ChecksumMode
from .retry import RetryPolicy
from .transfer import receive, receive_until_complete, transmit

__all__ = [
    "AbortReason",
    "ChecksumMode",
    "RetryPolicy",
    "TransferError",
    "receive",
    "receive_until_complete",
    "transmit",
]
