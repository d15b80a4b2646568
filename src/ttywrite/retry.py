from __future__ import annotations

import enum
from dataclasses import dataclass

from .constants import (
    DEFAULT_BYTE_TIMEOUT_S,
    DEFAULT_HANDSHAKE_ATTEMPTS,
    DEFAULT_HANDSHAKE_TIMEOUT_S,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PURGE_TIMEOUT_S,
)


class Decision(enum.Enum):
    RETRY = "retry"
    GIVE_UP = "give-up"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Timing and retry limits shared by the sender and the receiver.

    Timeouts and NAKs draw from the same retry budget per block.
    """

    max_retries_per_block: int = DEFAULT_MAX_RETRIES
    byte_timeout: float = DEFAULT_BYTE_TIMEOUT_S
    initial_handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT_S
    max_handshake_attempts: int = DEFAULT_HANDSHAKE_ATTEMPTS
    purge_timeout: float = DEFAULT_PURGE_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.max_retries_per_block < 0:
            raise ValueError("max_retries_per_block must be >= 0")
        if min(self.byte_timeout, self.initial_handshake_timeout, self.purge_timeout) <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_handshake_attempts < 1:
            raise ValueError("max_handshake_attempts must be >= 1")

    def on_timeout(self, attempts: int) -> Decision:
        if attempts >= self.max_retries_per_block:
            return Decision.GIVE_UP
        return Decision.RETRY

    def on_checksum_failure(self, attempts: int) -> Decision:
        return self.on_timeout(attempts)

    def handshake_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_handshake_attempts
