from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    blocks: int = 0
    bytes_transferred: int = 0
    timeouts: int = 0
    retransmits: int = 0
    naks: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_kibps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return self.bytes_transferred / 1024 / self.duration_s


class ProgressSink:
    """Receives per-block notifications. The base class ignores them."""

    def on_block_sent(self, total_bytes: int) -> None:
        pass

    def on_block_received(self, total_bytes: int) -> None:
        pass


class ThroughputReporter(ProgressSink):
    """Logs the running byte count and the rate of the most recent block."""

    def __init__(self, log: logging.Logger | None = None, clock=time.monotonic):
        self._log = log or logger
        self._clock = clock
        self._last_ts: float | None = None
        self._last_total = 0

    def _report(self, verb: str, total_bytes: int) -> None:
        now = self._clock()
        if self._last_ts is not None and now > self._last_ts:
            rate = (total_bytes - self._last_total) / 1024 / (now - self._last_ts)
            self._log.info("progress: %d bytes %s at %.2f KiB/s", total_bytes, verb, rate)
        else:
            self._log.info("progress: %d bytes %s", total_bytes, verb)
        self._last_ts = now
        self._last_total = total_bytes

    def on_block_sent(self, total_bytes: int) -> None:
        self._report("sent", total_bytes)

    def on_block_received(self, total_bytes: int) -> None:
        self._report("received", total_bytes)
