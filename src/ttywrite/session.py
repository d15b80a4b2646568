from __future__ import annotations

import logging
import time

from .channel import Channel
from .constants import CAN
from .errors import AbortReason, TransferError, UnrecognizedByte
from .packet import PacketKind, decode_header
from .progress import Metrics, ProgressSink
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class Session:
    """Plumbing shared by the sender and receiver state machines.

    Every channel access goes through :meth:`_read` and :meth:`_write` so a
    channel ``OSError`` turns into an ``UNDERLYING_IO_ERROR`` abort in one place.
    A session drives a single transfer and is not reusable.
    """

    role = "session"

    def __init__(
        self,
        channel: Channel,
        policy: RetryPolicy | None = None,
        progress: ProgressSink | None = None,
    ):
        self.channel = channel
        self.policy = policy or RetryPolicy()
        self.progress = progress or ProgressSink()
        self.metrics = Metrics()
        self.abort_reason: AbortReason | None = None
        self._ran = False

    @property
    def finished(self) -> bool:
        raise NotImplementedError

    @property
    def transferred(self) -> int:
        raise NotImplementedError

    def _step(self) -> None:
        raise NotImplementedError

    def run(self) -> int:
        """Drive the session to a terminal state and return the byte count."""
        if self._ran:
            raise RuntimeError(f"{self.role} session already ran")
        self._ran = True
        self.metrics.start_ts = time.monotonic()
        try:
            while not self.finished:
                self._step()
        finally:
            self.metrics.end_ts = time.monotonic()
        self.metrics.bytes_transferred = self.transferred
        logger.info(
            "%s done; %d bytes in %.2fs, %d retransmits, %d timeouts",
            self.role,
            self.transferred,
            self.metrics.duration_s,
            self.metrics.retransmits,
            self.metrics.timeouts,
        )
        return self.transferred

    def _read(self, timeout: float) -> int | None:
        try:
            return self.channel.read(timeout)
        except OSError as exc:
            raise self._io_error(exc) from exc

    def _read_until(self, deadline: float) -> int | None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        return self._read(remaining)

    def _classify(self, b: int) -> PacketKind | None:
        try:
            return decode_header(b)
        except UnrecognizedByte:
            return None

    def _write(self, data: bytes) -> None:
        try:
            self.channel.write(data)
        except OSError as exc:
            raise self._io_error(exc) from exc

    def _io_error(self, exc: OSError) -> TransferError:
        self._enter_aborted(AbortReason.UNDERLYING_IO_ERROR)
        logger.warning("%s aborted: channel error: %s", self.role, exc)
        return TransferError(AbortReason.UNDERLYING_IO_ERROR, f"channel error: {exc}", self.transferred)

    def _enter_aborted(self, reason: AbortReason) -> None:
        raise NotImplementedError

    def _abort(self, reason: AbortReason, message: str, notify_peer: bool = False) -> TransferError:
        self._enter_aborted(reason)
        logger.warning("%s aborted (%s): %s", self.role, reason.value, message)
        if notify_peer:
            self._write(bytes([CAN]))
        return TransferError(reason, message, self.transferred)
