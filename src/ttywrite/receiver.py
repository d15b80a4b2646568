from __future__ import annotations

import enum
import logging
import time

from .channel import Channel
from .constants import ACK, BLOCK_SIZE, NAK, PAD_BYTE, SOH
from .errors import AbortReason, ChecksumMismatch, MalformedBlockNumber
from .packet import ChecksumMode, Packet, PacketKind, frame_length, validate_data
from .progress import ProgressSink
from .retry import RetryPolicy
from .session import Session

logger = logging.getLogger(__name__)


class ReceiverState(enum.Enum):
    AWAITING_START = "awaiting-start"
    AWAITING_BLOCK = "awaiting-block"
    AWAITING_EOT_OR_BLOCK = "awaiting-eot-or-block"
    COMPLETED = "completed"
    ABORTED = "aborted"


class Receiver(Session):
    """Fills a fixed-capacity destination buffer from an incoming transfer.

    The receiver speaks first: it repeats its checksum-mode byte until the
    sender starts. After that it only answers. Retransmission timing belongs to
    the sender, so the receiver NAKs a block only when the frame fails
    validation and stays silent when nothing arrives.

    ``expected_length`` is the true size of the image when the caller knows it.
    Without it, trailing filler bytes of the final block are not counted.
    ``confirm_eot`` NAKs the first EOT and ACKs the second, for peers that
    expect the two-step end of transmission.
    """

    role = "receiver"

    def __init__(
        self,
        channel: Channel,
        destination,
        policy: RetryPolicy | None = None,
        progress: ProgressSink | None = None,
        mode: ChecksumMode = ChecksumMode.ADDITIVE,
        expected_length: int | None = None,
        confirm_eot: bool = False,
    ):
        super().__init__(channel, policy, progress)
        view = memoryview(destination)
        if view.readonly:
            raise ValueError("destination buffer is read-only")
        self._dest = view.cast("B")
        self.capacity = len(self._dest)
        if expected_length is not None and not 0 <= expected_length <= self.capacity:
            raise ValueError(f"expected_length {expected_length} does not fit in {self.capacity} bytes")

        self.mode = mode
        self.expected_length = expected_length
        self.confirm_eot = confirm_eot
        self.state = ReceiverState.AWAITING_START
        self.write_cursor = 0
        self.expected_block = 1
        self.last_accepted_block_number: int | None = None
        self.handshake_attempts = 0
        self.idle_periods = 0
        self._last_block_len = 0
        self._eot_pending = False

    @property
    def finished(self) -> bool:
        return self.state in (ReceiverState.COMPLETED, ReceiverState.ABORTED)

    @property
    def transferred(self) -> int:
        if self.expected_length is not None and self.expected_length <= self.write_cursor:
            return self.expected_length
        if self.state is not ReceiverState.COMPLETED or self._last_block_len == 0:
            return self.write_cursor
        tail = self._dest[self.write_cursor - self._last_block_len : self.write_cursor].tobytes()
        return self.write_cursor - (len(tail) - len(tail.rstrip(bytes([PAD_BYTE]))))

    def _enter_aborted(self, reason: AbortReason) -> None:
        self.state = ReceiverState.ABORTED
        self.abort_reason = reason

    def _step(self) -> None:
        if self.state is ReceiverState.AWAITING_START:
            self._await_start()
        else:
            self._await_block()

    def _await_start(self) -> None:
        self._write(bytes([self.mode.negotiation_byte]))
        deadline = time.monotonic() + self.policy.initial_handshake_timeout
        while True:
            b = self._read_until(deadline)
            if b is None:
                self.handshake_attempts += 1
                self.metrics.timeouts += 1
                logger.debug("no sender yet; attempt=%d", self.handshake_attempts)
                if self.policy.handshake_exhausted(self.handshake_attempts):
                    raise self._abort(
                        AbortReason.NO_SENDER,
                        f"sender silent after {self.handshake_attempts} handshake attempts",
                    )
                return
            kind = self._classify(b)
            if kind in (PacketKind.DATA, PacketKind.END_OF_TRANSMISSION):
                logger.info("receiver start; capacity=%d bytes, %s checksum", self.capacity, self.mode.value)
                self.state = self._waiting_state()
                self._dispatch(kind)
                return
            if kind is PacketKind.CANCEL:
                raise self._abort(AbortReason.CANCELED_BY_PEER, "sender canceled before the first block")
            logger.debug("discarding 0x%02X while awaiting sender", b)

    def _await_block(self) -> None:
        deadline = time.monotonic() + self.policy.initial_handshake_timeout
        while True:
            b = self._read_until(deadline)
            if b is None:
                self._idle("no block")
                return
            kind = self._classify(b)
            if kind in (PacketKind.DATA, PacketKind.END_OF_TRANSMISSION):
                self._dispatch(kind)
                return
            if kind is PacketKind.CANCEL:
                raise self._abort(AbortReason.CANCELED_BY_PEER, f"sender canceled after {self.write_cursor} bytes")
            logger.debug("discarding 0x%02X while in %s", b, self.state.value)

    def _dispatch(self, kind: PacketKind) -> None:
        self.idle_periods = 0
        if kind is PacketKind.END_OF_TRANSMISSION:
            self._end_of_transmission()
        else:
            self._eot_pending = False
            self._receive_frame()

    def _idle(self, what: str) -> None:
        self.idle_periods += 1
        self.metrics.timeouts += 1
        logger.debug("%s; idle=%d", what, self.idle_periods)
        if self.policy.handshake_exhausted(self.idle_periods):
            raise self._abort(
                AbortReason.TIMED_OUT,
                f"sender silent after {self.write_cursor} bytes",
            )

    def _receive_frame(self) -> None:
        raw = bytearray([SOH])
        for _ in range(frame_length(self.mode) - 1):
            b = self._read(self.policy.byte_timeout)
            if b is None:
                self._idle(f"partial frame ({len(raw)} bytes) discarded")
                return
            raw.append(b)

        try:
            packet = validate_data(bytes(raw), self.mode)
        except (ChecksumMismatch, MalformedBlockNumber) as exc:
            self.metrics.naks += 1
            logger.debug("rejecting frame: %s", exc)
            self._purge()
            self._write(bytes([NAK]))
            return

        n = packet.block_number
        if n == self.expected_block:
            self._accept(packet)
        elif n == self.last_accepted_block_number:
            self.metrics.retransmits += 1
            logger.debug("duplicate block %d; re-acknowledging", n)
            self._write(bytes([ACK]))
        else:
            raise self._abort(
                AbortReason.OUT_OF_SEQUENCE,
                f"expected block {self.expected_block}, got {n}",
                notify_peer=True,
            )

    def _purge(self) -> None:
        """Drain the line until it has been quiet for ``purge_timeout``."""
        deadline = time.monotonic() + self.policy.initial_handshake_timeout
        while time.monotonic() < deadline:
            if self._read(self.policy.purge_timeout) is None:
                return

    def _accept(self, packet: Packet) -> None:
        fit = min(BLOCK_SIZE, self.capacity - self.write_cursor)
        # a partly fitting final block may carry filler past the end; a block with no room never fits
        if fit == 0 or packet.payload[fit:].strip(bytes([PAD_BYTE])):
            raise self._abort(
                AbortReason.DESTINATION_EXHAUSTED,
                f"block {packet.block_number} does not fit at offset {self.write_cursor} "
                f"of a {self.capacity}-byte destination",
                notify_peer=True,
            )

        self._dest[self.write_cursor : self.write_cursor + fit] = packet.payload[:fit]
        self.write_cursor += fit
        self._last_block_len = fit
        self.last_accepted_block_number = packet.block_number
        self.expected_block = (packet.block_number + 1) & 0xFF
        self.metrics.blocks += 1
        self._write(bytes([ACK]))
        self.progress.on_block_received(self.write_cursor)
        self.state = self._waiting_state()

    def _waiting_state(self) -> ReceiverState:
        if self.write_cursor >= self.capacity:
            return ReceiverState.AWAITING_EOT_OR_BLOCK
        return ReceiverState.AWAITING_BLOCK

    def _end_of_transmission(self) -> None:
        if self.confirm_eot and not self._eot_pending:
            self._eot_pending = True
            logger.debug("first EOT; asking for confirmation")
            self._write(bytes([NAK]))
            return
        self._write(bytes([ACK]))
        self.state = ReceiverState.COMPLETED
