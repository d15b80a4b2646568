from __future__ import annotations

import enum
import logging
import time

from .channel import Channel
from .constants import BLOCK_SIZE
from .errors import AbortReason
from .packet import ChecksumMode, Packet, PacketKind, encode
from .progress import ProgressSink
from .retry import Decision, RetryPolicy
from .session import Session

logger = logging.getLogger(__name__)


class SenderState(enum.Enum):
    AWAITING_START = "awaiting-start"
    SENDING_BLOCK = "sending-block"
    AWAITING_ACK = "awaiting-ack"
    SENDING_EOT = "sending-eot"
    AWAITING_EOT_ACK = "awaiting-eot-ack"
    COMPLETED = "completed"
    ABORTED = "aborted"


class Sender(Session):
    """Stop-and-wait sender: one block in flight, retransmitted on NAK or silence."""

    role = "sender"

    def __init__(
        self,
        channel: Channel,
        source: bytes,
        policy: RetryPolicy | None = None,
        progress: ProgressSink | None = None,
    ):
        super().__init__(channel, policy, progress)
        self.source = bytes(source)
        self.state = SenderState.AWAITING_START
        self.mode: ChecksumMode | None = None
        self.cursor = 0
        self.block_number = 1
        self.attempts = 0
        self.handshake_attempts = 0
        self._frame = b""

    @property
    def finished(self) -> bool:
        return self.state in (SenderState.COMPLETED, SenderState.ABORTED)

    @property
    def transferred(self) -> int:
        return self.cursor

    def _enter_aborted(self, reason: AbortReason) -> None:
        self.state = SenderState.ABORTED
        self.abort_reason = reason

    def _step(self) -> None:
        if self.state is SenderState.AWAITING_START:
            self._await_start()
        elif self.state is SenderState.SENDING_BLOCK:
            self._send_block()
        elif self.state is SenderState.AWAITING_ACK:
            self._await_ack()
        elif self.state is SenderState.SENDING_EOT:
            self._frame = encode(Packet.control(PacketKind.END_OF_TRANSMISSION))
            self._write(self._frame)
            self.state = SenderState.AWAITING_EOT_ACK
        elif self.state is SenderState.AWAITING_EOT_ACK:
            self._await_ack()

    def _next_state(self) -> SenderState:
        if self.cursor < len(self.source):
            return SenderState.SENDING_BLOCK
        return SenderState.SENDING_EOT

    def _await_start(self) -> None:
        deadline = time.monotonic() + self.policy.initial_handshake_timeout
        while True:
            b = self._read_until(deadline)
            if b is None:
                self.handshake_attempts += 1
                self.metrics.timeouts += 1
                logger.debug("no handshake byte yet; attempt=%d", self.handshake_attempts)
                if self.policy.handshake_exhausted(self.handshake_attempts):
                    raise self._abort(
                        AbortReason.NO_RECEIVER,
                        f"receiver silent after {self.handshake_attempts} handshake attempts",
                    )
                return
            kind = self._classify(b)
            if kind is PacketKind.NEGATIVE_ACKNOWLEDGE:
                self.mode = ChecksumMode.ADDITIVE
            elif kind is PacketKind.NEGOTIATE_CRC_MODE:
                self.mode = ChecksumMode.CRC16
            elif kind is PacketKind.CANCEL:
                raise self._abort(AbortReason.CANCELED_BY_PEER, "receiver canceled before the first block")
            else:
                logger.debug("discarding 0x%02X while awaiting handshake", b)
                continue
            logger.info("sender start; %d bytes, %s checksum", len(self.source), self.mode.value)
            self.state = self._next_state()
            return

    def _send_block(self) -> None:
        chunk = self.source[self.cursor : self.cursor + BLOCK_SIZE]
        self._frame = encode(Packet.data(self.block_number, chunk), self.mode)
        self._write(self._frame)
        self.metrics.blocks += 1
        self.state = SenderState.AWAITING_ACK

    def _await_ack(self) -> None:
        deadline = time.monotonic() + self.policy.byte_timeout
        while True:
            b = self._read_until(deadline)
            if b is None:
                self.metrics.timeouts += 1
                self._retry(self.policy.on_timeout(self.attempts), "timeout")
                return
            kind = self._classify(b)
            if kind is PacketKind.ACKNOWLEDGE:
                self._acknowledged()
                return
            if kind is PacketKind.NEGATIVE_ACKNOWLEDGE:
                self.metrics.naks += 1
                self._retry(self.policy.on_checksum_failure(self.attempts), "NAK")
                return
            if kind is PacketKind.CANCEL:
                raise self._abort(AbortReason.CANCELED_BY_PEER, f"receiver canceled during {self.state.value}")
            logger.debug("discarding 0x%02X while in %s", b, self.state.value)

    def _acknowledged(self) -> None:
        self.attempts = 0
        if self.state is SenderState.AWAITING_EOT_ACK:
            self.state = SenderState.COMPLETED
            return
        self.cursor = min(self.cursor + BLOCK_SIZE, len(self.source))
        logger.debug("block %d acknowledged; cursor=%d", self.block_number, self.cursor)
        self.progress.on_block_sent(self.cursor)
        self.block_number = (self.block_number + 1) & 0xFF
        self.state = self._next_state()

    def _retry(self, decision: Decision, cause: str) -> None:
        what = "EOT" if self.state is SenderState.AWAITING_EOT_ACK else f"block {self.block_number}"
        if decision is Decision.GIVE_UP:
            raise self._abort(
                AbortReason.TOO_MANY_RETRIES,
                f"{what} not acknowledged after {self.attempts} retries",
                notify_peer=True,
            )
        self.attempts += 1
        self.metrics.retransmits += 1
        logger.debug("%s on %s; retry=%d", cause, what, self.attempts)
        self._write(self._frame)

