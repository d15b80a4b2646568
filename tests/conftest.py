from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

import pytest

from ttywrite.channel import QueueChannel, loopback_pair
from ttywrite.errors import TransferError
from ttywrite.packet import ChecksumMode
from ttywrite.progress import ProgressSink
from ttywrite.receiver import Receiver
from ttywrite.retry import RetryPolicy
from ttywrite.sender import Sender


class ScriptedChannel:
    """Replays a fixed list of incoming bytes; ``None`` entries read as timeouts."""

    def __init__(self, *incoming):
        self.incoming: deque[int | None] = deque()
        for item in incoming:
            if isinstance(item, (bytes, bytearray)):
                self.incoming.extend(item)
            else:
                self.incoming.append(item)
        self.writes: list[bytes] = []

    def read(self, timeout: float) -> int | None:
        if not self.incoming:
            return None
        return self.incoming.popleft()

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)


class BrokenChannel:
    def read(self, timeout: float) -> int | None:
        raise OSError("device unplugged")

    def write(self, data: bytes) -> None:
        raise OSError("device unplugged")


class RecordingProgress(ProgressSink):
    def __init__(self):
        self.sent: list[int] = []
        self.received: list[int] = []

    def on_block_sent(self, total_bytes: int) -> None:
        self.sent.append(total_bytes)

    def on_block_received(self, total_bytes: int) -> None:
        self.received.append(total_bytes)


@dataclass
class PairResult:
    sender: Sender
    receiver: Receiver
    destination: bytearray
    sent: int | None = None
    received: int | None = None
    sender_error: TransferError | None = None
    receiver_error: TransferError | None = None
    progress: RecordingProgress = field(default_factory=RecordingProgress)


FAST_POLICY = RetryPolicy(
    max_retries_per_block=5,
    byte_timeout=0.2,
    initial_handshake_timeout=0.5,
    max_handshake_attempts=4,
    purge_timeout=0.02,
)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return FAST_POLICY


@pytest.fixture
def run_pair():
    """Run a sender and a receiver in two threads over a loopback link."""

    def run(
        source: bytes,
        capacity: int,
        *,
        policy: RetryPolicy = FAST_POLICY,
        mode: ChecksumMode = ChecksumMode.ADDITIVE,
        expected_length: int | None = None,
        confirm_eot: bool = False,
        channels: tuple[QueueChannel, QueueChannel] | None = None,
    ) -> PairResult:
        send_end, recv_end = channels or loopback_pair()
        destination = bytearray(capacity)
        progress = RecordingProgress()
        result = PairResult(
            sender=Sender(send_end, source, policy=policy, progress=progress),
            receiver=Receiver(
                recv_end,
                destination,
                policy=policy,
                progress=progress,
                mode=mode,
                expected_length=expected_length,
                confirm_eot=confirm_eot,
            ),
            destination=destination,
            progress=progress,
        )

        def recv_runner():
            try:
                result.received = result.receiver.run()
            except TransferError as exc:
                result.receiver_error = exc

        t = threading.Thread(target=recv_runner, daemon=True)
        t.start()
        try:
            result.sent = result.sender.run()
        except TransferError as exc:
            result.sender_error = exc
        t.join(timeout=30.0)
        assert not t.is_alive()
        return result

    return run
