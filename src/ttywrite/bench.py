from __future__ import annotations

import random
import threading
from dataclasses import dataclass

from .channel import Impairment, loopback_pair
from .errors import TransferError
from .packet import ChecksumMode
from .receiver import Receiver
from .retry import RetryPolicy
from .sender import Sender

RECEIVER_JOIN_TIMEOUT_S = 10.0


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    duration_s: float
    throughput_kibps: float
    retransmits: int
    timeouts: int
    naks: int


def run_benchmark(
    *,
    size_bytes: int,
    mode: ChecksumMode = ChecksumMode.CRC16,
    loss_rate: float = 0.0,
    corrupt_rate: float = 0.0,
    delay_ms: int = 0,
    timeout_ms: int = 250,
    max_retries: int = 10,
    seed: int | None = None,
) -> BenchmarkResult:
    """Run one transfer between a sender and receiver thread over an impaired loopback."""
    rng = random.Random(seed)
    payload = bytes(rng.getrandbits(8) for _ in range(size_bytes))
    policy = RetryPolicy(
        max_retries_per_block=max_retries,
        byte_timeout=timeout_ms / 1000.0,
        initial_handshake_timeout=max(1.0, 4 * timeout_ms / 1000.0),
        purge_timeout=timeout_ms / 4000.0,
    )

    def impairment(offset: int) -> Impairment:
        return Impairment(
            loss_rate=loss_rate,
            corrupt_rate=corrupt_rate,
            delay_ms=delay_ms,
            seed=None if seed is None else seed + offset,
        )

    send_end, recv_end = loopback_pair(impairment(1), impairment(2))
    destination = bytearray(size_bytes)
    receiver = Receiver(recv_end, destination, policy=policy, mode=mode, expected_length=size_bytes)
    recv_error: list[TransferError] = []

    def recv_runner():
        try:
            receiver.run()
        except TransferError as exc:
            recv_error.append(exc)

    t = threading.Thread(target=recv_runner, daemon=True)
    t.start()

    sender = Sender(send_end, payload, policy=policy)
    try:
        sent = sender.run()
    finally:
        t.join(timeout=RECEIVER_JOIN_TIMEOUT_S)
    if t.is_alive():
        raise RuntimeError(f"receiver still running {RECEIVER_JOIN_TIMEOUT_S}s after the sender finished")

    if recv_error:
        raise recv_error[0]
    assert bytes(destination) == payload

    metrics = sender.metrics
    return BenchmarkResult(
        bytes_transferred=sent,
        duration_s=metrics.duration_s,
        throughput_kibps=metrics.throughput_kibps,
        retransmits=metrics.retransmits,
        timeouts=metrics.timeouts,
        naks=metrics.naks,
    )
