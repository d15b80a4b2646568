from __future__ import annotations

import itertools
import logging

from .channel import Channel
from .errors import TransferError
from .packet import ChecksumMode
from .progress import ProgressSink
from .receiver import Receiver
from .retry import RetryPolicy
from .sender import Sender

logger = logging.getLogger(__name__)


def transmit(
    source: bytes,
    channel: Channel,
    *,
    policy: RetryPolicy | None = None,
    progress: ProgressSink | None = None,
) -> int:
    """Send ``source`` over ``channel`` and return the number of bytes delivered.

    Raises :class:`~ttywrite.errors.TransferError` when the transfer aborts.
    """
    return Sender(channel, source, policy=policy, progress=progress).run()


def receive(
    channel: Channel,
    destination,
    *,
    policy: RetryPolicy | None = None,
    progress: ProgressSink | None = None,
    mode: ChecksumMode = ChecksumMode.ADDITIVE,
    expected_length: int | None = None,
    confirm_eot: bool = False,
) -> int:
    """Receive one transfer into ``destination`` and return the byte count."""
    receiver = Receiver(
        channel,
        destination,
        policy=policy,
        progress=progress,
        mode=mode,
        expected_length=expected_length,
        confirm_eot=confirm_eot,
    )
    return receiver.run()


def receive_until_complete(
    channel: Channel,
    destination,
    *,
    policy: RetryPolicy | None = None,
    progress: ProgressSink | None = None,
    mode: ChecksumMode = ChecksumMode.ADDITIVE,
    expected_length: int | None = None,
    confirm_eot: bool = False,
    max_sessions: int | None = None,
) -> int:
    """Boot-loader style receive loop.

    Each retryable abort (silence, cancel, bad sequencing) starts a fresh
    session from the handshake. Destination exhaustion and channel errors
    propagate immediately. With ``max_sessions`` set, the last error is
    re-raised once that many sessions have failed.
    """
    sessions = itertools.count(1) if max_sessions is None else range(1, max_sessions + 1)
    last_error: TransferError | None = None
    for session_no in sessions:
        try:
            return receive(
                channel,
                destination,
                policy=policy,
                progress=progress,
                mode=mode,
                expected_length=expected_length,
                confirm_eot=confirm_eot,
            )
        except TransferError as exc:
            if not exc.retryable:
                raise
            logger.info("session %d failed (%s); restarting handshake", session_no, exc.reason.value)
            last_error = exc
    if last_error is None:
        raise ValueError("max_sessions must be >= 1")
    raise last_error
