from __future__ import annotations

import pytest

from ttywrite.errors import AbortReason, TransferError
from ttywrite.retry import Decision, RetryPolicy


def test_defaults():
    p = RetryPolicy()
    assert p.max_retries_per_block == 10
    assert p.initial_handshake_timeout > p.byte_timeout


def test_gives_up_at_ceiling():
    p = RetryPolicy(max_retries_per_block=3)
    assert [p.on_timeout(n) for n in range(5)] == [
        Decision.RETRY,
        Decision.RETRY,
        Decision.RETRY,
        Decision.GIVE_UP,
        Decision.GIVE_UP,
    ]


def test_checksum_failures_share_the_budget():
    p = RetryPolicy(max_retries_per_block=2)
    assert p.on_checksum_failure(1) is Decision.RETRY
    assert p.on_checksum_failure(2) is Decision.GIVE_UP


def test_zero_retries_never_retries():
    assert RetryPolicy(max_retries_per_block=0).on_timeout(0) is Decision.GIVE_UP


def test_handshake_exhausted():
    p = RetryPolicy(max_handshake_attempts=2)
    assert not p.handshake_exhausted(1)
    assert p.handshake_exhausted(2)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries_per_block": -1},
        {"byte_timeout": 0},
        {"initial_handshake_timeout": -1.0},
        {"max_handshake_attempts": 0},
        {"purge_timeout": 0},
    ],
)
def test_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_retryable_reasons():
    assert TransferError(AbortReason.NO_SENDER).retryable
    assert TransferError(AbortReason.OUT_OF_SEQUENCE).retryable
    assert not TransferError(AbortReason.DESTINATION_EXHAUSTED).retryable
    assert not TransferError(AbortReason.UNDERLYING_IO_ERROR).retryable
