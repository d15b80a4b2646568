from __future__ import annotations

import logging

import pytest

from ttywrite.channel import Impairment, QueueChannel, SerialChannel, SerialSettings, loopback_pair
from ttywrite.progress import Metrics, ThroughputReporter


def test_loopback_pair_is_crossed():
    a, b = loopback_pair()
    a.write(b"\x01\x02")
    assert b.read(0.1) == 1
    assert b.read(0.1) == 2
    assert b.read(0.01) is None
    assert a.read(0.01) is None


def test_full_loss_drops_everything():
    a, b = loopback_pair(a_to_b=Impairment(loss_rate=1.0))
    a.write(b"abc")
    assert b.read(0.01) is None


def test_corruption_flips_one_bit():
    a, b = loopback_pair(a_to_b=Impairment(corrupt_rate=1.0, seed=3))
    a.write(b"\x00")
    value = b.read(0.1)
    assert value != 0
    assert bin(value).count("1") == 1


def test_closed_channel_raises_oserror():
    a, _ = loopback_pair()
    a.close()
    with pytest.raises(OSError):
        a.write(b"x")


def test_tamper_sees_every_write():
    a, b = loopback_pair()
    a.tamper = lambda data: data.upper()
    a.write(b"a")
    assert b.read(0.1) == ord("A")
    assert isinstance(a, QueueChannel)


def test_serial_channel_over_pyserial_loop():
    with SerialChannel.open("loop://", SerialSettings(baud_rate=9600)) as ch:
        ch.write(b"\x06")
        assert ch.read(0.5) == 0x06
        assert ch.read(0.05) is None


@pytest.mark.parametrize(
    "kwargs",
    [{"char_width": 9}, {"stop_bits": 3}, {"flow_control": "carrier-pigeon"}],
)
def test_serial_settings_validation(kwargs):
    with pytest.raises(ValueError):
        SerialSettings(**kwargs)


def test_metrics_throughput():
    m = Metrics(bytes_transferred=2048, start_ts=10.0, end_ts=12.0)
    assert m.duration_s == 2.0
    assert m.throughput_kibps == 1.0
    assert Metrics().throughput_kibps == 0.0


def test_throughput_reporter_logs_rate(caplog):
    ticks = iter([0.0, 0.5])
    reporter = ThroughputReporter(clock=lambda: next(ticks))
    with caplog.at_level(logging.INFO, logger="ttywrite.progress"):
        reporter.on_block_sent(128)
        reporter.on_block_sent(640)
    assert "128 bytes sent" in caplog.messages[0]
    assert "640 bytes sent at 1.00 KiB/s" in caplog.messages[1]
