from __future__ import annotations

import json
import logging

import serial

from ttywrite.channel import SerialChannel
from ttywrite.cli import EXIT_IO_ERROR, EXIT_SERIAL_ERROR, EXIT_TRANSFER_FAILED, build_parser, main


def test_send_defaults():
    args = build_parser().parse_args(["send", "/dev/ttyUSB0"])
    assert args.baud == 115200
    assert args.timeout == 10.0
    assert args.width == 8
    assert args.stop_bits == 1
    assert args.flow_control == "none"
    assert args.input is None
    assert not args.raw


def test_recv_requires_capacity_and_out():
    args = build_parser().parse_args(["recv", "/dev/ttyUSB0", "--out", "kernel.img", "--capacity", "4096", "--crc"])
    assert args.capacity == 4096
    assert args.crc
    assert not args.boot_loop


def test_send_missing_input(tmp_path):
    assert main(["send", "loop://", "-i", str(tmp_path / "missing.bin")]) == EXIT_IO_ERROR


def test_send_bad_port(tmp_path):
    src = tmp_path / "kernel.img"
    src.write_bytes(b"\x00" * 10)
    assert main(["send", str(tmp_path / "no-such-tty"), "-i", str(src)]) == EXIT_SERIAL_ERROR


def test_raw_send_over_loop(tmp_path, capsys):
    src = tmp_path / "kernel.img"
    src.write_bytes(b"raw bytes")
    assert main(["send", "loop://", "-i", str(src), "-r", "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["bytes"] == 9
    assert out["raw"] is True


def test_bench_json(capsys):
    assert main(["bench", "--size-bytes", "640", "--seed", "7", "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["role"] == "bench"
    assert out["bytes_transferred"] == 640


def test_raw_send_write_timeout(tmp_path, monkeypatch, capsys):
    def timed_out(self, data):
        raise serial.SerialTimeoutException("Write timeout")

    monkeypatch.setattr(SerialChannel, "write", timed_out)
    src = tmp_path / "kernel.img"
    src.write_bytes(b"raw bytes")
    assert main(["send", "loop://", "-i", str(src), "-r"]) == EXIT_SERIAL_ERROR
    assert "[ERROR] Failed to write to serial port" in capsys.readouterr().err


RECV_NO_SENDER = ["recv", "loop://", "--capacity", "128", "-t", "0.05", "--handshake-attempts", "1", "--no-progress"]


def test_recv_warns_without_expected_length(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="ttywrite.cli"):
        rc = main(RECV_NO_SENDER + ["--out", str(tmp_path / "kernel.img")])
    assert rc == EXIT_TRANSFER_FAILED
    assert any("--expected-length" in m for m in caplog.messages)


def test_recv_with_expected_length_does_not_warn(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="ttywrite.cli"):
        rc = main(RECV_NO_SENDER + ["--out", str(tmp_path / "kernel.img"), "--expected-length", "10"])
    assert rc == EXIT_TRANSFER_FAILED
    assert not any("--expected-length" in m for m in caplog.messages)
