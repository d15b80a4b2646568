from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

import serial

from .bench import run_benchmark
from .channel import FLOW_CONTROLS, SerialChannel, SerialSettings
from .constants import (
    DEFAULT_BAUD_RATE,
    DEFAULT_BYTE_TIMEOUT_S,
    DEFAULT_HANDSHAKE_ATTEMPTS,
    DEFAULT_HANDSHAKE_TIMEOUT_S,
    DEFAULT_MAX_RETRIES,
)
from .errors import TransferError
from .packet import ChecksumMode
from .progress import ProgressSink, ThroughputReporter
from .retry import RetryPolicy
from .transfer import receive, receive_until_complete, transmit

logger = logging.getLogger(__name__)

EXIT_IO_ERROR = 1
EXIT_SERIAL_ERROR = 2
EXIT_TRANSFER_FAILED = 3


def _policy(args: argparse.Namespace) -> RetryPolicy:
    return RetryPolicy(
        max_retries_per_block=args.retries,
        byte_timeout=args.byte_timeout,
        initial_handshake_timeout=args.timeout,
        max_handshake_attempts=args.handshake_attempts,
    )


def _open_channel(args: argparse.Namespace) -> SerialChannel:
    settings = SerialSettings(
        baud_rate=args.baud,
        char_width=args.width,
        stop_bits=args.stop_bits,
        flow_control=args.flow_control,
    )
    return SerialChannel.open(args.tty_path, settings)


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_send(args: argparse.Namespace) -> int:
    try:
        if args.input:
            with open(args.input, "rb") as f:
                data = f.read()
        else:
            data = sys.stdin.buffer.read()
    except OSError as e:
        print(f"[ERROR] Failed to read input: {e}", file=sys.stderr)
        return EXIT_IO_ERROR

    try:
        channel = _open_channel(args)
    except (serial.SerialException, ValueError) as e:
        print(f"[ERROR] Failed to open serial port: {e}", file=sys.stderr)
        return EXIT_SERIAL_ERROR

    progress = ProgressSink() if args.no_progress else ThroughputReporter()
    with channel:
        if args.raw:
            try:
                channel.write(data)
            except serial.SerialException as e:
                print(f"[ERROR] Failed to write to serial port: {e}", file=sys.stderr)
                return EXIT_SERIAL_ERROR
            sent = len(data)
        else:
            try:
                sent = transmit(data, channel, policy=_policy(args), progress=progress)
            except TransferError as e:
                print(f"[ERROR] Transfer failed ({e.reason.value}): {e}", file=sys.stderr)
                return EXIT_TRANSFER_FAILED

    _emit({"role": "sender", "tty": args.tty_path, "bytes": sent, "raw": args.raw}, args.json)
    return 0


def cmd_recv(args: argparse.Namespace) -> int:
    try:
        channel = _open_channel(args)
    except (serial.SerialException, ValueError) as e:
        print(f"[ERROR] Failed to open serial port: {e}", file=sys.stderr)
        return EXIT_SERIAL_ERROR

    if args.expected_length is None:
        logger.warning("no --expected-length given; trailing 0x1A bytes of the last block will not be written")

    destination = bytearray(args.capacity)
    mode = ChecksumMode.CRC16 if args.crc else ChecksumMode.ADDITIVE
    options = dict(
        policy=_policy(args),
        progress=ProgressSink() if args.no_progress else ThroughputReporter(),
        mode=mode,
        expected_length=args.expected_length,
        confirm_eot=args.confirm_eot,
    )
    with channel:
        try:
            if args.boot_loop:
                received = receive_until_complete(channel, destination, **options)
            else:
                received = receive(channel, destination, **options)
        except TransferError as e:
            print(f"[ERROR] Transfer failed ({e.reason.value}): {e}", file=sys.stderr)
            return EXIT_TRANSFER_FAILED

    try:
        with open(args.out, "wb") as out:
            out.write(destination[:received])
    except OSError as e:
        print(f"[ERROR] Failed to write output: {e}", file=sys.stderr)
        return EXIT_IO_ERROR

    _emit({"role": "receiver", "tty": args.tty_path, "bytes": received, "out": args.out}, args.json)
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    try:
        r = run_benchmark(
            size_bytes=args.size_bytes,
            mode=ChecksumMode.CRC16 if args.crc else ChecksumMode.ADDITIVE,
            loss_rate=args.loss_rate,
            corrupt_rate=args.corrupt_rate,
            delay_ms=args.delay_ms,
            timeout_ms=args.timeout_ms,
            max_retries=args.retries,
            seed=args.seed,
        )
    except TransferError as e:
        print(f"[ERROR] Benchmark transfer failed ({e.reason.value}): {e}", file=sys.stderr)
        return EXIT_TRANSFER_FAILED
    _emit({"role": "bench", **dataclasses.asdict(r)}, args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ttywrite", description="Write to a TTY using the XMODEM protocol.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--retries", type=int, default=DEFAULT_MAX_RETRIES, help="max retries per block")
        x.add_argument("--json", action="store_true")

    def add_serial(x: argparse.ArgumentParser) -> None:
        x.add_argument("tty_path", help="path to TTY device")
        x.add_argument("-b", "--baud", type=int, default=DEFAULT_BAUD_RATE, help="set baud rate")
        x.add_argument("-t", "--timeout", type=float, default=DEFAULT_HANDSHAKE_TIMEOUT_S,
                       help="seconds to wait for the peer to start")
        x.add_argument("--byte-timeout", type=float, default=DEFAULT_BYTE_TIMEOUT_S,
                       help="seconds to wait for each response byte")
        x.add_argument("--handshake-attempts", type=int, default=DEFAULT_HANDSHAKE_ATTEMPTS)
        x.add_argument("-w", "--width", type=int, default=8, choices=[5, 6, 7, 8],
                       help="data character width in bits")
        x.add_argument("-s", "--stop-bits", type=float, default=1, choices=[1, 1.5, 2])
        x.add_argument("-f", "--flow-control", default="none", choices=FLOW_CONTROLS)
        x.add_argument("--no-progress", action="store_true")

    send = sub.add_parser("send", help="send a file (or stdin) to a TTY")
    add_common(send)
    add_serial(send)
    send.add_argument("-i", dest="input", help="input file (defaults to stdin if not set)")
    send.add_argument("-r", "--raw", action="store_true", help="disable XMODEM and write the bytes as-is")
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("recv", help="receive an image from a TTY into a fixed-size buffer")
    add_common(recv)
    add_serial(recv)
    recv.add_argument("--out", required=True)
    recv.add_argument("--capacity", type=int, required=True, help="destination buffer size in bytes")
    recv.add_argument("--expected-length", type=int, default=None)
    recv.add_argument("--crc", action="store_true", help="request CRC-16 instead of the additive checksum")
    recv.add_argument("--confirm-eot", action="store_true", help="NAK the first EOT and ACK the second")
    recv.add_argument("--boot-loop", action="store_true", help="restart the handshake after retryable failures")
    recv.set_defaults(func=cmd_recv)

    bench = sub.add_parser("bench", help="loopback benchmark with simulated line noise")
    add_common(bench)
    bench.add_argument("--size-bytes", type=int, default=256 * 1024)
    bench.add_argument("--crc", action="store_true")
    bench.add_argument("--loss-rate", type=float, default=0.0)
    bench.add_argument("--corrupt-rate", type=float, default=0.0)
    bench.add_argument("--delay-ms", type=int, default=0)
    bench.add_argument("--timeout-ms", type=int, default=250)
    bench.add_argument("--seed", type=int, default=None)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
