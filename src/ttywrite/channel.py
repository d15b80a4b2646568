"""Byte channels a transfer session can run over.

A channel is anything with ``read(timeout) -> int | None`` and
``write(data) -> None``. ``read`` returns one byte, or ``None`` when nothing
arrived within ``timeout`` seconds. Failures surface as ``OSError``.
"""

from __future__ import annotations

import logging
import queue
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

import serial

from .constants import DEFAULT_BAUD_RATE

logger = logging.getLogger(__name__)


class Channel(Protocol):
    def read(self, timeout: float) -> int | None: ...

    def write(self, data: bytes) -> None: ...


FLOW_CONTROLS = ("none", "hardware", "software")

_BYTESIZES = {5: serial.FIVEBITS, 6: serial.SIXBITS, 7: serial.SEVENBITS, 8: serial.EIGHTBITS}
_STOPBITS = {1: serial.STOPBITS_ONE, 1.5: serial.STOPBITS_ONE_POINT_FIVE, 2: serial.STOPBITS_TWO}


@dataclass(frozen=True, slots=True)
class SerialSettings:
    baud_rate: int = DEFAULT_BAUD_RATE
    char_width: int = 8
    stop_bits: float = 1
    flow_control: str = "none"
    write_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.char_width not in _BYTESIZES:
            raise ValueError(f"unsupported character width: {self.char_width}")
        if self.stop_bits not in _STOPBITS:
            raise ValueError(f"unsupported stop bits: {self.stop_bits}")
        if self.flow_control not in FLOW_CONTROLS:
            raise ValueError(f"unsupported flow control: {self.flow_control}")


class SerialChannel:
    """A channel over a pyserial port."""

    def __init__(self, ser: serial.SerialBase):
        self.ser = ser

    @classmethod
    def open(cls, port: str, settings: SerialSettings | None = None) -> "SerialChannel":
        settings = settings or SerialSettings()
        ser = serial.serial_for_url(
            port,
            do_not_open=True,
            baudrate=settings.baud_rate,
            bytesize=_BYTESIZES[settings.char_width],
            parity=serial.PARITY_NONE,
            stopbits=_STOPBITS[settings.stop_bits],
            timeout=0.1,
            write_timeout=settings.write_timeout,
            rtscts=settings.flow_control == "hardware",
            xonxoff=settings.flow_control == "software",
            dsrdtr=False,
        )
        ser.open()
        logger.info("opened %s @ %d baud (%s flow control)", port, settings.baud_rate, settings.flow_control)
        return cls(ser)

    def read(self, timeout: float) -> int | None:
        self.ser.timeout = timeout
        data = self.ser.read(1)
        if not data:
            return None
        return data[0]

    def write(self, data: bytes) -> None:
        self.ser.write(data)
        self.ser.flush()

    def close(self) -> None:
        self.ser.close()

    def __enter__(self) -> "SerialChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass(slots=True)
class Impairment:
    """Per-byte loss and corruption applied to outbound traffic."""

    loss_rate: float = 0.0
    corrupt_rate: float = 0.0
    delay_ms: int = 0
    seed: int | None = None
    rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.rng = random.Random(self.seed)

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and self.rng.random() < self.loss_rate

    def maybe_corrupt(self, value: int) -> int:
        if self.corrupt_rate > 0 and self.rng.random() < self.corrupt_rate:
            return value ^ (1 << self.rng.randrange(8))
        return value

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class QueueChannel:
    """One end of an in-memory link; safe to use from two threads.

    ``tamper`` sees every outbound write before impairment and returns the bytes
    that actually go on the wire.
    """

    def __init__(
        self,
        inbox: queue.Queue,
        outbox: queue.Queue,
        impairment: Impairment | None = None,
        tamper: Callable[[bytes], bytes] | None = None,
        name: str = "",
    ):
        self.inbox = inbox
        self.outbox = outbox
        self.impairment = impairment or Impairment()
        self.tamper = tamper
        self.name = name
        self.closed = False

    def read(self, timeout: float) -> int | None:
        try:
            return self.inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionError(f"channel {self.name or id(self)} is closed")
        if self.tamper is not None:
            data = self.tamper(data)
        self.impairment.sleep_if_needed()
        for value in data:
            if self.impairment.should_drop():
                logger.debug("[%s] dropped outbound byte 0x%02X", self.name, value)
                continue
            self.outbox.put(self.impairment.maybe_corrupt(value))

    def close(self) -> None:
        self.closed = True


def loopback_pair(
    a_to_b: Impairment | None = None,
    b_to_a: Impairment | None = None,
) -> tuple[QueueChannel, QueueChannel]:
    """Two connected channel ends; impairments apply to what each end writes."""
    ab: queue.Queue = queue.Queue()
    ba: queue.Queue = queue.Queue()
    a = QueueChannel(inbox=ba, outbox=ab, impairment=a_to_b, name="a")
    b = QueueChannel(inbox=ab, outbox=ba, impairment=b_to_a, name="b")
    return a, b
