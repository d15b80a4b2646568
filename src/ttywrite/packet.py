"""Framing for one protocol packet.

Data frame layout::

    +-----+-------+-----------+---------------------+-----------------------+
    | SOH | block | 255-block |  128 payload bytes  | checksum (1 or 2 B)   |
    +-----+-------+-----------+---------------------+-----------------------+

- additive mode: one byte, sum of payload bytes mod 256 (132 bytes total)
- CRC mode: CRC-16/XMODEM of the payload, big-endian (133 bytes total)

Every other packet is a single control byte. Nothing here does I/O or keeps
session state; block sequencing lives in the sender and receiver.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .constants import ACK, BLOCK_SIZE, CAN, CRC_REQUEST, EOT, NAK, PAD_BYTE, SOH
from .errors import ChecksumMismatch, MalformedBlockNumber, UnrecognizedByte


class PacketKind(enum.Enum):
    DATA = "data"
    END_OF_TRANSMISSION = "eot"
    ACKNOWLEDGE = "ack"
    NEGATIVE_ACKNOWLEDGE = "nak"
    CANCEL = "can"
    NEGOTIATE_CHECKSUM_MODE = "negotiate-checksum"
    NEGOTIATE_CRC_MODE = "negotiate-crc"


class ChecksumMode(enum.Enum):
    ADDITIVE = "additive"
    CRC16 = "crc16"

    @property
    def negotiation_byte(self) -> int:
        return CRC_REQUEST if self is ChecksumMode.CRC16 else NAK

    @property
    def checksum_len(self) -> int:
        return 2 if self is ChecksumMode.CRC16 else 1


_CONTROL_BYTES = {
    PacketKind.END_OF_TRANSMISSION: EOT,
    PacketKind.ACKNOWLEDGE: ACK,
    PacketKind.NEGATIVE_ACKNOWLEDGE: NAK,
    PacketKind.CANCEL: CAN,
    PacketKind.NEGOTIATE_CHECKSUM_MODE: NAK,
    PacketKind.NEGOTIATE_CRC_MODE: CRC_REQUEST,
}

# NAK is shared with NEGOTIATE_CHECKSUM_MODE; on the wire it always reads as NAK.
_LEADING_BYTES = {
    SOH: PacketKind.DATA,
    EOT: PacketKind.END_OF_TRANSMISSION,
    ACK: PacketKind.ACKNOWLEDGE,
    NAK: PacketKind.NEGATIVE_ACKNOWLEDGE,
    CAN: PacketKind.CANCEL,
    CRC_REQUEST: PacketKind.NEGOTIATE_CRC_MODE,
}


def additive_checksum(payload: bytes) -> int:
    return sum(payload) & 0xFF


def crc16_xmodem(data: bytes, poly: int = 0x1021, init_crc: int = 0x0000) -> int:
    """CRC-16/CCITT as used by XMODEM-CRC (polynomial 0x1021, initial value 0)."""
    crc = init_crc
    for b in data:
        crc ^= b << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) & 0xFFFF) ^ poly
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def checksum_bytes(payload: bytes, mode: ChecksumMode) -> bytes:
    if mode is ChecksumMode.CRC16:
        return crc16_xmodem(payload).to_bytes(2, "big")
    return bytes([additive_checksum(payload)])


def pad_block(chunk: bytes) -> bytes:
    if len(chunk) > BLOCK_SIZE:
        raise ValueError(f"chunk larger than {BLOCK_SIZE} bytes: {len(chunk)}")
    return chunk + bytes([PAD_BYTE]) * (BLOCK_SIZE - len(chunk))


def frame_length(mode: ChecksumMode) -> int:
    return 3 + BLOCK_SIZE + mode.checksum_len


@dataclass(frozen=True, slots=True)
class Packet:
    kind: PacketKind
    block_number: int = 0
    payload: bytes = b""

    def __post_init__(self) -> None:
        if self.kind is PacketKind.DATA:
            if len(self.payload) != BLOCK_SIZE:
                raise ValueError(f"data payload must be {BLOCK_SIZE} bytes, got {len(self.payload)}")
            if not 0 <= self.block_number <= 0xFF:
                raise ValueError(f"block number out of range: {self.block_number}")

    @property
    def is_control(self) -> bool:
        return self.kind is not PacketKind.DATA

    @staticmethod
    def data(block_number: int, chunk: bytes) -> "Packet":
        return Packet(kind=PacketKind.DATA, block_number=block_number & 0xFF, payload=pad_block(chunk))

    @staticmethod
    def control(kind: PacketKind) -> "Packet":
        if kind is PacketKind.DATA:
            raise ValueError("DATA is not a control packet")
        return Packet(kind=kind)


def encode(packet: Packet, mode: ChecksumMode = ChecksumMode.ADDITIVE) -> bytes:
    if packet.is_control:
        return bytes([_CONTROL_BYTES[packet.kind]])
    n = packet.block_number
    return bytes([SOH, n, 0xFF - n]) + packet.payload + checksum_bytes(packet.payload, mode)


def decode_header(first_byte: int) -> PacketKind:
    """Classify a leading byte.

    ``PacketKind.DATA`` means the rest of a data frame follows. Anything that is
    not a protocol byte raises :class:`UnrecognizedByte`; callers drop it as line
    noise.
    """
    try:
        return _LEADING_BYTES[first_byte]
    except KeyError:
        raise UnrecognizedByte(first_byte) from None


def validate_data(raw_block: bytes, mode: ChecksumMode = ChecksumMode.ADDITIVE) -> Packet:
    """Check a complete data frame (starting with SOH) and return its packet."""
    expected_len = frame_length(mode)
    if len(raw_block) != expected_len:
        raise ValueError(f"data frame must be {expected_len} bytes, got {len(raw_block)}")
    if raw_block[0] != SOH:
        raise ValueError("data frame does not start with SOH")

    block_number, complement = raw_block[1], raw_block[2]
    if block_number + complement != 0xFF:
        raise MalformedBlockNumber(f"block number 0x{block_number:02X} with complement 0x{complement:02X}")

    payload = raw_block[3 : 3 + BLOCK_SIZE]
    received = raw_block[3 + BLOCK_SIZE :]
    if checksum_bytes(payload, mode) != received:
        raise ChecksumMismatch(f"checksum mismatch in block {block_number}")

    return Packet(kind=PacketKind.DATA, block_number=block_number, payload=bytes(payload))
