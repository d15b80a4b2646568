from __future__ import annotations

SOH = 0x01  # start of 128-byte data block
EOT = 0x04
ACK = 0x06
NAK = 0x15  # also requests additive checksum mode
CAN = 0x18
CRC_REQUEST = 0x43  # 'C'

BLOCK_SIZE = 128
PAD_BYTE = 0x1A

DEFAULT_MAX_RETRIES = 10
DEFAULT_BYTE_TIMEOUT_S = 1.0
DEFAULT_HANDSHAKE_TIMEOUT_S = 10.0
DEFAULT_HANDSHAKE_ATTEMPTS = 6
DEFAULT_PURGE_TIMEOUT_S = 0.1  # line must stay quiet this long before a NAK

DEFAULT_BAUD_RATE = 115200
