"""Serial device access with COBS framing and the framing checksum."""

from __future__ import annotations

import logging
import zlib
from collections.abc import Callable, Iterable
from typing import Optional

import serial

log = logging.getLogger(__name__)

_MAX_PACKET = 2048
_SUPPORTED_BAUD_RATES = frozenset({9600, 19200, 38400, 57600, 115200, 230400})


def crc32(data: bytes) -> int:
    """Reflected CRC-32 (polynomial 0xEDB88320) starting at 0xFFFFFFFF, without final inversion."""
    return zlib.crc32(bytes(data)) ^ 0xFFFFFFFF


class CobsDecoder:
    """Incremental COBS decoder; complete packets are handed to ``on_packet``."""

    def __init__(self, on_packet: Optional[Callable[[bytes], None]] = None) -> None:
        self._on_packet = on_packet
        self._buffer = bytearray()
        self._code = 0xFF
        self._block = 0

    def reset(self) -> None:
        """Drop any partly decoded packet."""
        self._code = 0xFF
        self._block = 0
        self._buffer.clear()

    def decode(self, data: Iterable[int]) -> None:
        """Feed a run of bytes to the decoder."""
        for byte in data:
            self.decode_byte(byte)

    def decode_byte(self, byte: int) -> None:
        """Feed a single byte to the decoder."""
        if len(self._buffer) == _MAX_PACKET - 1 and byte != 0x00:
            log.warning("cobsDecode: Buffer overflow")
            self.reset()

        if self._block:
            if byte == 0x00:
                log.warning("cobsDecode: Garbage detected")
                self.reset()
                return
            self._buffer.append(byte)
        else:
            if self._code != 0xFF:
                self._buffer.append(0)
            self._block = self._code = byte
            if self._code == 0x00:
                if not self._buffer:
                    log.debug("cobsDecode: Received nothing")
                else:
                    packet = bytes(self._buffer[:-1])
                    if self._on_packet is not None:
                        self._on_packet(packet)
                self.reset()
                return
        self._block -= 1


class Serial:
    """A serial device configured as 8N1, raw, without flow control."""

    def __init__(self) -> None:
        self._port: Optional[serial.Serial] = None
        self.baud = 0
        self.decoder = CobsDecoder(self._handle_packet)

    def _handle_packet(self, packet: bytes) -> None:
        log.debug("received packet of %d bytes", len(packet))

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open_device(self, device: str, baud: int) -> bool:
        """Open ``device`` at ``baud``; return whether it succeeded."""
        self.decoder.reset()
        if baud not in _SUPPORTED_BAUD_RATES:
            self.baud = 0
            return False
        try:
            port = serial.Serial(
                port=device,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=0.5,
                xonxoff=False,
                rtscts=False,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            log.error("Serial: error opening %s: %s", device, exc)
            return False
        self.close()
        self._port = port
        self.baud = baud
        return True

    def close(self) -> None:
        """Close the device if it is open."""
        if self._port is not None:
            self._port.close()
            self._port = None

    def __enter__(self) -> "Serial":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()