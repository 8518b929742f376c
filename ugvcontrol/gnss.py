"""GNSS receiver module: frame decoding, CRC checking and the GPS thread."""

from __future__ import annotations

import logging
import select
import struct
import time
from dataclasses import dataclass

from ugvcontrol.shared import (
    WEEDER_ADDRESS,
    ErrorState,
    GPSState,
    NetworkedModule,
    ThreadManagementState,
    UGVError,
    Unit,
)

logger = logging.getLogger(__name__)

CRC32_POLYNOMIAL = 0xEDB88320
GNSS_HEADER = 0xAA44121C
GNSS_PORT = 24000
GNSS_READ_SIZE = 5000

_FRAME = struct.Struct("<I40sddd40sI")
GNSS_FRAME_SIZE = _FRAME.size
GNSS_CRC_SPAN = GNSS_FRAME_SIZE - 4


def crc32_value(i: int) -> int:
    """CRC table entry for the byte value ``i``."""
    crc = i
    for _ in range(8):
        crc = (crc >> 1) ^ CRC32_POLYNOMIAL if crc & 1 else crc >> 1
    return crc


_TABLE = tuple(crc32_value(i) for i in range(256))


def block_crc32(data: bytes) -> int:
    """CRC-32 of ``data`` as used by the GNSS receiver (zero start, no final xor)."""
    crc = 0
    for byte in data:
        crc = ((crc >> 8) & 0x00FFFFFF) ^ _TABLE[(crc ^ byte) & 0xFF]
    return crc


@dataclass(frozen=True)
class GNSSFrame:
    """Decoded position frame."""

    header: int
    northing: float
    easting: float
    height: float
    crc: int


def parse_gnss_frame(data: bytes) -> GNSSFrame:
    """Decode the leading frame of ``data`` and verify its CRC."""
    if len(data) < GNSS_FRAME_SIZE:
        raise UGVError(ErrorState.ERR_NO_DATA, "GNSS frame too short")
    header, _, northing, easting, height, _, crc = _FRAME.unpack_from(data)
    calculated = block_crc32(bytes(data[:GNSS_CRC_SPAN]))
    if calculated != crc:
        raise UGVError(
            ErrorState.ERR_INVALID_DATA,
            f"GNSS CRC mismatch: calculated {calculated}, received {crc}",
        )
    return GNSSFrame(header, northing, easting, height, crc)


class GPS(NetworkedModule):
    """Non-critical module reading GNSS frames into the shared GPS state."""

    name = "GNSS"

    def __init__(
        self,
        tm: ThreadManagementState,
        gps_state: GPSState,
        host: str = WEEDER_ADDRESS,
        port: int = GNSS_PORT,
        *,
        clock=time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, Unit.GPS, host, port, read_size=GNSS_READ_SIZE, clock=clock, period=period)
        self.gps_state = gps_state
        self._buffer = bytearray(GNSS_READ_SIZE)

    def connect(self, host: str, port: int) -> None:
        """Open the connection and clear the receive buffer."""
        super().connect(host, port)
        self._buffer = bytearray(GNSS_READ_SIZE)

    def communicate(self) -> GNSSFrame:
        """Read the next frame if one is waiting and publish the buffered position."""
        sock = self._require_socket()
        readable, _, _ = select.select([sock], [], [], 0)
        if readable:
            header = 0
            while header != GNSS_HEADER:
                header = ((header << 8) | self._recv(1)[0]) & 0xFFFFFFFF
            chunk = self._recv(len(self._buffer) - 4)
            self._buffer[:4] = GNSS_HEADER.to_bytes(4, "big")
            self._buffer[4 : 4 + len(chunk)] = chunk

        frame = parse_gnss_frame(self._buffer)
        with self.gps_state.lock:
            self.gps_state.easting = frame.easting
            self.gps_state.northing = frame.northing
            self.gps_state.height = frame.height
        logger.info(
            "Northing: %.3f Easting: %.3f Height: %.3f  Calc CRC: %d weed CRC: %d",
            frame.northing,
            frame.easting,
            frame.height,
            frame.crc,
            frame.crc,
        )
        return frame

    def process_shared_memory(self) -> None:
        """Nothing further to exchange; positions are published as they are read."""

    def run(self) -> None:
        """Connect once, then keep reading frames until shutdown."""
        self.connect(self.host, self.port)
        self._serve()

    def _cycle(self) -> None:
        try:
            self.communicate()
        except UGVError as exc:
            logger.debug("GNSS: %s", exc)
        self.process_shared_memory()