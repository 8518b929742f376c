"""Laser rangefinder module: scan parsing and the laser thread."""

from __future__ import annotations

import logging
import math
import re
import time
from typing import List, Sequence, Tuple, Union

from ugvcontrol.shared import (
    DEFAULT_STUDENT_ID,
    STANDARD_LASER_LENGTH,
    WEEDER_ADDRESS,
    ErrorState,
    LaserState,
    NetworkedModule,
    ThreadManagementState,
    UGVError,
    Unit,
)

logger = logging.getLogger(__name__)

LASER_PORT = 23000
LASER_READ_SIZE = 2048
SCAN_REQUEST = b"\x02" + b"sRN LMDscandata" + b"\x03"
CONNECT_ATTEMPTS = 10
COMMUNICATE_ATTEMPTS = 5

_RESOLUTION_FIELD = 24
_COUNT_FIELD = 25
_FIRST_RANGE_FIELD = 26
_HEX = re.compile(r"(?:0[xX])?[0-9a-fA-F]{1,8}")


def _hex_int(token: str) -> int:
    if not _HEX.fullmatch(token):
        raise UGVError(ErrorState.ERR_INVALID_DATA, f"invalid hex field {token!r}")
    value = int(token, 16)
    return value - (1 << 32) if value & 0x80000000 else value


def parse_scan(response: Union[bytes, str]) -> Tuple[float, List[int]]:
    """Return the angular resolution in degrees and the ranges of a scan reply."""
    text = response.decode("ascii", errors="replace") if isinstance(response, bytes) else response
    fragments = text.split(" ")
    if len(fragments) <= _COUNT_FIELD:
        raise UGVError(ErrorState.ERR_INVALID_DATA, "scan reply too short")
    resolution = _hex_int(fragments[_RESOLUTION_FIELD]) / 10000.0
    count = _hex_int(fragments[_COUNT_FIELD])
    if count < 0:
        raise UGVError(ErrorState.ERR_INVALID_DATA, "negative point count")
    values = fragments[_FIRST_RANGE_FIELD : _FIRST_RANGE_FIELD + count]
    if len(values) < count:
        raise UGVError(ErrorState.ERR_INVALID_DATA, "scan reply missing range values")
    return resolution, [_hex_int(value) for value in values]


def scan_to_points(ranges: Sequence[float], resolution: float) -> Tuple[List[float], List[float]]:
    """Convert ranges sampled every ``resolution`` degrees to x and y coordinates."""
    angles = [math.radians(i * resolution) for i in range(len(ranges))]
    xs = [r * math.cos(a) for r, a in zip(ranges, angles)]
    ys = [r * math.sin(a) for r, a in zip(ranges, angles)]
    return xs, ys


class Laser(NetworkedModule):
    """Critical module polling the laser and publishing scans as points."""

    name = "Laser"

    def __init__(
        self,
        tm: ThreadManagementState,
        laser_state: LaserState,
        host: str = WEEDER_ADDRESS,
        port: int = LASER_PORT,
        *,
        student_id: str = DEFAULT_STUDENT_ID,
        clock=time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, Unit.LASER, host, port, read_size=LASER_READ_SIZE, clock=clock, period=period)
        self.laser_state = laser_state
        self.student_id = student_id

    def connect(self, host: str, port: int) -> None:
        """Open the connection and authenticate."""
        super().connect(host, port)
        try:
            self.authenticate(self.student_id)
        except (UGVError, OSError):
            self.close()
            raise

    def communicate(self) -> None:
        """Request one scan."""
        self._send(SCAN_REQUEST)
        time.sleep(0.01)

    def process_shared_memory(self) -> None:
        """Read a scan reply and store it as points in the shared laser state."""
        resolution, ranges = parse_scan(self._recv(self.read_size))
        if len(ranges) != STANDARD_LASER_LENGTH:
            raise UGVError(
                ErrorState.ERR_INVALID_DATA,
                f"expected {STANDARD_LASER_LENGTH} points, got {len(ranges)}",
            )
        xs, ys = scan_to_points(ranges, resolution)
        with self.laser_state.lock:
            self.laser_state.x[:] = xs
            self.laser_state.y[:] = ys

    def run(self) -> None:
        """Connect, then poll scans until shutdown; repeated failure stops every module."""
        connected = self._attempt(
            lambda: self.connect(self.host, self.port), CONNECT_ATTEMPTS, (UGVError, OSError)
        )
        if not connected:
            self.shutdown_modules()
        self._serve()

    def _scan_once(self) -> None:
        self.communicate()
        self.process_shared_memory()

    def _cycle(self) -> None:
        if not self._attempt(self._scan_once, COMMUNICATE_ATTEMPTS):
            self.shutdown_modules()