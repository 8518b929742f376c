"""Display module streaming the latest laser scan to the local viewer."""

from __future__ import annotations

import logging
import struct
import time
from typing import Iterable, Sequence

from ugvcontrol.shared import (
    DISPLAY_ADDRESS,
    LaserState,
    NetworkedModule,
    ThreadManagementState,
    UGVError,
    Unit,
)

logger = logging.getLogger(__name__)

DISPLAY_PORT = 28000
DISPLAY_READ_SIZE = 64
CONNECT_ATTEMPTS = 5
COMMUNICATE_ATTEMPTS = 5
FRAME_GAP = 0.01


def encode_points(values: Iterable[float]) -> bytes:
    """Pack values as consecutive little-endian 64-bit floats."""
    values = list(values)
    return struct.pack(f"<{len(values)}d", *values)


class Display(NetworkedModule):
    """Critical module sending laser x and y coordinates to the display."""

    name = "Display"

    def __init__(
        self,
        tm: ThreadManagementState,
        laser_state: LaserState,
        host: str = DISPLAY_ADDRESS,
        port: int = DISPLAY_PORT,
        *,
        clock=time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, Unit.DISPLAY, host, port, read_size=DISPLAY_READ_SIZE, clock=clock, period=period)
        self.laser_state = laser_state

    def connect(self, host: str, port: int) -> None:
        """Open the connection to the display."""
        super().connect(host, port)

    def communicate(self) -> None:
        """Send the current scan."""
        self.send_display_data(self.laser_state.x, self.laser_state.y)

    def send_display_data(self, xs: Sequence[float], ys: Sequence[float]) -> None:
        """Send the x block, then after a short gap the y block."""
        self._require_socket()
        with self.laser_state.lock:
            data_x = encode_points(xs)
            data_y = encode_points(ys)
        self._send(data_x)
        time.sleep(FRAME_GAP)
        self._send(data_y)

    def process_shared_memory(self) -> None:
        """Nothing to exchange; the scan is read when it is sent."""

    def run(self) -> None:
        """Connect, then stream scans until shutdown; repeated failure stops every module."""
        connected = self._attempt(
            lambda: self.connect(self.host, self.port), CONNECT_ATTEMPTS, (UGVError, OSError)
        )
        if not connected:
            self.shutdown_modules()
        self._serve()

    def _cycle(self) -> None:
        if not self._attempt(self.communicate, COMMUNICATE_ATTEMPTS, (UGVError, OSError)):
            self.shutdown_modules()