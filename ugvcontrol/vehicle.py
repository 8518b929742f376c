"""Vehicle control module: drive command formatting and the vehicle control thread."""

from __future__ import annotations

import logging
import time
from typing import Tuple

from ugvcontrol.shared import (
    DEFAULT_STUDENT_ID,
    WEEDER_ADDRESS,
    ErrorState,
    NetworkedModule,
    ThreadManagementState,
    UGVError,
    Unit,
    VehicleControlState,
)

logger = logging.getLogger(__name__)

VC_PORT = 25000
VC_READ_SIZE = 2048
MAX_STEERING = 40.0
MAX_SPEED = 1.0
CONNECT_ATTEMPTS = 5
COMMUNICATE_ATTEMPTS = 5


def _format_number(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    text = f"{value:.15g}"
    return text.replace("e", "E")


def format_command(steering: float, speed: float, flag: int) -> str:
    """Build the ``# steering speed flag #`` drive command."""
    return f"# {_format_number(steering)} {_format_number(speed)} {int(flag)} #"


def validate_command(steering: float, speed: float) -> Tuple[float, float]:
    """Check steering is within ±40 and speed within ±1; return them unchanged."""
    if not -MAX_STEERING <= steering <= MAX_STEERING or not -MAX_SPEED <= speed <= MAX_SPEED:
        raise UGVError(
            ErrorState.ERR_INVALID_DATA,
            f"command out of range: steering {steering}, speed {speed}",
        )
    return steering, speed


class VehicleControl(NetworkedModule):
    """Critical module sending the shared speed and steering demand to the vehicle."""

    name = "VC"

    def __init__(
        self,
        tm: ThreadManagementState,
        vc_state: VehicleControlState,
        host: str = WEEDER_ADDRESS,
        port: int = VC_PORT,
        *,
        student_id: str = DEFAULT_STUDENT_ID,
        clock=time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, Unit.VC, host, port, read_size=VC_READ_SIZE, clock=clock, period=period)
        self.vc_state = vc_state
        self.student_id = student_id
        self.flag = 0

    def connect(self, host: str, port: int) -> None:
        """Open the connection and authenticate."""
        super().connect(host, port)
        try:
            self.authenticate(self.student_id)
        except (UGVError, OSError):
            self.close()
            raise

    def communicate(self) -> str:
        """Send the current demand with a toggled watchdog flag; return the command sent."""
        with self.vc_state.lock:
            self.flag = 1 - self.flag
            command = format_command(self.vc_state.steering, self.vc_state.speed, self.flag)
        self._send(command.encode("ascii"))
        time.sleep(0.01)
        return command

    def process_shared_memory(self) -> None:
        """Check that the shared demand is within the vehicle's limits."""
        with self.vc_state.lock:
            steering, speed = self.vc_state.steering, self.vc_state.speed
        validate_command(steering, speed)

    def run(self) -> None:
        """Connect, then send demands until shutdown; repeated failure stops every module."""
        connected = self._attempt(
            lambda: self.connect(self.host, self.port), CONNECT_ATTEMPTS, (UGVError, OSError)
        )
        if not connected:
            self.shutdown_modules()
        self._serve()

    def _send_once(self) -> None:
        self.communicate()
        self.process_shared_memory()

    def _cycle(self) -> None:
        if not self._attempt(self._send_once, COMMUNICATE_ATTEMPTS, (UGVError, OSError)):
            self.shutdown_modules()