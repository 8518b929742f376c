"""Game-controller input and the module turning it into drive demands."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

from ugvcontrol.shared import (
    ErrorState,
    ThreadManagementState,
    UGVError,
    UGVModule,
    Unit,
    VehicleControlState,
)

logger = logging.getLogger(__name__)

STEERING_SCALE = -40.0
PROCESS_ATTEMPTS = 5


class InputType(enum.IntEnum):
    """Where controller input comes from."""

    XBOX = 0
    KEYBOARD = 1


@dataclass(frozen=True)
class ControllerState:
    """Every input of the controller; sticks in -1..1, triggers in 0..1."""

    is_connected: bool = False
    left_thumb_x: float = 0.0
    left_thumb_y: float = 0.0
    right_thumb_x: float = 0.0
    right_thumb_y: float = 0.0
    left_trigger: float = 0.0
    right_trigger: float = 0.0
    button_a: bool = False
    button_b: bool = False
    button_x: bool = False
    button_y: bool = False
    dpad_left: bool = False
    dpad_right: bool = False
    dpad_up: bool = False
    dpad_down: bool = False
    left_thumb: bool = False
    right_thumb: bool = False
    left_shoulder: bool = False
    right_shoulder: bool = False
    start: bool = False
    back: bool = False


class ControllerInterface:
    """Access to one controller.

    ``source`` returns the current state of a physical controller. Without one,
    keyboard mode reports the ``state`` attribute and is always connected, while
    controller mode reports nothing connected.
    """

    def __init__(
        self,
        player_num: int = 1,
        input_type: InputType = InputType.XBOX,
        source: Optional[Callable[[], ControllerState]] = None,
    ) -> None:
        if not 1 <= player_num <= 4:
            raise ValueError(f"player number must be 1-4, got {player_num}")
        self.player_num = player_num
        self.input_type = InputType(input_type)
        self.source = source
        self.state = ControllerState(is_connected=self.input_type is InputType.KEYBOARD)

    def is_connected(self) -> bool:
        """Whether a controller is available; always true in keyboard mode without a source."""
        if self.source is not None:
            return self.source().is_connected
        return self.input_type is InputType.KEYBOARD

    def get_state(self) -> ControllerState:
        """Current state of every input."""
        if self.source is not None:
            return self.source()
        if self.input_type is InputType.KEYBOARD:
            return replace(self.state, is_connected=True)
        return ControllerState()


def state_to_command(state: ControllerState) -> Tuple[float, float]:
    """Map triggers and the right stick to ``(speed, steering)``."""
    speed = state.right_trigger if state.right_trigger != 0 else -state.left_trigger
    steering = STEERING_SCALE * state.right_thumb_x
    return speed, steering


class Controller(UGVModule):
    """Critical module copying controller input into the vehicle demand."""

    name = "Controller"

    def __init__(
        self,
        tm: ThreadManagementState,
        vc_state: VehicleControlState,
        interface: Optional[ControllerInterface] = None,
        *,
        clock=time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, Unit.CONTROLLER, clock=clock, period=period)
        self.vc_state = vc_state
        self.interface = interface or ControllerInterface(1, InputType.KEYBOARD)
        self.current_state = ControllerState()

    def process_shared_memory(self) -> None:
        """Read the controller and publish speed and steering."""
        if not self.interface.is_connected():
            raise UGVError(ErrorState.ERR_CONNECTION, "controller not connected")
        self.current_state = self.interface.get_state()
        speed, steering = state_to_command(self.current_state)
        with self.vc_state.lock:
            self.vc_state.speed = speed
            self.vc_state.steering = steering

    def run(self) -> None:
        """Poll the controller until shutdown, then zero the demand."""
        try:
            self._serve()
        finally:
            with self.vc_state.lock:
                self.vc_state.speed = 0.0
                self.vc_state.steering = 0.0

    def _cycle(self) -> None:
        if not self._attempt(self.process_shared_memory, PROCESS_ATTEMPTS):
            logger.warning("Controller: max attempts reached, shutting down all modules")
            self.shutdown_modules()