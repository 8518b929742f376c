"""Thread manager: starts every module, watches heartbeats and coordinates shutdown."""

from __future__ import annotations

import argparse
import logging
import queue
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from ugvcontrol.controller import Controller
from ugvcontrol.display import Display
from ugvcontrol.gnss import GPS
from ugvcontrol.laser import Laser
from ugvcontrol.shared import (
    CRASH_LIMIT_MS,
    DEFAULT_STUDENT_ID,
    DISPLAY_ADDRESS,
    WEEDER_ADDRESS,
    Clock,
    ErrorState,
    GPSState,
    LaserState,
    Stopwatch,
    ThreadManagementState,
    UGVError,
    UGVModule,
    Unit,
    VehicleControlState,
)
from ugvcontrol.vehicle import VehicleControl

logger = logging.getLogger(__name__)

QUIT_KEYS = frozenset("qQ")
MANAGER_PERIOD = 0.05

KeySource = Callable[[], Optional[str]]


@dataclass
class ThreadProperties:
    """How to start a module thread and how to treat its failure."""

    target: Callable[[], None]
    critical: bool
    bit_id: int
    thread_name: str


ThreadFactory = Callable[["ThreadManagement"], Iterable[ThreadProperties]]


def _default_threads(manager: "ThreadManagement") -> List[ThreadProperties]:
    tm = manager.tm
    return [
        ThreadProperties(
            Laser(tm, manager.laser_state, manager.weeder_host, student_id=manager.student_id).run,
            True,
            Unit.LASER,
            "Laser thread",
        ),
        ThreadProperties(GPS(tm, manager.gps_state, manager.weeder_host).run, False, Unit.GPS, "GNSS thread"),
        ThreadProperties(
            Controller(tm, manager.vc_state).run, True, Unit.CONTROLLER, "Controller thread"
        ),
        ThreadProperties(
            VehicleControl(tm, manager.vc_state, manager.weeder_host, student_id=manager.student_id).run,
            True,
            Unit.VC,
            "VehicleControl thread",
        ),
        ThreadProperties(
            Display(tm, manager.laser_state, manager.display_host).run, True, Unit.DISPLAY, "Display thread"
        ),
    ]


class ThreadManagement(UGVModule):
    """Owns the shared state, runs the module threads and supervises their heartbeats."""

    name = "TMM"

    def __init__(
        self,
        *,
        weeder_host: str = WEEDER_ADDRESS,
        display_host: str = DISPLAY_ADDRESS,
        student_id: str = DEFAULT_STUDENT_ID,
        key_source: Optional[KeySource] = None,
        thread_factory: ThreadFactory = _default_threads,
        clock: Clock = time.monotonic,
        period: float = MANAGER_PERIOD,
    ) -> None:
        self.weeder_host = weeder_host
        self.display_host = display_host
        self.student_id = student_id
        self.key_source = key_source
        self.thread_factory = thread_factory
        self.thread_properties: List[ThreadProperties] = []
        self.threads: List[threading.Thread] = []
        self.setup_shared_memory()
        super().__init__(self.tm, Unit.PM, clock=clock, period=period)

    def setup_shared_memory(self) -> None:
        """Create fresh shared-memory objects for every module."""
        self.tm = ThreadManagementState()
        self.laser_state = LaserState()
        self.gps_state = GPSState()
        self.vc_state = VehicleControlState()

    def process_shared_memory(self) -> None:
        """The manager exchanges nothing beyond heartbeats and shutdown flags."""

    def shutdown_modules(self) -> None:
        """Ask every module, the manager included, to stop."""
        self.tm.request_shutdown()

    def shutdown_requested(self) -> bool:
        """Whether the manager's own shutdown bit is raised."""
        return self.tm.is_shutdown(Unit.PM)

    def process_heartbeats(self) -> None:
        """Clear raised heartbeats and act on any module that has stopped beating.

        A silent critical module stops everything and raises; a silent
        non-critical module is started again in a fresh thread once its old
        thread has exited.
        """
        for index, props in enumerate(self.thread_properties):
            watch = self.tm.watch_list[index]
            with self.tm.lock:
                beating = bool(self.tm.heartbeat & props.bit_id)
                if beating:
                    self.tm.heartbeat &= ~props.bit_id
            if beating:
                watch.restart()
                continue
            if watch.elapsed_ms() <= CRASH_LIMIT_MS:
                continue
            if props.critical:
                logger.error("%s failure. Shutting down all threads.", props.thread_name)
                self.shutdown_modules()
                raise UGVError(
                    ErrorState.ERR_CRITICAL_PROCESS_FAILURE, f"{props.thread_name} failure"
                )
            if self.threads[index].is_alive():
                logger.debug("%s is unresponsive and still running", props.thread_name)
                continue
            logger.warning("%s failed. Attempting to restart.", props.thread_name)
            self.tm.barrier = threading.Barrier(1)
            self.threads[index] = self._spawn(props)

    def run(self) -> None:
        """Start every module, supervise until shutdown, then wait for them all to finish."""
        self.thread_properties = list(self.thread_factory(self))
        self.tm.watch_list = [Stopwatch(self._clock) for _ in self.thread_properties]
        self.tm.barrier = threading.Barrier(len(self.thread_properties) + 1)
        self.threads = [self._spawn(props) for props in self.thread_properties]

        self.tm.barrier.wait()
        for watch in self.tm.watch_list:
            watch.start()

        while not self.shutdown_requested():
            try:
                self.process_heartbeats()
            except UGVError as exc:
                logger.error("%s", exc)
            self._poll_keys()
            time.sleep(self.period)

        for thread in self.threads:
            thread.join()
        logger.info("TMM thread terminating")

    def _poll_keys(self) -> None:
        if self.key_source is None:
            return
        key = self.key_source()
        if key is not None and key in QUIT_KEYS:
            self.shutdown_modules()

    @staticmethod
    def _spawn(props: ThreadProperties) -> threading.Thread:
        def guarded() -> None:
            try:
                props.target()
            except Exception:
                logger.exception("%s stopped with an error", props.thread_name)

        thread = threading.Thread(target=guarded, name=props.thread_name, daemon=True)
        thread.start()
        return thread


def _stdin_key_source() -> KeySource:
    keys: "queue.Queue[str]" = queue.Queue()

    def reader() -> None:
        for line in sys.stdin:
            for char in line.strip():
                keys.put(char)

    threading.Thread(target=reader, name="keyboard", daemon=True).start()

    def next_key() -> Optional[str]:
        try:
            return keys.get_nowait()
        except queue.Empty:
            return None

    return next_key


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the vehicle; type ``q`` and Enter to stop."""
    parser = argparse.ArgumentParser(prog="ugvcontrol", description="Run the UGV control modules.")
    parser.add_argument("--weeder-host", default=WEEDER_ADDRESS, help="address of the vehicle")
    parser.add_argument("--display-host", default=DISPLAY_ADDRESS, help="address of the display")
    parser.add_argument("--student-id", default=DEFAULT_STUDENT_ID, help="identifier sent on connect")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(threadName)s: %(message)s",
    )
    manager = ThreadManagement(
        weeder_host=args.weeder_host,
        display_host=args.display_host,
        student_id=args.student_id,
        key_source=_stdin_key_source(),
    )
    manager.setup_shared_memory()
    manager.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())