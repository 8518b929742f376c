"""Shared-memory state, error types and base classes for the vehicle modules."""

from __future__ import annotations

import enum
import logging
import socket
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

CRASH_LIMIT_MS = 1000
STANDARD_LASER_LENGTH = 361
SHUTDOWN_ALL = 0xFF

WEEDER_ADDRESS = "192.168.1.200"
DISPLAY_ADDRESS = "127.0.0.1"

SOCKET_TIMEOUT = 0.5
SOCKET_BUFFER_SIZE = 1024
DEFAULT_STUDENT_ID = "1234567"

Clock = Callable[[], float]


class ErrorState(enum.IntEnum):
    """Failure kinds reported by the modules."""

    SUCCESS = 0
    ERR_STARTUP = 1
    ERR_NO_DATA = 2
    ERR_INVALID_DATA = 3
    ERR_SM = 4
    ERR_CONNECTION = 5
    ERR_CRITICAL_PROCESS_FAILURE = 6
    ERR_NONCRITICAL_PROCESS_FAILURE = 7
    ERR_TMM_FAILURE = 8


_MESSAGES = {
    ErrorState.SUCCESS: "Success.",
    ErrorState.ERR_NO_DATA: "ERROR: No Data Available.",
    ErrorState.ERR_INVALID_DATA: "ERROR: Invalid Data Received.",
}


def error_message(error: ErrorState) -> str:
    """Return the human-readable message for an error state, or an empty string."""
    return _MESSAGES.get(ErrorState(error), "")


class UGVError(Exception):
    """Raised when a module operation fails; ``state`` tells how."""

    def __init__(self, state: ErrorState, message: Optional[str] = None) -> None:
        self.state = ErrorState(state)
        super().__init__(message or error_message(self.state) or self.state.name)


class Unit(enum.IntFlag):
    """Bit identifying each module in the heartbeat and shutdown words."""

    PM = 0b00000001
    LASER = 0b00000010
    GPS = 0b00000100
    VC = 0b00001000
    CONTROLLER = 0b00010000
    DISPLAY = 0b00100000
    ALL = 0b00011111


class Stopwatch:
    """Elapsed-time counter that can be started and restarted."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._elapsed = 0.0
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        """Start measuring, keeping any time already accumulated."""
        if self._started_at is None:
            self._started_at = self._clock()

    def restart(self) -> None:
        """Reset the elapsed time to zero and start measuring."""
        self._elapsed = 0.0
        self._started_at = self._clock()

    def elapsed_ms(self) -> int:
        """Whole milliseconds measured so far."""
        total = self._elapsed
        if self._started_at is not None:
            total += self._clock() - self._started_at
        return int(total * 1000)


@dataclass
class ThreadManagementState:
    """Shutdown and heartbeat words shared by all modules."""

    shutdown: int = 0
    heartbeat: int = 0
    barrier: Optional[threading.Barrier] = None
    watch_list: list = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def request_shutdown(self) -> None:
        """Raise the shutdown flag of every module."""
        self.shutdown = SHUTDOWN_ALL

    def is_shutdown(self, unit: int) -> bool:
        """Whether the shutdown flag for ``unit`` is raised."""
        return bool(self.shutdown & unit)


@dataclass
class LaserState:
    """Latest laser scan as Cartesian points."""

    x: list = field(default_factory=lambda: [0.0] * STANDARD_LASER_LENGTH)
    y: list = field(default_factory=lambda: [0.0] * STANDARD_LASER_LENGTH)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class GPSState:
    """Latest GNSS position."""

    northing: float = 0.0
    easting: float = 0.0
    height: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class VehicleControlState:
    """Speed and steering demand for the vehicle."""

    speed: float = 0.0
    steering: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class UGVModule(ABC):
    """Base for every module thread: heartbeat, shutdown and the main loop."""

    name = "module"

    def __init__(
        self,
        tm: ThreadManagementState,
        unit: int,
        *,
        clock: Clock = time.monotonic,
        period: float = 0.02,
    ) -> None:
        self.tm = tm
        self.unit = Unit(unit)
        self.period = period
        self._clock = clock
        self._watch = Stopwatch(clock)

    @abstractmethod
    def process_shared_memory(self) -> None:
        """Exchange data with the shared-memory objects."""

    def shutdown_requested(self) -> bool:
        """Whether this module has been asked to stop."""
        return self.tm.is_shutdown(self.unit)

    def shutdown_modules(self) -> None:
        """Ask every module to stop."""
        self.tm.request_shutdown()

    def process_heartbeat(self) -> None:
        """Raise this module's heartbeat bit, or fail if the manager stopped clearing it."""
        with self.tm.lock:
            if not self.tm.heartbeat & self.unit:
                self.tm.heartbeat |= self.unit
                self._watch.restart()
                return
        if self._watch.elapsed_ms() > CRASH_LIMIT_MS:
            self.shutdown_modules()
            raise UGVError(ErrorState.ERR_TMM_FAILURE, "thread manager stopped responding")

    def run(self) -> None:
        """Run the module until shutdown is requested."""
        self._serve()

    def _cycle(self) -> None:
        self.process_shared_memory()

    def _attempt(
        self,
        action: Callable[[], object],
        attempts: int,
        errors: Iterable[type] = (UGVError,),
    ) -> bool:
        caught = tuple(errors)
        for _ in range(attempts):
            try:
                action()
            except caught as exc:
                logger.debug("%s: attempt failed: %s", self.name, exc)
            else:
                return True
        return False

    def _serve(self) -> None:
        self._watch = Stopwatch(self._clock)
        if self.tm.barrier is not None:
            self.tm.barrier.wait()
        self._watch.start()
        while not self.shutdown_requested():
            try:
                self.process_heartbeat()
            except UGVError as exc:
                logger.warning("%s: %s", self.name, exc)
            self._cycle()
            time.sleep(self.period)
        logger.info("%s thread is terminating", self.name)


class NetworkedModule(UGVModule):
    """Module that talks to a device over a TCP connection."""

    def __init__(
        self,
        tm: ThreadManagementState,
        unit: int,
        host: str,
        port: int,
        *,
        read_size: int = 2048,
        clock: Clock = time.monotonic,
        period: float = 0.02,
    ) -> None:
        super().__init__(tm, unit, clock=clock, period=period)
        self.host = host
        self.port = port
        self.read_size = read_size
        self.sock: Optional[socket.socket] = None

    def connect(self, host: str, port: int) -> None:
        """Open the TCP connection with the timeouts and buffer sizes the devices expect."""
        self.close()
        sock = socket.create_connection((host, port), timeout=SOCKET_TIMEOUT)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, SOCKET_BUFFER_SIZE)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, SOCKET_BUFFER_SIZE)
        self.sock = sock

    @abstractmethod
    def communicate(self) -> object:
        """Exchange one round of data with the device."""

    def authenticate(self, student_id: str) -> None:
        """Send the identifier line and require an ``OK`` reply."""
        self._send(f"{student_id}\n".encode("ascii"))
        reply = self._recv(self.read_size).decode("ascii", errors="replace")
        if not reply.startswith("OK\n"):
            logger.warning("%s: NOT AUTHENTICATED", self.name)
            raise UGVError(ErrorState.ERR_CONNECTION, "not authenticated")
        logger.info("%s: Authenticated", self.name)

    def close(self) -> None:
        """Close the connection if one is open."""
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def __enter__(self) -> "NetworkedModule":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_socket(self) -> socket.socket:
        if self.sock is None:
            raise UGVError(ErrorState.ERR_CONNECTION, "not connected")
        return self.sock

    def _send(self, data: bytes) -> None:
        self._require_socket().sendall(data)

    def _recv(self, size: int) -> bytes:
        data = self._require_socket().recv(size)
        if not data:
            raise UGVError(ErrorState.ERR_CONNECTION, "connection closed")
        return data