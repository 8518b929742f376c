import socket
import threading
from contextlib import contextmanager

import pytest

from ugvcontrol.shared import (
    CRASH_LIMIT_MS,
    SHUTDOWN_ALL,
    STANDARD_LASER_LENGTH,
    ErrorState,
    GPSState,
    LaserState,
    NetworkedModule,
    Stopwatch,
    ThreadManagementState,
    UGVError,
    UGVModule,
    Unit,
    VehicleControlState,
    error_message,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class _Counter(UGVModule):
    name = "counter"

    def __init__(self, tm, limit, clock=None):
        kwargs = {"period": 0}
        if clock is not None:
            kwargs["clock"] = clock
        super().__init__(tm, Unit.CONTROLLER, **kwargs)
        self.calls = 0
        self.limit = limit

    def process_shared_memory(self):
        self.calls += 1
        if self.calls >= self.limit:
            self.shutdown_modules()


class _Net(NetworkedModule):
    name = "net"

    def communicate(self):
        self._send(b"ping")

    def process_shared_memory(self):
        pass


@contextmanager
def _pair():
    a, b = socket.socketpair()
    a.settimeout(2)
    b.settimeout(2)
    try:
        yield a, b
    finally:
        a.close()
        b.close()


def test_error_messages_match_source():
    assert error_message(ErrorState.SUCCESS) == "Success."
    assert error_message(ErrorState.ERR_NO_DATA) == "ERROR: No Data Available."
    assert error_message(ErrorState.ERR_INVALID_DATA) == "ERROR: Invalid Data Received."
    assert error_message(ErrorState.ERR_SM) == ""


def test_ugv_error_carries_state_and_message():
    err = UGVError(ErrorState.ERR_INVALID_DATA)
    assert err.state is ErrorState.ERR_INVALID_DATA
    assert str(err) == "ERROR: Invalid Data Received."
    assert str(UGVError(ErrorState.ERR_SM)) == "ERR_SM"


def test_unit_bits_drive_shutdown_and_heartbeat():
    tm = ThreadManagementState(shutdown=0b00000001)
    assert tm.is_shutdown(Unit.PM)
    assert not tm.is_shutdown(Unit.LASER)

    tm = ThreadManagementState(shutdown=0b00100000)
    assert tm.is_shutdown(Unit.DISPLAY)
    assert not tm.is_shutdown(Unit.CONTROLLER)

    tm = ThreadManagementState()
    module = _Counter(tm, 1, clock=FakeClock())
    module.process_heartbeat()
    assert tm.heartbeat == 0b00010000


def test_stopwatch_accumulates_and_restarts():
    clock = FakeClock()
    watch = Stopwatch(clock)
    assert watch.elapsed_ms() == 0
    watch.start()
    clock.now = 1.5
    assert watch.elapsed_ms() == 1500
    watch.start()
    assert watch.elapsed_ms() == 1500
    watch.restart()
    assert watch.elapsed_ms() == 0
    clock.now = 1.75
    assert watch.elapsed_ms() == 250


def test_request_shutdown_sets_every_bit():
    tm = ThreadManagementState()
    assert not any(tm.is_shutdown(unit) for unit in Unit)
    tm.request_shutdown()
    assert tm.shutdown == SHUTDOWN_ALL
    assert all(tm.is_shutdown(unit) for unit in Unit)


def test_state_defaults():
    laser = LaserState()
    assert len(laser.x) == STANDARD_LASER_LENGTH
    assert len(laser.y) == STANDARD_LASER_LENGTH
    assert (GPSState().northing, GPSState().easting, GPSState().height) == (0.0, 0.0, 0.0)
    assert (VehicleControlState().speed, VehicleControlState().steering) == (0.0, 0.0)


def test_heartbeat_sets_bit():
    tm = ThreadManagementState()
    module = _Counter(tm, 1, clock=FakeClock())
    module.process_heartbeat()
    assert tm.heartbeat & Unit.CONTROLLER
    assert tm.shutdown == 0


def test_heartbeat_within_limit_keeps_running():
    clock = FakeClock()
    tm = ThreadManagementState(heartbeat=Unit.CONTROLLER)
    module = _Counter(tm, 1, clock=clock)
    module._watch.start()
    clock.now = CRASH_LIMIT_MS / 1000 / 2
    module.process_heartbeat()
    assert tm.shutdown == 0


def test_heartbeat_timeout_shuts_everything_down():
    clock = FakeClock()
    tm = ThreadManagementState(heartbeat=Unit.CONTROLLER)
    module = _Counter(tm, 1, clock=clock)
    module._watch.start()
    clock.now = CRASH_LIMIT_MS / 1000 + 0.5
    with pytest.raises(UGVError) as info:
        module.process_heartbeat()
    assert info.value.state is ErrorState.ERR_TMM_FAILURE
    assert tm.shutdown == SHUTDOWN_ALL


def test_run_loops_until_shutdown():
    tm = ThreadManagementState(barrier=threading.Barrier(1))
    module = _Counter(tm, 3)
    module.run()
    assert module.calls == 3
    assert module.shutdown_requested() is True


def test_run_skips_loop_when_already_shut_down():
    tm = ThreadManagementState(shutdown=Unit.CONTROLLER)
    module = _Counter(tm, 3)
    module.run()
    assert module.calls == 0


def test_authenticate_sends_identifier_and_accepts_ok():
    with _pair() as (a, b):
        module = _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", 1)
        module.sock = a
        b.sendall(b"OK\n")
        module.authenticate("1234567")
        assert b.recv(64) == b"1234567\n"
        assert module.sock is a
        module.communicate()
        assert b.recv(64) == b"ping"


def test_authenticate_rejects_other_reply():
    with _pair() as (a, b):
        module = _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", 1)
        module.sock = a
        b.sendall(b"NO\n")
        with pytest.raises(UGVError) as info:
            module.authenticate("1234567")
        assert info.value.state is ErrorState.ERR_CONNECTION


def test_unconnected_module_raises_connection_error():
    module = _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", 1)
    with pytest.raises(UGVError) as info:
        module.communicate()
    assert info.value.state is ErrorState.ERR_CONNECTION


def test_closed_peer_raises_connection_error():
    with _pair() as (a, b):
        module = _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", 1)
        module.sock = a
        b.shutdown(socket.SHUT_WR)
        with pytest.raises(UGVError) as info:
            module.authenticate("1234567")
        assert info.value.state is ErrorState.ERR_CONNECTION


def test_close_releases_socket():
    a, b = socket.socketpair()
    try:
        module = _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", 1)
        module.sock = a
        module.close()
        assert module.sock is None
        assert a.fileno() == -1
    finally:
        b.close()


def test_connect_opens_tcp_connection():
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]
    accepted = []

    def serve():
        conn, _ = server.accept()
        accepted.append(conn)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        with _Net(ThreadManagementState(), Unit.LASER, "127.0.0.1", port) as module:
            module.connect("127.0.0.1", port)
            assert module.sock.getpeername()[1] == port
            assert bool(module.sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY)) is True
        thread.join(2)
        assert len(accepted) == 1
    finally:
        for conn in accepted:
            conn.close()
        server.close()