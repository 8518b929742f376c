# ugvcontrol

A small control stack for an unmanned ground vehicle (UGV). It runs one thread
per subsystem. The threads share state objects and report to a supervisor
through heartbeat bits:

- **Laser** (`ugvcontrol.laser`): connects to the rangefinder on port 23000,
  sends an identifier line and expects `OK`. It then requests
  `sRN LMDscandata` scans and turns the 361 ranges of each scan into x/y
  points in `LaserState`.
- **GPS** (`ugvcontrol.gnss`): reads binary GNSS frames from port 24000. It
  finds the `0xAA44121C` header, checks the frame's CRC-32 and publishes
  northing, easting and height to `GPSState`.
- **Vehicle control** (`ugvcontrol.vehicle`): connects to port 25000 and
  authenticates the same way as the laser. It sends commands of the form
  `# <steering> <speed> <flag> #`, where the flag toggles on every send. A
  demand is rejected when steering is outside ±40 or speed is outside ±1.
- **Controller** (`ugvcontrol.controller`): turns a `ControllerState` into
  speed and steering. Speed comes from the right trigger, or from the negated
  left trigger when the right trigger is zero. Steering is -40 times the right
  stick's x axis. When the thread stops, speed and steering are set back to
  zero.
- **Display** (`ugvcontrol.display`): sends the current laser x values, then
  the y values, to a display on port 28000. Each block is a run of
  little-endian 64-bit floats.
- **Thread management** (`ugvcontrol.manager`): starts every module thread and
  clears their heartbeats. A critical module that stays silent for more than
  1000 ms shuts everything down. The non-critical GPS module is started again
  once its old thread has exited.

Shared state, the `ErrorState` codes, `UGVError`, the `Stopwatch` and the
`UGVModule` / `NetworkedModule` base classes are in `ugvcontrol.shared`.

## Installing

```
pip install .
```

The package depends only on the standard library.

## Running

```
ugvcontrol
```

The same command is available as `python -m ugvcontrol.manager`. Options:

- `--weeder-host HOST`: address of the vehicle. Default: `192.168.1.200`.
- `--display-host HOST`: address of the display. Default: `127.0.0.1`.
- `--student-id ID`: identifier sent when connecting. Default: `1234567`.
- `-v`, `--verbose`: also log debug messages.

Keys are read from standard input. To stop every module, type `q` (or `Q`) and
press Enter.

## Using the pieces

The protocol helpers work on their own, for example for checking recorded
data:

```python
from ugvcontrol.display import encode_points
from ugvcontrol.gnss import block_crc32, parse_gnss_frame
from ugvcontrol.laser import parse_scan, scan_to_points
from ugvcontrol.vehicle import format_command, validate_command

frame = parse_gnss_frame(raw_frame_bytes)     # GNSSFrame; UGVError on short data or bad CRC
resolution, ranges = parse_scan(scan_text)    # resolution in degrees and integer ranges
xs, ys = scan_to_points(ranges, resolution)   # polar ranges to x/y lists

validate_command(10.0, 0.5)                   # UGVError when out of range
format_command(10.0, 0.5, 1)                  # '# 10 0.5 1 #'
encode_points([0.0, 1.0])                     # 16 bytes
```

`block_crc32` computes the receiver's CRC-32: start value zero, with no final
xor.

Failures raise `ugvcontrol.shared.UGVError`. Its `state` attribute holds an
`ErrorState` that says what went wrong, and `error_message` turns an
`ErrorState` into a readable message.

## What it does not do

No gamepad driver is included. By default `ControllerInterface` is in keyboard
mode with no input source, so it always reports a connected controller with
every input at rest. Speed and steering therefore stay at zero. To drive the
vehicle, pass a `ControllerInterface` whose `source` callable returns a
`ControllerState`, or set its `state` attribute.

## Tests

```
pip install .[test]
pytest
```