"""Threaded control stack for an unmanned ground vehicle: laser, GNSS, vehicle control, controller and display modules under a heartbeat supervisor."""

__version__ = "0.1.0"