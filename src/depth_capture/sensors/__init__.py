"""Sensing session implementations."""
from __future__ import annotations

from .simulated import SimulatedSensorConfig, SimulatedSession

__all__ = [
    "SimulatedSensorConfig",
    "SimulatedSession",
]
