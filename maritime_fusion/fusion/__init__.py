"""
Sensor Fusion Module

Correlates detections from AIS, radar and EO/IR into unified vessel
tracks and publishes their lifecycle.
"""

from .schema import Track, TrackState, TrackEvent, TrackEventKind, SensorKind, IdentityConfidence, Detection
from .config import SENSOR_CONFIG, CorrelationGates
from .correlation import CorrelationEngine
from .events import TrackEventChannel
from .track_manager import TrackManager

__all__ = [
    "Track",
    "TrackState",
    "TrackEvent",
    "TrackEventKind",
    "SensorKind",
    "IdentityConfidence",
    "Detection",
    "SENSOR_CONFIG",
    "CorrelationGates",
    "CorrelationEngine",
    "TrackEventChannel",
    "TrackManager",
]
