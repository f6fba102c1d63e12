"""
Fusion Configuration

Sensor characteristics and correlation thresholds.
"""

from dataclasses import dataclass


@dataclass
class SensorCharacteristics:
    """Sensor accuracy and coverage (used by the simulator)"""
    position_error_m: float       # Max position error in meters
    update_interval_s: float      # Time between reports
    range_m: float                # Detection range
    has_identity: bool            # Reports vessel identity (MMSI/name)


SENSOR_CONFIG = {
    "ais": SensorCharacteristics(
        position_error_m=10,
        update_interval_s=5.0,
        range_m=10000,
        has_identity=True,       # Has MMSI
    ),
    "radar": SensorCharacteristics(
        position_error_m=50,
        update_interval_s=4.0,
        range_m=80000,           # Typical ship radar
        has_identity=False,      # Only a position
    ),
    "eoir": SensorCharacteristics(
        position_error_m=20,     # Grows with range
        update_interval_s=0.1,
        range_m=15000,
        has_identity=False,
    ),
}


@dataclass
class CorrelationGates:
    """Thresholds for detection-to-track correlation and track lifecycle"""

    # Spatial gate
    max_distance_m: float = 500.0

    # Temporal gate
    max_time_delta_s: float = 30.0

    # Track lifecycle
    inactivity_timeout_s: float = 120.0
    confirmation_threshold: int = 3

    # How often the host runs the inactivity sweep
    sweep_interval_s: float = 10.0
