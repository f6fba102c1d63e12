"""
Correlation Engine

Gated nearest-neighbor association of a single detection to the live
track table. No prediction and no statistical gating: a track is a
candidate when it lacks the detecting sensor, was updated recently, and
lies within the distance gate; the closest candidate wins.
"""

from datetime import datetime
from typing import Dict, Optional, Tuple

import numpy as np

from .config import CorrelationGates
from .schema import SensorKind, Track


class CorrelationEngine:
    """
    Finds the existing track a new detection belongs to.
    """

    def __init__(self, gates: CorrelationGates):
        self.gates = gates

    def find_correlated_track(
        self,
        position: np.ndarray,
        sensor_kind: SensorKind,
        timestamp: datetime,
        tracks: Dict[str, Track],
    ) -> Tuple[Optional[str], float]:
        """
        Correlate a detection to existing tracks.

        Args:
            position: Detection position in local ENU meters
            sensor_kind: Sensor that produced the detection
            timestamp: Detection time (timezone-aware)
            tracks: Live track table

        Returns:
            (track_id, distance_m) of the nearest eligible track,
            (None, inf) if no track passes the gates
        """
        if not tracks:
            return None, float("inf")

        track_ids = []
        positions = []
        for track_id, track in tracks.items():
            # A sensor never correlates with a track it already feeds
            if track.has_sensor(sensor_kind):
                continue

            elapsed = abs((timestamp - track.updated_at).total_seconds())
            if elapsed >= self.gates.max_time_delta_s:
                continue

            track_ids.append(track_id)
            positions.append(track.position)

        if not track_ids:
            return None, float("inf")

        distances = np.linalg.norm(
            np.asarray(positions, dtype=np.float64) - np.asarray(position, dtype=np.float64),
            axis=1,
        )
        best = int(np.argmin(distances))
        best_distance = float(distances[best])

        if not best_distance < self.gates.max_distance_m:
            return None, float("inf")

        return track_ids[best], best_distance
