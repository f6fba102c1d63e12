"""
Track Manager

Owns the live track table: correlates incoming AIS, radar and EO/IR
detections to tracks, creates tracks for unmatched detections, keeps
identity confidence current and removes tracks that go quiet.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from ..projection.geometry import enu_to_geodetic, geodetic_to_enu, velocity_from_course
from ..projection.projector import GeoPoint
from ..schema import AISData, Ship
from .config import CorrelationGates
from .correlation import CorrelationEngine
from .events import TrackEventChannel
from .schema import (
    Detection,
    IdentityConfidence,
    SensorKind,
    Track,
    TrackEvent,
    TrackEventKind,
    TrackState,
    Vector3,
    determine_identity_confidence,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Position = Union[Vector3, GeoPoint]


def _utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TrackManager:
    """
    Multi-sensor track correlation and lifecycle.

    Responsibilities:
    - Key AIS reports by MMSI
    - Associate anonymous detections to the nearest eligible track
    - Let an AIS report claim an anonymous radar/EO-IR track
    - Confirm tracks after enough observations
    - Remove inactive tracks (the only deletion path)

    Every mutating call holds one lock for the whole find-or-create-then-merge
    step. Returned tracks are snapshots; the table itself is only changed
    through this class.
    """

    def __init__(
        self,
        gates: Optional[CorrelationGates] = None,
        events: Optional[TrackEventChannel] = None,
        reference: Optional[GeoPoint] = None,
        clock: Optional[Clock] = None,
    ):
        self.gates = gates or CorrelationGates()
        self.events = events if events is not None else TrackEventChannel()
        self.correlation_engine = CorrelationEngine(self.gates)
        self.reference = reference
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.tracks: Dict[str, Track] = {}
        self.observation_counts: Dict[str, int] = {}
        self._lock = threading.RLock()

        # Statistics
        self.stats = {
            "tracks_created": 0,
            "tracks_updated": 0,
            "tracks_rekeyed": 0,
            "tracks_confirmed": 0,
            "tracks_removed": 0,
            "detections": {"ais": 0, "radar": 0, "eoir": 0},
        }

    # ============ Detection processing ============

    def process_detection(self, sensor_kind: SensorKind, detection: Optional[Detection]) -> Optional[Track]:
        """
        Apply one detection to the track table.

        Returns a snapshot of the created or updated track, or None if
        there was no detection.
        """
        if detection is None:
            return None
        if len(sensor_kind.members) != 1:
            raise ValueError(f"detection must come from exactly one sensor, got {sensor_kind!r}")
        if detection.sensor_kind is not None and detection.sensor_kind != sensor_kind:
            raise ValueError(
                f"detection is tagged {detection.sensor_kind.name}, submitted as {sensor_kind.name}"
            )

        with self._lock:
            timestamp = _utc(detection.timestamp) if detection.timestamp else _utc(self._clock())
            position, lat, lon = self._locate(detection)
            velocity = self._velocity(sensor_kind, detection)
            ship = detection.ship if sensor_kind.carries_identity else None
            identity_key = ship.track_id if ship is not None else None

            self.stats["detections"][sensor_kind.name.lower()] += 1

            if identity_key is not None and identity_key in self.tracks:
                track = self._update_track(
                    identity_key, position, lat, lon, velocity, sensor_kind, timestamp, ship
                )
                return track.model_copy(deep=True)

            match_id, distance = self.correlation_engine.find_correlated_track(
                position, sensor_kind, timestamp, self.tracks
            )

            if match_id is not None:
                previous_id = None
                if identity_key is not None:
                    self._rekey_track(match_id, identity_key)
                    previous_id, match_id = match_id, identity_key
                logger.debug(f"Correlated {sensor_kind.name} detection to {match_id} ({distance:.1f} m)")
                track = self._update_track(
                    match_id, position, lat, lon, velocity, sensor_kind, timestamp, ship,
                    previous_track_id=previous_id,
                )
                return track.model_copy(deep=True)

            track_id = identity_key or self._generate_track_id(sensor_kind)
            track = self._create_track(
                track_id, position, lat, lon, velocity, sensor_kind, timestamp, ship
            )
            return track.model_copy(deep=True)

    def process_batch(self, detections: Optional[Iterable[Tuple[SensorKind, Detection]]]) -> List[Track]:
        """Apply detections in order. None or empty is a no-op."""
        if not detections:
            return []
        results = []
        for sensor_kind, detection in detections:
            track = self.process_detection(sensor_kind, detection)
            if track is not None:
                results.append(track)
        return results

    def process_ship(self, ship: Ship, timestamp: Optional[datetime] = None) -> Track:
        """Apply a single AIS report"""
        return self.process_detection(SensorKind.AIS, Detection.from_ship(ship, timestamp))

    def process_ais_data(self, ais_data: Optional[AISData]) -> List[Track]:
        """Apply every report in an AIS batch, in order"""
        if ais_data is None or not ais_data.ships:
            return []
        return [self.process_ship(ship, ais_data.timestamp) for ship in ais_data.ships]

    def process_radar_detection(
        self,
        position: Position,
        velocity: Optional[Vector3] = None,
        timestamp: Optional[datetime] = None,
    ) -> Track:
        """Apply a radar return (local ENU meters or a GeoPoint)"""
        detection = self._build_detection(SensorKind.RADAR, position, velocity, timestamp)
        return self.process_detection(SensorKind.RADAR, detection)

    def process_eoir_detection(self, position: Position, timestamp: Optional[datetime] = None) -> Track:
        """Apply an EO/IR detection. EO/IR provides no velocity."""
        detection = self._build_detection(SensorKind.EOIR, position, None, timestamp)
        return self.process_detection(SensorKind.EOIR, detection)

    # ============ Track mutation ============

    def _create_track(
        self,
        track_id: str,
        position: np.ndarray,
        lat: float,
        lon: float,
        velocity: np.ndarray,
        sensor_kind: SensorKind,
        timestamp: datetime,
        ship: Optional[Ship],
    ) -> Track:
        """Create a new track from an initial detection"""
        track = Track(
            track_id=track_id,
            position=tuple(float(v) for v in position),
            latitude=lat,
            longitude=lon,
            velocity=tuple(float(v) for v in velocity),
            sources=sensor_kind,
            identity_confidence=determine_identity_confidence(sensor_kind),
            state=TrackState.PREDICTED,
            created_at=timestamp,
            updated_at=timestamp,
            observation_count=1,
            ship=ship,
        )

        self.tracks[track_id] = track
        self.observation_counts[track_id] = 1
        self.stats["tracks_created"] += 1

        logger.info(
            f"Created track {track_id} from {sensor_kind.name} "
            f"at ({lat:.5f}, {lon:.5f})"
        )
        self._publish(TrackEventKind.CREATED, track)
        return track

    def _update_track(
        self,
        track_id: str,
        position: np.ndarray,
        lat: float,
        lon: float,
        velocity: np.ndarray,
        sensor_kind: SensorKind,
        timestamp: datetime,
        ship: Optional[Ship],
        previous_track_id: Optional[str] = None,
    ) -> Track:
        """Merge a detection into an existing track"""
        track = self.tracks[track_id]

        track.position = tuple(float(v) for v in position)
        track.latitude = lat
        track.longitude = lon
        track.velocity = tuple(float(v) for v in velocity)
        if timestamp > track.updated_at:
            track.updated_at = timestamp

        track.sources = track.sources | sensor_kind

        old_confidence = track.identity_confidence
        track.identity_confidence = determine_identity_confidence(track.sources)
        if track.identity_confidence != old_confidence:
            logger.info(
                f"Track {track_id} confidence {old_confidence.name} -> "
                f"{track.identity_confidence.name} ({track.sources.label})"
            )

        count = self.observation_counts.get(track_id, track.observation_count) + 1
        self.observation_counts[track_id] = count
        track.observation_count = count

        if count >= self.gates.confirmation_threshold and track.state != TrackState.CONFIRMED:
            track.state = TrackState.CONFIRMED
            self.stats["tracks_confirmed"] += 1
            logger.info(f"Track {track_id} confirmed after {count} observations")
        elif track.state == TrackState.PREDICTED:
            track.state = TrackState.OBSERVED

        if ship is not None:
            track.ship = ship

        self.stats["tracks_updated"] += 1
        self._publish(TrackEventKind.UPDATED, track, previous_track_id=previous_track_id)
        return track

    def _rekey_track(self, old_id: str, new_id: str):
        """Move a track to a new id, keeping its observation count"""
        track = self.tracks.pop(old_id)
        count = self.observation_counts.pop(old_id, track.observation_count)

        track.track_id = new_id
        self.tracks[new_id] = track
        self.observation_counts[new_id] = count
        self.stats["tracks_rekeyed"] += 1

        logger.info(f"Track {old_id} claimed by AIS, re-keyed to {new_id}")

    def _publish(self, kind: TrackEventKind, track: Track, previous_track_id: Optional[str] = None):
        self.events.publish(TrackEvent(
            kind=kind,
            track_id=track.track_id,
            track=track.model_copy(deep=True),
            previous_track_id=previous_track_id,
            timestamp=track.updated_at,
        ))

    # ============ Maintenance ============

    def remove_inactive_tracks(self, now: Optional[datetime] = None) -> List[str]:
        """
        Remove every track not updated within the inactivity timeout.

        Emits one REMOVED event per track. Safe to call on any cadence.

        Returns:
            Ids of the removed tracks
        """
        with self._lock:
            now = _utc(now) if now else _utc(self._clock())
            expired = [
                track_id for track_id, track in self.tracks.items()
                if (now - track.updated_at).total_seconds() > self.gates.inactivity_timeout_s
            ]

            for track_id in expired:
                track = self.tracks.pop(track_id)
                self.observation_counts.pop(track_id, None)
                self.stats["tracks_removed"] += 1
                idle = (now - track.updated_at).total_seconds()
                logger.info(f"Removed track {track_id} (no updates for {idle:.0f}s)")
                self.events.publish(TrackEvent(
                    kind=TrackEventKind.REMOVED, track_id=track_id, timestamp=now
                ))

            return expired

    sweep = remove_inactive_tracks

    def clear_all_tracks(self) -> List[str]:
        """Drop every track, emitting a REMOVED event for each"""
        with self._lock:
            removed = list(self.tracks.keys())
            now = _utc(self._clock())
            for track_id in removed:
                self.events.publish(TrackEvent(
                    kind=TrackEventKind.REMOVED, track_id=track_id, timestamp=now
                ))
            self.tracks.clear()
            self.observation_counts.clear()
            self.stats["tracks_removed"] += len(removed)
            return removed

    # ============ Queries ============

    def get_active_tracks(self) -> List[Track]:
        with self._lock:
            return [track.model_copy(deep=True) for track in self.tracks.values()]

    def get_tracks_by_sensor(self, sensor_kind: SensorKind) -> List[Track]:
        with self._lock:
            return [
                track.model_copy(deep=True) for track in self.tracks.values()
                if track.has_sensor(sensor_kind)
            ]

    def get_confirmed_tracks(self) -> List[Track]:
        with self._lock:
            return [
                track.model_copy(deep=True) for track in self.tracks.values()
                if track.state == TrackState.CONFIRMED
            ]

    def get_tracks_by_confidence(self, minimum: IdentityConfidence) -> List[Track]:
        with self._lock:
            return [
                track.model_copy(deep=True) for track in self.tracks.values()
                if track.identity_confidence >= minimum
            ]

    def get_track(self, track_id: str) -> Optional[Track]:
        with self._lock:
            track = self.tracks.get(track_id)
            return track.model_copy(deep=True) if track else None

    def get_track_count(self) -> int:
        with self._lock:
            return len(self.tracks)

    def get_stats(self) -> dict:
        """Get track manager statistics"""
        with self._lock:
            confirmed = sum(1 for t in self.tracks.values() if t.state == TrackState.CONFIRMED)
            return {
                **self.stats,
                "detections": dict(self.stats["detections"]),
                "active_tracks": len(self.tracks),
                "confirmed_tracks": confirmed,
            }

    # ============ Helpers ============

    def _locate(self, detection: Detection) -> Tuple[np.ndarray, float, float]:
        """Detection position as (local ENU meters, latitude, longitude)"""
        if detection.is_geodetic:
            if self.reference is None:
                self.reference = GeoPoint(detection.latitude, detection.longitude)
                logger.info(
                    f"Local frame origin set to ({detection.latitude:.5f}, {detection.longitude:.5f})"
                )
            position = geodetic_to_enu(
                self.reference.latitude, self.reference.longitude,
                detection.latitude, detection.longitude,
            )
            return position, detection.latitude, detection.longitude

        if self.reference is None:
            self.reference = GeoPoint(0.0, 0.0)
            logger.warning("Local detection before any geodetic fix - origin defaults to (0, 0)")

        position = np.asarray(detection.position, dtype=np.float64)
        lat, lon = enu_to_geodetic(
            self.reference.latitude, self.reference.longitude, position[0], position[1]
        )
        return position, lat, lon

    def _velocity(self, sensor_kind: SensorKind, detection: Detection) -> np.ndarray:
        if detection.velocity is not None:
            return np.asarray(detection.velocity, dtype=np.float64)
        if sensor_kind == SensorKind.AIS and detection.ship is not None:
            return velocity_from_course(detection.ship.speed, detection.ship.course)
        return np.zeros(3)

    def _build_detection(
        self,
        sensor_kind: SensorKind,
        position: Position,
        velocity: Optional[Vector3],
        timestamp: Optional[datetime],
    ) -> Detection:
        if isinstance(position, GeoPoint):
            return Detection(
                sensor_kind=sensor_kind,
                latitude=position.latitude,
                longitude=position.longitude,
                velocity=velocity,
                timestamp=timestamp,
            )
        return Detection(
            sensor_kind=sensor_kind,
            position=tuple(position),
            velocity=velocity,
            timestamp=timestamp,
        )

    def _generate_track_id(self, sensor_kind: SensorKind) -> str:
        while True:
            track_id = f"{sensor_kind.name}_{uuid.uuid4().hex[:8].upper()}"
            if track_id not in self.tracks:
                return track_id
