"""
Fusion Schema - Data models for fused tracks

Defines the Track model that combines detections from AIS, radar and
EO/IR into a single vessel track, and the lifecycle events published
when tracks change.
"""

from datetime import datetime, timezone
from enum import Enum, Flag, IntEnum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from ..schema import Ship

Vector3 = Tuple[float, float, float]


class SensorKind(Flag):
    """Contributing sensors, combinable as bit flags"""
    NONE = 0
    AIS = 1
    RADAR = 2
    EOIR = 4

    @property
    def carries_identity(self) -> bool:
        return self == SensorKind.AIS

    @property
    def members(self) -> List["SensorKind"]:
        return [kind for kind in (SensorKind.AIS, SensorKind.RADAR, SensorKind.EOIR) if kind & self]

    @property
    def label(self) -> str:
        return ",".join(kind.name for kind in self.members)


class IdentityConfidence(IntEnum):
    """How sure we are of a track's identity (ordered)"""
    NONE = 0
    LOW = 1       # Single non-AIS sensor
    MEDIUM = 2    # AIS alone
    HIGH = 3      # Radar + EO/IR
    STRONG = 4    # AIS + at least one other sensor


class TrackState(str, Enum):
    """Track lifecycle status"""
    PREDICTED = "predicted"    # Single observation
    OBSERVED = "observed"      # Re-observed, below confirmation threshold
    CONFIRMED = "confirmed"    # Reached confirmation threshold


def determine_identity_confidence(sources: SensorKind) -> IdentityConfidence:
    """Identity confidence from the set of contributing sensors"""
    members = sources.members
    if not members:
        return IdentityConfidence.NONE

    has_ais = bool(sources & SensorKind.AIS)
    if len(members) == 1:
        return IdentityConfidence.MEDIUM if has_ais else IdentityConfidence.LOW
    return IdentityConfidence.STRONG if has_ais else IdentityConfidence.HIGH


class Detection(BaseModel):
    """
    One sensor observation.

    Position is either geodetic (latitude/longitude) or local-metric
    (east, north, up meters from the tracker's reference origin).
    """

    sensor_kind: Optional[SensorKind] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    position: Optional[Vector3] = None
    velocity: Optional[Vector3] = None     # east, north, up (m/s)
    timestamp: Optional[datetime] = None
    ship: Optional[Ship] = None            # Identity payload (AIS only)

    @model_validator(mode="after")
    def _require_position(self):
        has_geo = self.latitude is not None and self.longitude is not None
        if not has_geo and self.position is None:
            raise ValueError("detection needs latitude/longitude or a local position")
        return self

    @property
    def is_geodetic(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_ship(cls, ship: Ship, timestamp: Optional[datetime] = None) -> "Detection":
        return cls(
            sensor_kind=SensorKind.AIS,
            latitude=ship.lat,
            longitude=ship.lon,
            timestamp=timestamp,
            ship=ship,
        )


class Track(BaseModel):
    """
    Fused vessel track.

    This is the single source of truth for a physical vessel,
    regardless of which sensors detected it.
    """

    track_id: str
    position: Vector3                       # local ENU meters
    latitude: float
    longitude: float
    velocity: Vector3 = (0.0, 0.0, 0.0)
    sources: SensorKind = SensorKind.NONE
    identity_confidence: IdentityConfidence = IdentityConfidence.NONE
    state: TrackState = TrackState.PREDICTED
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    observation_count: int = 0
    ship: Optional[Ship] = None

    def has_sensor(self, kind: SensorKind) -> bool:
        return bool(self.sources & kind)

    @property
    def has_multiple_sensors(self) -> bool:
        return len(self.sources.members) > 1

    @property
    def display_name(self) -> str:
        return self.ship.display_name if self.ship else "Unknown"

    def to_redis_dict(self) -> dict:
        """Convert to Redis hash format (all string values)"""
        return {
            "track_id": self.track_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "state": self.state.value,
            "latitude": str(self.latitude),
            "longitude": str(self.longitude),
            "east_m": str(self.position[0]),
            "north_m": str(self.position[1]),
            "velocity_east_ms": str(self.velocity[0]),
            "velocity_north_ms": str(self.velocity[1]),
            "sources": self.sources.label,
            "identity_confidence": self.identity_confidence.name,
            "observation_count": str(self.observation_count),
            "mmsi": self.ship.mmsi if self.ship else "",
            "imo": (self.ship.imo or "") if self.ship else "",
            "ship_name": (self.ship.name or "") if self.ship else "",
        }


class TrackEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


class TrackEvent(BaseModel):
    """Lifecycle notification for the rendering layer"""

    kind: TrackEventKind
    track_id: str
    track: Optional[Track] = None               # Snapshot; None for REMOVED
    previous_track_id: Optional[str] = None     # Set when a track was re-keyed
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_redis_dict(self) -> dict:
        data = {
            "event": self.kind.value,
            "track_id": self.track_id,
            "previous_track_id": self.previous_track_id or "",
            "timestamp": self.timestamp.isoformat(),
        }
        if self.track is not None:
            data.update({
                "latitude": str(self.track.latitude),
                "longitude": str(self.track.longitude),
                "sources": self.track.sources.label,
                "identity_confidence": self.track.identity_confidence.name,
                "state": self.track.state.value,
            })
        return data
