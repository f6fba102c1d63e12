"""
Sensor Feed Schema
Pydantic models for the upstream AIS and EO/IR metadata feeds
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .projection.projector import GeodeticPose, GeoPoint


class Ship(BaseModel):
    """One AIS position/identity report"""

    name: Optional[str] = None
    mmsi: str
    imo: Optional[str] = None
    lat: float
    lon: float
    course: float = 0.0   # degrees, 0 = North
    speed: float = 0.0    # knots

    @field_validator("mmsi", "imo", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        # Feeds send MMSI/IMO both as numbers and strings
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def track_id(self) -> str:
        """Deterministic track key for this vessel"""
        return f"AIS_{self.mmsi}"

    @property
    def display_name(self) -> str:
        return self.name or "Unknown Vessel"

    def to_geo_point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lon)


class AISData(BaseModel):
    """A batch of AIS reports"""

    timestamp: Optional[datetime] = None
    ships: List[Ship] = Field(default_factory=list)


class GeoPosition(BaseModel):
    lat: float
    lon: float


class Orientation(BaseModel):
    azimuth: float = 0.0
    elevation: float = 90.0
    roll: float = 0.0


class FieldOfView(BaseModel):
    horizontal: float
    vertical: float


class EOIRMetadata(BaseModel):
    """Camera metadata delivered as JSON instead of KLV"""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: Optional[datetime] = None
    camera_position: GeoPosition = Field(alias="cameraPosition")
    camera_orientation: Orientation = Field(default_factory=Orientation, alias="cameraOrientation")
    fov: FieldOfView
    altitude: float = 0.0

    def to_pose(self) -> GeodeticPose:
        return GeodeticPose(
            latitude=self.camera_position.lat,
            longitude=self.camera_position.lon,
            altitude=self.altitude,
            azimuth=self.camera_orientation.azimuth,
            elevation=self.camera_orientation.elevation,
            roll=self.camera_orientation.roll,
            fov_horizontal=self.fov.horizontal,
            fov_vertical=self.fov.vertical,
        )
