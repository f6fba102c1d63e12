"""
Track API Endpoints

FastAPI router over a running fusion ingester:
- GET /api/tracks - Active fused tracks (filterable)
- GET /api/tracks/{track_id} - Single track
- POST /api/project - Project targets / tracks into the image
- POST /api/klv/decode - Decode a telemetry buffer
- GET /api/fusion/health - Health check
"""

import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from maritime_fusion.config import FusionSettings
from maritime_fusion.fusion.fusion_ingester import FusionIngester
from maritime_fusion.fusion.schema import IdentityConfidence, SensorKind, Track, TrackState
from maritime_fusion.parsers.klv_parser import KLVParser
from maritime_fusion.projection.overlay_sync import project_tracks
from maritime_fusion.projection.projector import GeodeticPose, GeoPoint, is_on_screen, project

logger = logging.getLogger(__name__)


# ============ Request/Response Models ============

class PoseModel(BaseModel):
    """Sensor pose, angles in degrees (elevation 0 = nadir, 90 = horizon)"""
    latitude: float
    longitude: float
    altitude: float = 0.0
    azimuth: float = 0.0
    elevation: float = 90.0
    roll: float = 0.0
    fov_horizontal: float
    fov_vertical: float
    frame_center_latitude: Optional[float] = None
    frame_center_longitude: Optional[float] = None
    frame_center_elevation: float = 0.0

    def to_pose(self) -> GeodeticPose:
        return GeodeticPose(**self.model_dump())


class TargetModel(BaseModel):
    latitude: float
    longitude: float
    altitude: float = 0.0


class ProjectRequest(BaseModel):
    """Either a pose or a hex telemetry frame supplies the camera"""
    pose: Optional[PoseModel] = None
    klv_hex: Optional[str] = Field(default=None, description="Telemetry frame as hex")
    targets: List[TargetModel] = Field(default_factory=list)
    include_tracks: bool = Field(default=False, description="Also project active tracks")
    image_width: Optional[int] = Field(default=None, gt=0)
    image_height: Optional[int] = Field(default=None, gt=0)


class DecodeRequest(BaseModel):
    data_hex: str = Field(..., description="Telemetry buffer as hex")


def _decode_hex(value: str) -> bytes:
    try:
        return binascii.unhexlify(value.strip().replace(" ", ""))
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="data is not valid hex")


def track_to_dict(track: Track) -> Dict[str, Any]:
    return {
        "track_id": track.track_id,
        "latitude": track.latitude,
        "longitude": track.longitude,
        "position": list(track.position),
        "velocity": list(track.velocity),
        "sources": [kind.name for kind in track.sources.members],
        "identity_confidence": track.identity_confidence.name,
        "state": track.state.value,
        "observation_count": track.observation_count,
        "created_at": track.created_at.isoformat(),
        "updated_at": track.updated_at.isoformat(),
        "mmsi": track.ship.mmsi if track.ship else None,
        "name": track.ship.name if track.ship else None,
    }


def create_router(ingester: FusionIngester, settings: Optional[FusionSettings] = None) -> APIRouter:
    """Build the track router bound to one ingester"""
    settings = settings or FusionSettings()
    track_manager = ingester.track_manager
    parser = KLVParser()
    router = APIRouter(prefix="/api", tags=["Fusion"])

    @router.get("/fusion/health")
    async def health_check():
        """Health check endpoint for the fusion core."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "fusion": ingester.get_status(),
            "config": {
                "redis_configured": ingester.publisher is not None,
                "correlation_distance_m": track_manager.gates.max_distance_m,
                "correlation_time_s": track_manager.gates.max_time_delta_s,
                "inactivity_timeout_s": track_manager.gates.inactivity_timeout_s,
                "confirmation_threshold": track_manager.gates.confirmation_threshold,
            },
        }

    @router.get("/tracks")
    async def list_tracks(
        sensor: Optional[str] = Query(default=None, description="AIS, RADAR or EOIR"),
        confirmed: bool = Query(default=False, description="Only confirmed tracks"),
        min_confidence: Optional[str] = Query(default=None, description="LOW, MEDIUM, HIGH or STRONG"),
    ):
        """Active fused tracks."""
        if sensor is not None:
            try:
                tracks = track_manager.get_tracks_by_sensor(SensorKind[sensor.upper()])
            except KeyError:
                raise HTTPException(status_code=400, detail=f"Unknown sensor: {sensor}")
        elif confirmed:
            tracks = track_manager.get_confirmed_tracks()
        else:
            tracks = track_manager.get_active_tracks()

        if sensor is not None and confirmed:
            tracks = [t for t in tracks if t.state == TrackState.CONFIRMED]

        if min_confidence is not None:
            try:
                minimum = IdentityConfidence[min_confidence.upper()]
            except KeyError:
                raise HTTPException(status_code=400, detail=f"Unknown confidence: {min_confidence}")
            tracks = [t for t in tracks if t.identity_confidence >= minimum]

        return {
            "tracks": [track_to_dict(t) for t in tracks],
            "count": len(tracks),
        }

    @router.get("/tracks/{track_id}")
    async def get_track(track_id: str):
        """Single track by id."""
        track = track_manager.get_track(track_id)
        if track is None:
            raise HTTPException(status_code=404, detail=f"Track {track_id} not found")
        return track_to_dict(track)

    @router.post("/project")
    async def project_targets(request: ProjectRequest):
        """
        Project targets into pixel coordinates.

        Culled targets come back at the (-10000, -10000) sentinel with
        on_screen false; output order matches the request.
        """
        if request.pose is not None:
            pose = request.pose.to_pose()
        elif request.klv_hex is not None:
            metadata = parser.parse(_decode_hex(request.klv_hex))
            if metadata is None:
                raise HTTPException(status_code=422, detail="Telemetry frame has no usable metadata")
            pose = metadata.to_pose()
        else:
            raise HTTPException(status_code=422, detail="Either pose or klv_hex is required")

        width = request.image_width or settings.image_width
        height = request.image_height or settings.image_height

        targets = [GeoPoint(t.latitude, t.longitude, t.altitude) for t in request.targets]
        points = project(pose, width, height, targets)

        response = {
            "image_width": width,
            "image_height": height,
            "points": [
                {"x": p.x, "y": p.y, "on_screen": is_on_screen(p, width, height)}
                for p in points
            ],
        }
        if request.include_tracks:
            overlay = project_tracks(track_manager.get_active_tracks(), pose, width, height)
            response["tracks"] = [o.to_dict() for o in overlay]
        return response

    @router.post("/klv/decode")
    async def decode_klv(request: DecodeRequest):
        """Decode a telemetry buffer; partial results are returned with their status."""
        result = parser.decode(_decode_hex(request.data_hex))
        return {
            "status": result.status.value,
            "metadata": result.metadata.to_dict() if result.metadata else None,
            "tags_seen": result.tags_seen,
            "items_read": result.items_read,
            "error": result.error,
        }

    return router
