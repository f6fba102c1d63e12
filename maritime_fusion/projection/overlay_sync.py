"""
Overlay Sync

Combines an AIS batch (or fused tracks) with a telemetry frame and
produces screen positions for the overlay renderer.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from ..fusion.schema import Track
from ..parsers.klv_parser import KLVFrameMetadata
from ..schema import AISData, EOIRMetadata
from .projector import GeodeticPose, ImagePoint, GeoPoint, is_on_screen, project

logger = logging.getLogger(__name__)

PoseSource = Union[GeodeticPose, KLVFrameMetadata, EOIRMetadata]


@dataclass
class OverlayPoint:
    """One labelled screen position. Culled points keep the sentinel."""
    track_id: str
    label: str
    point: ImagePoint
    on_screen: bool

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "label": self.label,
            "x": self.point.x,
            "y": self.point.y,
            "on_screen": self.on_screen,
        }


def resolve_pose(source: PoseSource) -> GeodeticPose:
    if isinstance(source, GeodeticPose):
        return source
    return source.to_pose()


def sync_overlay(
    ais_data: Optional[AISData],
    metadata: Optional[PoseSource],
    image_width: int,
    image_height: int,
) -> List[OverlayPoint]:
    """
    Project every ship in an AIS batch through one frame's pose.

    The result is index-aligned with ais_data.ships. Missing AIS data or
    metadata yields an empty list.
    """
    if ais_data is None or not ais_data.ships or metadata is None:
        return []

    pose = resolve_pose(metadata)
    points = project(pose, image_width, image_height, [ship.to_geo_point() for ship in ais_data.ships])

    overlay = [
        OverlayPoint(
            track_id=ship.track_id,
            label=ship.display_name,
            point=point,
            on_screen=is_on_screen(point, image_width, image_height),
        )
        for ship, point in zip(ais_data.ships, points)
    ]
    logger.debug(
        f"Overlay: {sum(p.on_screen for p in overlay)}/{len(overlay)} ships on screen"
    )
    return overlay


def project_tracks(
    tracks: Sequence[Track],
    metadata: Optional[PoseSource],
    image_width: int,
    image_height: int,
) -> List[OverlayPoint]:
    """Project fused tracks, index-aligned with the input"""
    if not tracks or metadata is None:
        return []

    pose = resolve_pose(metadata)
    points = project(
        pose, image_width, image_height,
        [GeoPoint(track.latitude, track.longitude) for track in tracks],
    )
    return [
        OverlayPoint(
            track_id=track.track_id,
            label=track.display_name,
            point=point,
            on_screen=is_on_screen(point, image_width, image_height),
        )
        for track, point in zip(tracks, points)
    ]
