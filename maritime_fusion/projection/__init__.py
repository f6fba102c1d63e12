"""
Projection Module

Places geodetic targets on the image plane of an EO/IR sensor.
"""

from .projector import (
    CULLED_COORD,
    CULLED_POINT,
    GeodeticPose,
    GeoPoint,
    ImagePoint,
    is_on_screen,
    project,
    project_with_frame_center,
    project_with_orientation,
)

__all__ = [
    "CULLED_COORD",
    "CULLED_POINT",
    "GeodeticPose",
    "GeoPoint",
    "ImagePoint",
    "is_on_screen",
    "project",
    "project_with_frame_center",
    "project_with_orientation",
]
