"""
Geodetic Projector

Projects target latitude/longitude onto the image plane of a moving
EO/IR sensor using a local ENU frame and a pinhole camera model.

Pipeline per target:
    LLA -> ENU offset from the sensor (equirectangular)
        -> camera frame (rotation rows: right, up, forward)
        -> normalized image coords (divide by depth * tan(FOV/2))
        -> pixels (origin top-left)

Targets behind the camera or outside the field of view come back as
CULLED_POINT so the output stays index-aligned with the input.
"""

import math
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .geometry import WORLD_UP, enu_offsets, normalize

CULLED_COORD = -10000.0


class ImagePoint(NamedTuple):
    """Pixel coordinate, origin at the top-left of the image."""
    x: float
    y: float

    @property
    def is_culled(self) -> bool:
        return self.x == CULLED_COORD and self.y == CULLED_COORD


CULLED_POINT = ImagePoint(CULLED_COORD, CULLED_COORD)


@dataclass(frozen=True)
class GeoPoint:
    """Target position. Altitude defaults to sea level."""
    latitude: float
    longitude: float
    altitude: float = 0.0


@dataclass(frozen=True)
class GeodeticPose:
    """
    Sensor pose for a single telemetry frame.

    Angles are in degrees. Azimuth is a compass bearing (0 = North).
    Elevation follows the telemetry convention: 0 looks straight down,
    90 looks at the horizon. Positive roll dips the right side of the image.
    """
    latitude: float
    longitude: float
    altitude: float = 0.0
    azimuth: float = 0.0
    elevation: float = 90.0
    roll: float = 0.0
    fov_horizontal: float = 0.0
    fov_vertical: float = 0.0
    frame_center_latitude: Optional[float] = None
    frame_center_longitude: Optional[float] = None
    frame_center_elevation: float = 0.0

    @property
    def has_frame_center(self) -> bool:
        return self.frame_center_latitude is not None and self.frame_center_longitude is not None

    @property
    def pitch_from_horizon(self) -> float:
        return self.elevation - 90.0


Target = Union[GeoPoint, Tuple[float, float]]


def _target_arrays(targets: Sequence[Target]) -> Tuple[list, list, list]:
    lats, lons, alts = [], [], []
    for target in targets:
        if isinstance(target, tuple):
            lats.append(target[0])
            lons.append(target[1])
            alts.append(target[2] if len(target) > 2 else 0.0)
        else:
            lats.append(target.latitude)
            lons.append(target.longitude)
            alts.append(getattr(target, "altitude", 0.0) or 0.0)
    return lats, lons, alts


def camera_basis(forward: np.ndarray, heading_deg: float = 0.0) -> np.ndarray:
    """
    Build the ENU -> camera rotation for a boresight direction.

    Rows are (right, up, forward) with right = up x forward and
    up = forward x right. When looking straight up or down the right axis
    is taken perpendicular to heading_deg in the horizontal plane, with
    the heading at the top of the image.
    """
    right = normalize(np.cross(WORLD_UP, forward))
    if not right.any():
        heading = math.radians(heading_deg)
        right = np.array([-math.cos(heading), math.sin(heading), 0.0])
    cam_up = normalize(np.cross(forward, right))
    return np.vstack([right, cam_up, forward])


def orientation_rotation(pose: GeodeticPose) -> np.ndarray:
    """Rotation from azimuth/elevation/roll."""
    azimuth = math.radians(pose.azimuth)
    pitch = math.radians(pose.pitch_from_horizon)
    forward = np.array([
        math.sin(azimuth) * math.cos(pitch),
        math.cos(azimuth) * math.cos(pitch),
        math.sin(pitch),
    ])
    basis = camera_basis(forward, pose.azimuth)

    if pose.roll:
        roll = math.radians(pose.roll)
        right, cam_up = basis[0], basis[1]
        basis = np.vstack([
            math.cos(roll) * right - math.sin(roll) * cam_up,
            math.sin(roll) * right + math.cos(roll) * cam_up,
            basis[2],
        ])
    return basis


def frame_center_rotation(pose: GeodeticPose) -> np.ndarray:
    """
    Rotation that points the boresight at the declared frame center.

    Falls back to the orientation angles if the frame center coincides
    with the sensor position.
    """
    to_center = enu_offsets(
        pose.latitude, pose.longitude, pose.altitude,
        [pose.frame_center_latitude], [pose.frame_center_longitude],
        pose.frame_center_elevation,
    )[0]
    forward = normalize(to_center)
    if not forward.any():
        return orientation_rotation(pose)
    return camera_basis(forward, pose.azimuth)


def _valid_fov(fov_deg: float) -> bool:
    return math.isfinite(fov_deg) and 0.0 < fov_deg < 180.0


def _project_with_rotation(
    pose: GeodeticPose,
    rotation: np.ndarray,
    image_width: int,
    image_height: int,
    targets: Sequence[Target],
) -> List[ImagePoint]:
    count = len(targets)
    if count == 0:
        return []

    if (
        not _valid_fov(pose.fov_horizontal)
        or not _valid_fov(pose.fov_vertical)
        or image_width <= 0
        or image_height <= 0
    ):
        return [CULLED_POINT] * count

    lats, lons, alts = _target_arrays(targets)
    enu = enu_offsets(pose.latitude, pose.longitude, pose.altitude, lats, lons, alts)

    # v_cam = R * v_enu for every target
    cam = enu @ rotation.T
    x_cam, y_cam, z_cam = cam[:, 0], cam[:, 1], cam[:, 2]

    tan_half_h = math.tan(0.5 * math.radians(pose.fov_horizontal))
    tan_half_v = math.tan(0.5 * math.radians(pose.fov_vertical))

    with np.errstate(divide="ignore", invalid="ignore"):
        x_norm = x_cam / (z_cam * tan_half_h)
        y_norm = y_cam / (z_cam * tan_half_v)

    visible = (
        (z_cam > 0.0)
        & np.isfinite(x_norm)
        & np.isfinite(y_norm)
        & (np.abs(x_norm) <= 1.0)
        & (np.abs(y_norm) <= 1.0)
    )

    u = (x_norm * 0.5 + 0.5) * image_width
    v = (1.0 - (y_norm * 0.5 + 0.5)) * image_height

    return [
        ImagePoint(float(u[i]), float(v[i])) if visible[i] else CULLED_POINT
        for i in range(count)
    ]


def project_with_orientation(
    pose: GeodeticPose, image_width: int, image_height: int, targets: Sequence[Target]
) -> List[ImagePoint]:
    """Project using the azimuth/elevation/roll angles only."""
    if not targets:
        return []
    return _project_with_rotation(
        pose, orientation_rotation(pose), image_width, image_height, targets
    )


def project_with_frame_center(
    pose: GeodeticPose, image_width: int, image_height: int, targets: Sequence[Target]
) -> List[ImagePoint]:
    """Project with the boresight aimed at the pose's frame center."""
    if not targets:
        return []
    if not pose.has_frame_center:
        return [CULLED_POINT] * len(targets)
    return _project_with_rotation(
        pose, frame_center_rotation(pose), image_width, image_height, targets
    )


def project(
    pose: GeodeticPose, image_width: int, image_height: int, targets: Sequence[Target]
) -> List[ImagePoint]:
    """
    Project geodetic targets into pixel coordinates.

    Uses the frame center when the pose declares one (less sensitive to
    attitude error), otherwise the orientation angles. Pure and
    deterministic; never raises for degenerate input.

    Returns:
        One ImagePoint per target, CULLED_POINT for targets out of view
    """
    if pose.has_frame_center:
        return project_with_frame_center(pose, image_width, image_height, targets)
    return project_with_orientation(pose, image_width, image_height, targets)


def is_on_screen(point: ImagePoint, image_width: int, image_height: int) -> bool:
    """True if the point is a real projection inside the image bounds."""
    if point.is_culled:
        return False
    return 0.0 <= point.x <= image_width and 0.0 <= point.y <= image_height
