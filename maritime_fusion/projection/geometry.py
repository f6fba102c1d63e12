"""
Local tangent-plane geometry.

Equirectangular LLA <-> ENU (East/North/Up) conversion around a reference
point, plus the small vector helpers the projector and the track manager
share. Accurate to a few metres over the tens of kilometres a shipborne or
airborne sensor covers; no ellipsoid model.
"""

import math
from typing import Sequence, Tuple

import numpy as np

# Constants
EARTH_RADIUS_M = 6371000.0
KNOTS_TO_MS = 0.514444
MS_TO_KNOTS = 1.0 / KNOTS_TO_MS

WORLD_UP = np.array([0.0, 0.0, 1.0])


def wrap_degrees(delta: float) -> float:
    """Wrap an angular difference into [-180, 180)."""
    return (delta + 180.0) % 360.0 - 180.0


def enu_offsets(
    ref_lat: float,
    ref_lon: float,
    ref_alt: float,
    latitudes: Sequence[float],
    longitudes: Sequence[float],
    altitudes=0.0,
) -> np.ndarray:
    """
    Convert geodetic points to ENU offsets from a reference point.

    Args:
        ref_lat, ref_lon: Reference latitude/longitude in degrees
        ref_alt: Reference altitude in meters
        latitudes, longitudes: Target coordinates in degrees
        altitudes: Target altitude(s) in meters (scalar or per target)

    Returns:
        (N, 3) float64 array of (east, north, up) in meters
    """
    lat = np.asarray(latitudes, dtype=np.float64)
    lon = np.asarray(longitudes, dtype=np.float64)
    alt = np.broadcast_to(np.asarray(altitudes, dtype=np.float64), lat.shape)

    cos_lat0 = math.cos(math.radians(ref_lat))
    d_lon = (lon - ref_lon + 180.0) % 360.0 - 180.0

    north = np.radians(lat - ref_lat) * EARTH_RADIUS_M
    east = np.radians(d_lon) * EARTH_RADIUS_M * cos_lat0
    up = alt - ref_alt

    return np.stack([east, north, up], axis=-1).reshape(-1, 3)


def geodetic_to_enu(
    ref_lat: float, ref_lon: float, lat: float, lon: float, alt: float = 0.0
) -> np.ndarray:
    """Single-point version of enu_offsets (reference at sea level)."""
    return enu_offsets(ref_lat, ref_lon, 0.0, [lat], [lon], alt)[0]


def enu_to_geodetic(
    ref_lat: float, ref_lon: float, east: float, north: float
) -> Tuple[float, float]:
    """Inverse of the equirectangular projection. Returns (lat, lon)."""
    lat = ref_lat + math.degrees(north / EARTH_RADIUS_M)
    cos_lat0 = max(1e-9, math.cos(math.radians(ref_lat)))
    lon = ref_lon + math.degrees(east / (EARTH_RADIUS_M * cos_lat0))
    return lat, wrap_degrees(lon)


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector, or the zero vector if v has no length."""
    mag = float(np.linalg.norm(v))
    if mag < 1e-9 or not math.isfinite(mag):
        return np.zeros(3)
    return v / mag


def velocity_from_course(speed_knots: float, course_deg: float) -> np.ndarray:
    """ENU velocity (m/s) from speed over ground and course (0 = North)."""
    speed_ms = speed_knots * KNOTS_TO_MS
    course_rad = math.radians(course_deg)
    return np.array([speed_ms * math.sin(course_rad), speed_ms * math.cos(course_rad), 0.0])


def bearing_deg(east: float, north: float) -> float:
    """Compass bearing (0 = North, clockwise) of an ENU offset."""
    return math.degrees(math.atan2(east, north)) % 360.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in meters between two points"""
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))
