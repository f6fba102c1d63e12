"""
Fusion System Configuration

All settings loaded from environment variables (prefix FUSION_) or a
.env file, with sensible defaults.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .fusion.config import CorrelationGates


class FusionSettings(BaseSettings):
    """Fusion core configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FUSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Correlation
    correlation_distance_m: float = Field(
        default=500.0,
        gt=0,
        description="Max distance between a detection and a track to correlate (meters)"
    )
    correlation_time_s: float = Field(
        default=30.0,
        gt=0,
        description="Max time since a track's last update to correlate (seconds)"
    )

    # Track lifecycle
    inactivity_timeout_s: float = Field(
        default=120.0,
        gt=0,
        description="Tracks without updates for this long are removed (seconds)"
    )
    confirmation_threshold: int = Field(
        default=3,
        ge=1,
        description="Observations needed before a track is Confirmed"
    )
    sweep_interval_s: float = Field(
        default=10.0,
        gt=0,
        description="Interval between inactivity sweeps (seconds)"
    )

    # Local metric frame origin (radar/EOIR detections in meters are relative to it)
    reference_latitude: Optional[float] = Field(
        default=None,
        description="Origin latitude; defaults to the first geodetic detection"
    )
    reference_longitude: Optional[float] = Field(
        default=None,
        description="Origin longitude; defaults to the first geodetic detection"
    )

    # Image / camera
    image_width: int = Field(default=1920, gt=0, description="Image width (pixels)")
    image_height: int = Field(default=1080, gt=0, description="Image height (pixels)")
    fov_horizontal: float = Field(default=30.0, description="Horizontal FOV (degrees)")
    fov_vertical: float = Field(default=17.0, description="Vertical FOV (degrees)")

    # Host loop
    rate_hz: float = Field(default=2.0, gt=0, description="Fusion loop rate (Hz)")
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for publishing track events (disabled if unset)"
    )

    def correlation_gates(self) -> CorrelationGates:
        return CorrelationGates(
            max_distance_m=self.correlation_distance_m,
            max_time_delta_s=self.correlation_time_s,
            inactivity_timeout_s=self.inactivity_timeout_s,
            confirmation_threshold=self.confirmation_threshold,
            sweep_interval_s=self.sweep_interval_s,
        )


def get_settings() -> FusionSettings:
    """Load settings from the environment"""
    return FusionSettings()
