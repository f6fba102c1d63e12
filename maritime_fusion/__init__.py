"""
Maritime Fusion Core

Telemetry decoding, geodetic projection and multi-sensor track fusion
for airborne maritime surveillance overlays.
"""

__version__ = "0.1.0"
