"""
KLV Telemetry Generator

Encodes sensor metadata into tag/length/value frames for testing and
simulation. Compatible with klv_parser.py

Frame layout matches the parser's expected format:
- Optional 16-byte universal key + BER length envelope
- Local set items: tag (1 byte), length (1 byte), big-endian value
"""

from datetime import datetime
from typing import Dict, Optional, Union

from ..parsers.klv_parser import (
    TAG_TABLE,
    TIMESTAMP_TAG,
    KLVFrameMetadata,
    TagSpec,
)
from ..projection.projector import GeodeticPose

# UAS Datalink local set universal key
UAS_LOCAL_SET_KEY = bytes.fromhex("060E2B34020B01010E01030101000000")

# Bytes per value when no explicit width is requested
DEFAULT_WIDTHS: Dict[str, int] = {
    "sensor_latitude": 4,
    "sensor_longitude": 4,
    "frame_center_latitude": 4,
    "frame_center_longitude": 4,
}
DEFAULT_WIDTH = 2


def encode_ber_length(length: int) -> bytes:
    """BER short form below 128, long form otherwise"""
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def unscale_unsigned(value: float, min_value: float, max_value: float, width: int) -> bytes:
    """Inverse of klv_parser.scale_unsigned"""
    max_int = (1 << (8 * width)) - 1
    fraction = (value - min_value) / (max_value - min_value)
    raw = int(round(fraction * max_int))
    raw = max(0, min(max_int, raw))
    return raw.to_bytes(width, "big", signed=False)


def unscale_signed(value: float, min_value: float, max_value: float, width: int) -> bytes:
    """Inverse of klv_parser.scale_signed"""
    span = (1 << (8 * width)) - 2
    limit = (1 << (8 * width - 1)) - 1
    mid = (max_value + min_value) / 2.0
    raw = int(round((value - mid) * span / (max_value - min_value)))
    raw = max(-limit, min(limit, raw))
    return raw.to_bytes(width, "big", signed=True)


class KLVGenerator:
    """
    Generate KLV telemetry frames.

    Encodes KLVFrameMetadata (or a pose) item by item using the same tag
    table the parser decodes with.
    """

    def __init__(self, tag_table: Optional[Dict[int, TagSpec]] = None, envelope: bool = True):
        self.tag_table = dict(TAG_TABLE if tag_table is None else tag_table)
        self.field_tags = {spec.field: tag for tag, spec in self.tag_table.items()}
        self.envelope = envelope
        self.frames_generated = 0
        self.bytes_generated = 0

    def encode_item(self, tag: int, value: Union[int, float], width: Optional[int] = None) -> bytes:
        """Encode a single local set item"""
        if tag == TIMESTAMP_TAG:
            body = int(value).to_bytes(width or 8, "big", signed=False)
            return bytes([tag, len(body)]) + body

        spec = self.tag_table[tag]
        width = width or DEFAULT_WIDTHS.get(spec.field, DEFAULT_WIDTH)
        if spec.signed:
            body = unscale_signed(value, spec.min_value, spec.max_value, width)
        else:
            body = unscale_unsigned(value, spec.min_value, spec.max_value, width)
        return bytes([tag, len(body)]) + body

    def wrap(self, payload: bytes) -> bytes:
        """Add the universal key + BER length envelope"""
        return UAS_LOCAL_SET_KEY + encode_ber_length(len(payload)) + payload

    def encode_metadata(self, metadata: KLVFrameMetadata, envelope: Optional[bool] = None) -> bytes:
        """Encode every populated field of a metadata record"""
        items = []
        if metadata.unix_timestamp is not None:
            items.append(self.encode_item(TIMESTAMP_TAG, metadata.unix_timestamp))

        for tag, spec in sorted(self.tag_table.items()):
            value = getattr(metadata, spec.field, None)
            if value is not None:
                items.append(self.encode_item(tag, value))

        payload = b"".join(items)
        use_envelope = self.envelope if envelope is None else envelope
        frame = self.wrap(payload) if use_envelope else payload

        self.frames_generated += 1
        self.bytes_generated += len(frame)
        return frame

    def encode_pose(
        self,
        pose: GeodeticPose,
        timestamp: Optional[datetime] = None,
        envelope: Optional[bool] = None,
    ) -> bytes:
        """Encode a projector pose as a telemetry frame"""
        metadata = KLVFrameMetadata(
            unix_timestamp=int(timestamp.timestamp() * 1e6) if timestamp else None,
            sensor_latitude=pose.latitude,
            sensor_longitude=pose.longitude,
            sensor_altitude=pose.altitude,
            fov_horizontal=pose.fov_horizontal,
            fov_vertical=pose.fov_vertical,
            azimuth=pose.azimuth % 360.0,
            elevation=pose.elevation,
            roll=pose.roll,
            frame_center_latitude=pose.frame_center_latitude,
            frame_center_longitude=pose.frame_center_longitude,
            frame_center_elevation=pose.frame_center_elevation if pose.has_frame_center else None,
        )
        return self.encode_metadata(metadata, envelope=envelope)

    def get_stats(self) -> Dict:
        """Get generator statistics"""
        return {
            "frames_generated": self.frames_generated,
            "bytes_generated": self.bytes_generated,
        }
