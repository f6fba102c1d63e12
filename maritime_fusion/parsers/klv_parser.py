"""
KLV Telemetry Metadata Parser

Parses the platform/sensor metadata carried alongside EO/IR video into a
sensor pose the projector can consume.

Wire format:
=============

Optional envelope (MISB-style universal set):
- Bytes 0-15:  16-byte universal key, starting 06 0E 2B 34
- BER length:  short form (high bit 0) = length itself,
               long form (high bit 1) = low 7 bits count the big-endian
               length bytes that follow
- Payload:     local set, clamped to the remaining buffer

Local set items (repeated):
- Byte 0:      tag (uint8)
- Byte 1:      length L (uint8)
- Bytes 2..:   L value bytes, big-endian

Numeric values are integers linearly mapped onto each tag's domain.
Latitude/longitude tags are two's-complement signed, everything else
unsigned. The timestamp tag is an unscaled uint64 (microseconds since epoch).

The parser never raises across decode(): malformed buffers return whatever
was decoded before the fault.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from ..projection.projector import GeodeticPose

logger = logging.getLogger(__name__)

UNIVERSAL_KEY_PREFIX = b"\x06\x0e\x2b\x34"
UNIVERSAL_KEY_LENGTH = 16

TIMESTAMP_TAG = 2


class KLVError(ValueError):
    """Base class for telemetry decoding faults"""


class MalformedKLVError(KLVError):
    """Buffer too short or a declared length overruns the buffer"""


class NoRecognizedDataError(KLVError):
    """Structurally valid stream with no known tags - wait for next frame"""


class DecodeStatus(str, Enum):
    """Outcome of decoding one telemetry buffer"""
    OK = "ok"
    PARTIAL = "partial"        # Malformed, but fields recovered before the fault
    MALFORMED = "malformed"    # Malformed, nothing recovered
    NO_DATA = "no_data"        # Valid stream, zero recognized tags


class TagSpec(NamedTuple):
    """Field mapping and numeric domain for one local-set tag"""
    field: str
    min_value: float
    max_value: float
    signed: bool = False


TAG_TABLE: Dict[int, TagSpec] = {
    5: TagSpec("platform_heading", 0.0, 360.0),
    6: TagSpec("platform_pitch", -90.0, 90.0),
    7: TagSpec("platform_roll", -180.0, 180.0),
    13: TagSpec("sensor_latitude", -90.0, 90.0, signed=True),
    14: TagSpec("sensor_longitude", -180.0, 180.0, signed=True),
    15: TagSpec("sensor_altitude", -900.0, 19000.0),
    16: TagSpec("fov_horizontal", 0.0, 180.0),
    17: TagSpec("fov_vertical", 0.0, 180.0),
    18: TagSpec("azimuth", 0.0, 360.0),
    19: TagSpec("elevation", 0.0, 90.0),
    20: TagSpec("roll", -180.0, 180.0),
    23: TagSpec("frame_center_latitude", -90.0, 90.0, signed=True),
    24: TagSpec("frame_center_longitude", -180.0, 180.0, signed=True),
    25: TagSpec("frame_center_elevation", -900.0, 19000.0),
}


@dataclass
class KLVFrameMetadata:
    """Decoded metadata for one video frame. None = tag not present."""
    unix_timestamp: Optional[int] = None
    platform_heading: Optional[float] = None
    platform_pitch: Optional[float] = None
    platform_roll: Optional[float] = None
    sensor_latitude: Optional[float] = None
    sensor_longitude: Optional[float] = None
    sensor_altitude: Optional[float] = None
    fov_horizontal: Optional[float] = None
    fov_vertical: Optional[float] = None
    azimuth: Optional[float] = None
    elevation: Optional[float] = None
    roll: Optional[float] = None
    frame_center_latitude: Optional[float] = None
    frame_center_longitude: Optional[float] = None
    frame_center_elevation: Optional[float] = None

    @property
    def timestamp(self) -> Optional[datetime]:
        """Origin timestamp as UTC datetime (tag value is microseconds)"""
        if self.unix_timestamp is None:
            return None
        try:
            return datetime.fromtimestamp(self.unix_timestamp / 1e6, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    @property
    def has_frame_center(self) -> bool:
        return self.frame_center_latitude is not None and self.frame_center_longitude is not None

    def to_pose(self) -> GeodeticPose:
        """
        Build the projector pose. Missing angles fall back to a level,
        north-looking camera; a missing FOV yields a degenerate pose whose
        projections are all culled.
        """
        def value(v, default=0.0):
            return default if v is None else v

        return GeodeticPose(
            latitude=value(self.sensor_latitude),
            longitude=value(self.sensor_longitude),
            altitude=value(self.sensor_altitude),
            azimuth=value(self.azimuth),
            elevation=value(self.elevation, 90.0),
            roll=value(self.roll),
            fov_horizontal=value(self.fov_horizontal),
            fov_vertical=value(self.fov_vertical),
            frame_center_latitude=self.frame_center_latitude if self.has_frame_center else None,
            frame_center_longitude=self.frame_center_longitude if self.has_frame_center else None,
            frame_center_elevation=value(self.frame_center_elevation),
        )

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class KLVDecodeResult:
    """Decoder outcome: status plus whatever metadata was recovered"""
    status: DecodeStatus
    metadata: Optional[KLVFrameMetadata] = None
    tags_seen: List[int] = field(default_factory=list)
    items_read: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DecodeStatus.OK

    @property
    def has_data(self) -> bool:
        return self.metadata is not None

    def raise_for_status(self):
        """Raise the matching KLVError for callers that prefer exceptions"""
        if self.status == DecodeStatus.NO_DATA:
            raise NoRecognizedDataError("no recognized tags in telemetry buffer")
        if self.status == DecodeStatus.MALFORMED:
            raise MalformedKLVError(self.error or "malformed telemetry buffer")


def read_ber_length(data: bytes, offset: int) -> Tuple[int, int]:
    """
    Read a BER length field.

    Returns: (length, offset just past the length field)
    """
    if offset >= len(data):
        raise MalformedKLVError(f"BER length missing at offset {offset}")

    first = data[offset]
    offset += 1
    if first & 0x80 == 0:
        return first, offset

    num_bytes = first & 0x7F
    if num_bytes == 0 or offset + num_bytes > len(data):
        raise MalformedKLVError(
            f"BER long form declares {num_bytes} length bytes, "
            f"{len(data) - offset} available"
        )
    length = int.from_bytes(data[offset:offset + num_bytes], "big")
    return length, offset + num_bytes


def strip_envelope(data: bytes) -> bytes:
    """Return the local-set payload, removing the universal key envelope if present"""
    if not data.startswith(UNIVERSAL_KEY_PREFIX):
        return data

    if len(data) <= UNIVERSAL_KEY_LENGTH:
        raise MalformedKLVError(f"Universal key truncated: {len(data)} bytes")

    length, offset = read_ber_length(data, UNIVERSAL_KEY_LENGTH)
    remaining = len(data) - offset
    if length > remaining:
        logger.debug(f"KLV envelope declares {length} bytes, {remaining} available - clamping")
    return data[offset:offset + min(length, remaining)]


def iter_items(payload: bytes) -> Iterator[Tuple[int, bytes]]:
    """
    Yield (tag, value) pairs from a local set.

    Stops quietly when fewer than 2 bytes remain; raises MalformedKLVError
    (after yielding every complete item before it) on a length overrun.
    """
    offset = 0
    total = len(payload)

    while total - offset >= 2:
        tag = payload[offset]
        length = payload[offset + 1]
        offset += 2

        if offset + length > total:
            raise MalformedKLVError(
                f"KLV invalid length {length} for tag {tag} at offset {offset - 2} "
                f"({total - offset} bytes remain)"
            )

        yield tag, payload[offset:offset + length]
        offset += length


def scale_unsigned(value: bytes, min_value: float, max_value: float) -> float:
    """Map an unsigned big-endian integer onto [min_value, max_value]"""
    raw = int.from_bytes(value, "big", signed=False)
    max_int = (1 << (8 * len(value))) - 1
    return min_value + (raw / max_int) * (max_value - min_value)


def scale_signed(value: bytes, min_value: float, max_value: float) -> float:
    """
    Map a two's-complement big-endian integer onto [min_value, max_value].

    The symmetric integer range +/-(2^(n-1) - 1) spans the domain, so raw 0
    lands exactly on its midpoint.
    """
    raw = int.from_bytes(value, "big", signed=True)
    span = (1 << (8 * len(value))) - 2
    if span <= 0:
        return (min_value + max_value) / 2.0
    result = (max_value + min_value) / 2.0 + raw * (max_value - min_value) / span
    return max(min_value, min(max_value, result))


def decode_timestamp(value: bytes) -> int:
    """Zero-extended unsigned 64-bit big-endian integer"""
    return int.from_bytes(value[-8:], "big", signed=False)


class KLVParser:
    """
    Telemetry metadata parser.

    Holds only its tag table, so one instance can be shared between threads.
    """

    def __init__(self, tag_table: Optional[Dict[int, TagSpec]] = None):
        self.tag_table = dict(TAG_TABLE if tag_table is None else tag_table)

    def _apply_item(self, metadata: KLVFrameMetadata, tag: int, value: bytes) -> bool:
        """Decode one item into metadata. Returns True if the tag is recognized."""
        if not value:
            return False

        if tag == TIMESTAMP_TAG:
            metadata.unix_timestamp = decode_timestamp(value)
            return True

        spec = self.tag_table.get(tag)
        if spec is None:
            return False

        if spec.signed:
            decoded = scale_signed(value, spec.min_value, spec.max_value)
        else:
            decoded = scale_unsigned(value, spec.min_value, spec.max_value)
        setattr(metadata, spec.field, decoded)
        return True

    def decode(self, data: bytes) -> KLVDecodeResult:
        """
        Decode a telemetry buffer.

        Returns a KLVDecodeResult; metadata is set whenever at least one
        recognized tag was decoded, even if the buffer was later found to
        be malformed.
        """
        try:
            data = bytes(data)
        except TypeError:
            return KLVDecodeResult(DecodeStatus.MALFORMED, error="not a byte buffer")

        if len(data) < 2:
            return KLVDecodeResult(DecodeStatus.MALFORMED, error=f"buffer too short: {len(data)} bytes")

        metadata = KLVFrameMetadata()
        tags_seen: List[int] = []
        items_read = 0
        error = None

        try:
            payload = strip_envelope(data)
            for tag, value in iter_items(payload):
                if items_read < 20:
                    logger.debug(f"KLV item {items_read}: tag={tag} len={len(value)} bytes={value[:8].hex()}")
                items_read += 1
                if self._apply_item(metadata, tag, value):
                    tags_seen.append(tag)
        except MalformedKLVError as e:
            error = str(e)
            logger.warning(f"KLV parse stopped: {error}")

        if error is not None:
            status = DecodeStatus.PARTIAL if tags_seen else DecodeStatus.MALFORMED
        else:
            status = DecodeStatus.OK if tags_seen else DecodeStatus.NO_DATA

        return KLVDecodeResult(
            status=status,
            metadata=metadata if tags_seen else None,
            tags_seen=tags_seen,
            items_read=items_read,
            error=error,
        )

    def parse(self, data: bytes) -> Optional[KLVFrameMetadata]:
        """Decoded metadata, or None when nothing usable was found"""
        return self.decode(data).metadata


_default_parser = KLVParser()


def parse_klv_metadata(data: bytes) -> Optional[KLVFrameMetadata]:
    """Module-level convenience using the default tag table"""
    return _default_parser.parse(data)
