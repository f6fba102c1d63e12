"""Tests for the KLV telemetry decoder and its generator counterpart."""
from datetime import datetime, timezone

import pytest

from maritime_fusion.generators.klv_generator import (
    UAS_LOCAL_SET_KEY,
    KLVGenerator,
    encode_ber_length,
)
from maritime_fusion.parsers.klv_parser import (
    DecodeStatus,
    KLVFrameMetadata,
    KLVParser,
    MalformedKLVError,
    NoRecognizedDataError,
    parse_klv_metadata,
    read_ber_length,
    scale_signed,
    scale_unsigned,
)
from maritime_fusion.projection.projector import GeodeticPose


def item(tag, value: bytes) -> bytes:
    return bytes([tag, len(value)]) + value


# ---------------------------------------------------------------------------
# Value scaling
# ---------------------------------------------------------------------------

class TestScaling:

    def test_unsigned_full_range(self):
        assert scale_unsigned(b"\x00\x00", 0.0, 360.0) == 0.0
        assert scale_unsigned(b"\xff\xff", 0.0, 360.0) == 360.0

    def test_unsigned_midpoint(self):
        assert scale_unsigned(b"\x80\x00", 0.0, 65535.0) == pytest.approx(32768.0)

    def test_signed_zero_is_domain_midpoint(self):
        assert scale_signed(b"\x00\x00\x00\x00", -90.0, 90.0) == 0.0

    def test_signed_extremes(self):
        assert scale_signed(b"\x7f\xff\xff\xff", -90.0, 90.0) == pytest.approx(90.0)
        # 0x80000000 is one step past the symmetric range and clamps
        assert scale_signed(b"\x80\x00\x00\x00", -90.0, 90.0) == -90.0

    def test_signed_negative_value(self):
        raw = (-1073741823).to_bytes(4, "big", signed=True)
        assert scale_signed(raw, -90.0, 90.0) == pytest.approx(-45.0, abs=1e-6)


class TestBerLength:

    def test_short_form(self):
        assert read_ber_length(b"\x05", 0) == (5, 1)

    def test_long_form(self):
        assert read_ber_length(b"\x82\x01\x00", 0) == (256, 3)

    def test_long_form_truncated(self):
        with pytest.raises(MalformedKLVError):
            read_ber_length(b"\x84\x01", 0)

    def test_encoder_matches_reader(self):
        for length in (0, 127, 128, 300, 70000):
            encoded = encode_ber_length(length)
            assert read_ber_length(encoded, 0) == (length, len(encoded))


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

class TestKLVParser:

    def setup_method(self):
        self.parser = KLVParser()

    def test_bare_local_set(self):
        data = item(5, b"\xff\xff") + item(13, b"\x00\x00\x00\x00")
        result = self.parser.decode(data)

        assert result.status == DecodeStatus.OK
        assert result.metadata.platform_heading == 360.0
        assert result.metadata.sensor_latitude == 0.0
        assert result.tags_seen == [5, 13]

    def test_latitude_round_trip_in_four_bytes(self):
        generator = KLVGenerator(envelope=False)
        frame = generator.encode_item(13, 10.0, width=4)
        assert len(frame) == 6

        metadata = self.parser.parse(frame)
        assert metadata.sensor_latitude == pytest.approx(10.0, abs=1e-6)

    def test_negative_geodetic_fields(self):
        generator = KLVGenerator(envelope=False)
        frame = generator.encode_item(13, -33.5) + generator.encode_item(14, -70.25)

        metadata = self.parser.parse(frame)
        assert metadata.sensor_latitude == pytest.approx(-33.5, abs=1e-6)
        assert metadata.sensor_longitude == pytest.approx(-70.25, abs=1e-6)

    def test_envelope_is_stripped(self):
        payload = item(18, b"\x40\x00") + item(19, b"\xff\xff")
        data = UAS_LOCAL_SET_KEY + encode_ber_length(len(payload)) + payload

        result = self.parser.decode(data)
        assert result.ok
        assert result.metadata.azimuth == pytest.approx(90.0, abs=0.01)
        assert result.metadata.elevation == 90.0

    def test_envelope_length_longer_than_buffer_is_clamped(self):
        payload = item(16, b"\x80\x00")
        data = UAS_LOCAL_SET_KEY + encode_ber_length(200) + payload

        result = self.parser.decode(data)
        assert result.ok
        assert result.metadata.fov_horizontal == pytest.approx(90.0, abs=0.01)

    def test_overrun_keeps_fields_parsed_before_it(self):
        data = item(5, b"\xff\xff") + bytes([6, 10, 0x00])
        result = self.parser.decode(data)

        assert result.status == DecodeStatus.PARTIAL
        assert result.has_data
        assert result.metadata.platform_heading == 360.0
        assert result.metadata.platform_pitch is None
        assert "invalid length" in result.error

    def test_overrun_on_first_item_is_malformed(self):
        result = self.parser.decode(bytes([5, 4, 0x01]))
        assert result.status == DecodeStatus.MALFORMED
        assert not result.has_data
        assert result.metadata is None
        with pytest.raises(MalformedKLVError):
            result.raise_for_status()

    def test_short_buffer_is_malformed(self):
        for data in (b"", b"\x05"):
            result = self.parser.decode(data)
            assert result.status == DecodeStatus.MALFORMED
            assert result.metadata is None

    def test_unknown_tags_only(self):
        result = self.parser.decode(item(99, b"\x01") + item(100, b"\x02\x03"))
        assert result.status == DecodeStatus.NO_DATA
        assert result.items_read == 2
        with pytest.raises(NoRecognizedDataError):
            result.raise_for_status()

    def test_unknown_tags_are_skipped(self):
        data = item(99, b"\x01\x02\x03") + item(17, b"\xff\xff")
        metadata = self.parser.parse(data)
        assert metadata.fov_vertical == 180.0

    def test_zero_length_item_is_skipped(self):
        data = item(5, b"") + item(6, b"\x80\x00")
        result = self.parser.decode(data)
        assert result.tags_seen == [6]
        assert result.metadata.platform_heading is None

    def test_trailing_single_byte_is_ignored(self):
        data = item(20, b"\x80\x00") + b"\x07"
        result = self.parser.decode(data)
        assert result.ok

    def test_timestamp_microseconds(self):
        when = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
        micros = int(when.timestamp() * 1_000_000)
        metadata = self.parser.parse(item(2, micros.to_bytes(8, "big")))

        assert metadata.unix_timestamp == micros
        assert metadata.timestamp == when

    def test_later_duplicate_tag_wins(self):
        data = item(5, b"\x00\x00") + item(5, b"\xff\xff")
        assert self.parser.parse(data).platform_heading == 360.0

    def test_module_level_helper(self):
        assert parse_klv_metadata(b"") is None
        assert parse_klv_metadata(item(15, b"\x00\x00")).sensor_altitude == -900.0

    def test_not_bytes(self):
        result = self.parser.decode(None)
        assert result.status == DecodeStatus.MALFORMED


# ---------------------------------------------------------------------------
# Metadata -> pose
# ---------------------------------------------------------------------------

class TestMetadataPose:

    def test_pose_uses_frame_center_only_when_complete(self):
        metadata = KLVFrameMetadata(
            sensor_latitude=50.0, sensor_longitude=-1.0, fov_horizontal=30.0,
            fov_vertical=17.0, frame_center_latitude=50.01,
        )
        pose = metadata.to_pose()
        assert not pose.has_frame_center
        assert pose.elevation == 90.0

    def test_generated_pose_decodes_back(self):
        pose = GeodeticPose(
            latitude=50.5, longitude=-1.25, altitude=1500.0,
            azimuth=45.0, elevation=60.0, roll=-5.0,
            fov_horizontal=30.0, fov_vertical=17.0,
            frame_center_latitude=50.52, frame_center_longitude=-1.22,
        )
        generator = KLVGenerator()
        frame = generator.encode_pose(pose, timestamp=datetime(2025, 6, 1, tzinfo=timezone.utc))

        assert frame.startswith(UAS_LOCAL_SET_KEY)
        decoded = KLVParser().parse(frame).to_pose()

        assert decoded.latitude == pytest.approx(50.5, abs=1e-6)
        assert decoded.longitude == pytest.approx(-1.25, abs=1e-6)
        assert decoded.altitude == pytest.approx(1500.0, abs=0.5)
        assert decoded.azimuth == pytest.approx(45.0, abs=0.01)
        assert decoded.elevation == pytest.approx(60.0, abs=0.01)
        assert decoded.roll == pytest.approx(-5.0, abs=0.01)
        assert decoded.frame_center_latitude == pytest.approx(50.52, abs=1e-6)
        assert generator.get_stats()["frames_generated"] == 1
