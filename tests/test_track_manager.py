"""Tests for multi-sensor track correlation and lifecycle."""
import re
from datetime import datetime, timedelta, timezone

import pytest

from maritime_fusion.fusion.config import CorrelationGates
from maritime_fusion.fusion.correlation import CorrelationEngine
from maritime_fusion.fusion.events import TrackEventChannel
from maritime_fusion.fusion.schema import (
    Detection,
    IdentityConfidence,
    SensorKind,
    TrackEventKind,
    TrackState,
    determine_identity_confidence,
)
from maritime_fusion.fusion.track_manager import TrackManager
from maritime_fusion.projection.geometry import enu_to_geodetic
from maritime_fusion.projection.projector import GeoPoint
from maritime_fusion.schema import AISData, Ship

T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
ORIGIN = GeoPoint(50.0, -1.0)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def make_ship(mmsi="235000001", east=0.0, north=0.0, **kwargs) -> Ship:
    lat, lon = enu_to_geodetic(ORIGIN.latitude, ORIGIN.longitude, east, north)
    values = dict(name="MV Test", mmsi=mmsi, imo="9300000", lat=lat, lon=lon, course=0.0, speed=0.0)
    values.update(kwargs)
    return Ship(**values)


def make_manager(**gate_overrides):
    channel = TrackEventChannel()
    subscription = channel.subscribe()
    clock = {"now": T0}
    manager = TrackManager(
        gates=CorrelationGates(**gate_overrides),
        events=channel,
        reference=ORIGIN,
        clock=lambda: clock["now"],
    )
    return manager, subscription, clock


# ---------------------------------------------------------------------------
# Identity confidence
# ---------------------------------------------------------------------------

class TestIdentityConfidence:

    def test_confidence_table(self):
        assert determine_identity_confidence(SensorKind.NONE) == IdentityConfidence.NONE
        assert determine_identity_confidence(SensorKind.AIS) == IdentityConfidence.MEDIUM
        assert determine_identity_confidence(SensorKind.RADAR) == IdentityConfidence.LOW
        assert determine_identity_confidence(SensorKind.EOIR) == IdentityConfidence.LOW
        assert determine_identity_confidence(SensorKind.RADAR | SensorKind.EOIR) == IdentityConfidence.HIGH
        assert determine_identity_confidence(SensorKind.AIS | SensorKind.RADAR) == IdentityConfidence.STRONG
        assert determine_identity_confidence(
            SensorKind.AIS | SensorKind.RADAR | SensorKind.EOIR
        ) == IdentityConfidence.STRONG

    def test_confidence_is_ordered(self):
        assert IdentityConfidence.LOW < IdentityConfidence.MEDIUM < IdentityConfidence.HIGH < IdentityConfidence.STRONG


# ---------------------------------------------------------------------------
# AIS tracks
# ---------------------------------------------------------------------------

class TestAISTracks:

    def test_three_reports_confirm_one_track(self):
        manager, _, _ = make_manager(confirmation_threshold=3)

        first = manager.process_ship(make_ship(), at(0))
        second = manager.process_ship(make_ship(north=20.0), at(5))
        third = manager.process_ship(make_ship(north=40.0), at(10))

        assert first.state == TrackState.PREDICTED
        assert second.state == TrackState.OBSERVED
        assert third.state == TrackState.CONFIRMED
        assert third.observation_count == 3
        assert third.track_id == "AIS_235000001"
        assert third.identity_confidence == IdentityConfidence.MEDIUM
        assert manager.get_track_count() == 1

    def test_ais_keyed_by_mmsi_regardless_of_distance(self):
        manager, _, _ = make_manager()
        manager.process_ship(make_ship(), at(0))
        track = manager.process_ship(make_ship(north=5000.0), at(1))

        assert manager.get_track_count() == 1
        assert track.position[1] == pytest.approx(5000.0, abs=1e-6)

    def test_ais_velocity_from_course_and_speed(self):
        manager, _, _ = make_manager()
        track = manager.process_ship(make_ship(course=90.0, speed=10.0), at(0))
        assert track.velocity[0] == pytest.approx(5.14444)
        assert track.velocity[1] == pytest.approx(0.0, abs=1e-9)

    def test_ship_payload_attached(self):
        manager, _, _ = make_manager()
        track = manager.process_ship(make_ship(name="Sea Falcon"), at(0))
        assert track.ship.name == "Sea Falcon"
        assert track.display_name == "Sea Falcon"

    def test_process_ais_data(self):
        manager, _, _ = make_manager()
        batch = AISData(timestamp=at(0), ships=[make_ship("1"), make_ship("2", east=3000.0)])
        tracks = manager.process_ais_data(batch)

        assert [t.track_id for t in tracks] == ["AIS_1", "AIS_2"]
        assert manager.process_ais_data(None) == []
        assert manager.process_ais_data(AISData(ships=[])) == []

    def test_batch_without_timestamp_uses_clock(self):
        manager, _, clock = make_manager()
        clock["now"] = at(42)
        [track] = manager.process_ais_data(AISData(ships=[make_ship()]))
        assert track.updated_at == at(42)


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

class TestCorrelation:

    def test_radar_track_id_format(self):
        manager, _, _ = make_manager()
        track = manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        assert re.match(r"^RADAR_[0-9A-F]{8}$", track.track_id)
        assert track.identity_confidence == IdentityConfidence.LOW

    def test_eoir_claims_radar_track_then_ais_rekeys_it(self):
        manager, subscription, _ = make_manager(confirmation_threshold=3)

        radar = manager.process_radar_detection((0.0, 0.0, 0.0), velocity=(1.0, 0.0, 0.0), timestamp=at(0))
        eoir = manager.process_eoir_detection((100.0, 0.0, 0.0), timestamp=at(1))

        assert eoir.track_id == radar.track_id
        assert eoir.sources == SensorKind.RADAR | SensorKind.EOIR
        assert eoir.identity_confidence == IdentityConfidence.HIGH
        assert eoir.has_multiple_sensors
        assert not radar.has_multiple_sensors
        assert eoir.state == TrackState.OBSERVED

        ais = manager.process_ship(make_ship(mmsi="123", east=50.0), at(2))

        assert ais.track_id == "AIS_123"
        assert ais.identity_confidence == IdentityConfidence.STRONG
        assert ais.observation_count == 3
        assert ais.state == TrackState.CONFIRMED
        assert manager.get_track(radar.track_id) is None
        assert manager.get_track_count() == 1

        events = subscription.drain()
        assert [e.kind for e in events] == [
            TrackEventKind.CREATED, TrackEventKind.UPDATED, TrackEventKind.UPDATED,
        ]
        assert events[2].track_id == "AIS_123"
        assert events[2].previous_track_id == radar.track_id

    def test_same_sensor_never_correlates(self):
        manager, _, _ = make_manager()
        first = manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        second = manager.process_radar_detection((10.0, 0.0, 0.0), timestamp=at(1))

        assert first.track_id != second.track_id
        assert manager.get_track_count() == 2

    def test_distance_gate(self):
        manager, _, _ = make_manager(max_distance_m=500.0)
        manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        manager.process_eoir_detection((600.0, 0.0, 0.0), timestamp=at(1))
        assert manager.get_track_count() == 2

    @pytest.mark.parametrize("delay,expected_tracks", [(29.0, 1), (31.0, 2)])
    def test_time_gate(self, delay, expected_tracks):
        manager, _, _ = make_manager(max_time_delta_s=30.0)
        manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        manager.process_eoir_detection((10.0, 0.0, 0.0), timestamp=at(delay))
        assert manager.get_track_count() == expected_tracks

    def test_nearest_track_wins(self):
        manager, _, _ = make_manager()
        manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        far = manager.process_radar_detection((300.0, 0.0, 0.0), timestamp=at(0))

        eoir = manager.process_eoir_detection((200.0, 0.0, 0.0), timestamp=at(1))
        assert eoir.track_id == far.track_id

    def test_geodetic_radar_detection(self):
        manager, _, _ = make_manager()
        ship = make_ship(east=100.0)
        manager.process_ship(ship, at(0))

        track = manager.process_radar_detection(GeoPoint(ship.lat, ship.lon), timestamp=at(1))
        assert track.track_id == "AIS_235000001"
        assert track.identity_confidence == IdentityConfidence.STRONG

    def test_engine_with_no_tracks(self):
        engine = CorrelationEngine(CorrelationGates())
        track_id, distance = engine.find_correlated_track((0.0, 0.0, 0.0), SensorKind.RADAR, T0, {})
        assert track_id is None
        assert distance == float("inf")


# ---------------------------------------------------------------------------
# Merge behavior
# ---------------------------------------------------------------------------

class TestMerge:

    def test_out_of_order_update_keeps_latest_time(self):
        manager, _, _ = make_manager()
        manager.process_ship(make_ship(), at(10))
        track = manager.process_ship(make_ship(north=10.0), at(5))

        assert track.updated_at == at(10)
        assert track.position[1] == pytest.approx(10.0, abs=1e-6)

    def test_eoir_without_velocity_sets_zero(self):
        manager, _, _ = make_manager()
        manager.process_radar_detection((0.0, 0.0, 0.0), velocity=(3.0, 4.0, 0.0), timestamp=at(0))
        track = manager.process_eoir_detection((5.0, 0.0, 0.0), timestamp=at(1))
        assert track.velocity == (0.0, 0.0, 0.0)

    def test_local_position_gets_geodetic_coordinates(self):
        manager, _, _ = make_manager()
        track = manager.process_radar_detection((0.0, 1000.0, 0.0), timestamp=at(0))
        expected_lat, expected_lon = enu_to_geodetic(ORIGIN.latitude, ORIGIN.longitude, 0.0, 1000.0)
        assert track.latitude == pytest.approx(expected_lat)
        assert track.longitude == pytest.approx(expected_lon)

    def test_first_geodetic_detection_sets_origin(self):
        manager = TrackManager()
        track = manager.process_ship(Ship(mmsi="9", lat=10.0, lon=20.0), T0)
        assert manager.reference == GeoPoint(10.0, 20.0)
        assert track.position == pytest.approx((0.0, 0.0, 0.0))

    def test_detection_needs_a_position(self):
        with pytest.raises(ValueError):
            Detection(sensor_kind=SensorKind.RADAR)

    def test_combined_sensor_kind_rejected(self):
        manager, _, _ = make_manager()
        detection = Detection(position=(0.0, 0.0, 0.0), timestamp=T0)
        with pytest.raises(ValueError):
            manager.process_detection(SensorKind.RADAR | SensorKind.EOIR, detection)

    def test_mismatched_sensor_tag_rejected(self):
        manager, _, _ = make_manager()
        detection = Detection(sensor_kind=SensorKind.EOIR, position=(0.0, 0.0, 0.0), timestamp=T0)
        with pytest.raises(ValueError, match="tagged EOIR"):
            manager.process_detection(SensorKind.RADAR, detection)
        assert manager.get_track_count() == 0

        assert manager.process_detection(SensorKind.EOIR, detection) is not None

    def test_none_detection_is_ignored(self):
        manager, _, _ = make_manager()
        assert manager.process_detection(SensorKind.RADAR, None) is None
        assert manager.get_track_count() == 0

    def test_process_batch(self):
        manager, _, _ = make_manager()
        tracks = manager.process_batch([
            (SensorKind.RADAR, Detection(position=(0.0, 0.0, 0.0), timestamp=at(0))),
            (SensorKind.EOIR, Detection(position=(20.0, 0.0, 0.0), timestamp=at(1))),
        ])
        assert len(tracks) == 2
        assert tracks[0].track_id == tracks[1].track_id
        assert manager.process_batch(None) == []


# ---------------------------------------------------------------------------
# Inactivity sweep
# ---------------------------------------------------------------------------

class TestInactivitySweep:

    def test_expired_track_removed_once(self):
        manager, subscription, _ = make_manager(inactivity_timeout_s=120.0)
        track = manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        subscription.drain()

        assert manager.remove_inactive_tracks(at(120)) == []
        assert manager.remove_inactive_tracks(at(121)) == [track.track_id]
        assert manager.sweep(at(200)) == []

        events = subscription.drain()
        assert len(events) == 1
        assert events[0].kind == TrackEventKind.REMOVED
        assert events[0].track_id == track.track_id
        assert events[0].track is None

    def test_sweep_uses_clock_by_default(self):
        manager, _, clock = make_manager(inactivity_timeout_s=60.0)
        manager.process_radar_detection((0.0, 0.0, 0.0), timestamp=at(0))
        manager.process_ship(make_ship(east=5000.0), at(50))

        clock["now"] = at(100)
        removed = manager.remove_inactive_tracks()
        assert len(removed) == 1
        assert manager.get_track("AIS_235000001") is not None

    def test_removed_track_can_be_recreated(self):
        manager, _, _ = make_manager()
        manager.process_ship(make_ship(), at(0))
        manager.remove_inactive_tracks(at(500))

        track = manager.process_ship(make_ship(), at(501))
        assert track.observation_count == 1
        assert track.state == TrackState.PREDICTED

    def test_stats(self):
        manager, _, _ = make_manager()
        manager.process_ship(make_ship(), at(0))
        manager.process_radar_detection((10.0, 0.0, 0.0), timestamp=at(1))
        manager.remove_inactive_tracks(at(1000))

        stats = manager.get_stats()
        assert stats["tracks_created"] == 1
        assert stats["tracks_updated"] == 1
        assert stats["tracks_removed"] == 1
        assert stats["active_tracks"] == 0
        assert stats["detections"] == {"ais": 1, "radar": 1, "eoir": 0}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:

    def setup_method(self):
        self.manager, self.subscription, _ = make_manager(confirmation_threshold=2)
        self.manager.process_ship(make_ship("1"), at(0))
        self.manager.process_ship(make_ship("1"), at(1))
        self.manager.process_radar_detection((5000.0, 0.0, 0.0), timestamp=at(0))

    def test_snapshots_are_copies(self):
        track = self.manager.get_track("AIS_1")
        track.latitude = 0.0
        track.ship.name = "Changed"

        fresh = self.manager.get_track("AIS_1")
        assert fresh.latitude != 0.0
        assert fresh.ship.name == "MV Test"

    def test_filters(self):
        assert [t.track_id for t in self.manager.get_confirmed_tracks()] == ["AIS_1"]
        assert len(self.manager.get_tracks_by_sensor(SensorKind.RADAR)) == 1
        assert len(self.manager.get_tracks_by_sensor(SensorKind.EOIR)) == 0
        assert len(self.manager.get_tracks_by_confidence(IdentityConfidence.MEDIUM)) == 1
        assert len(self.manager.get_tracks_by_confidence(IdentityConfidence.LOW)) == 2
        assert self.manager.get_track("missing") is None

    def test_clear_all_tracks(self):
        self.subscription.drain()
        removed = self.manager.clear_all_tracks()

        assert len(removed) == 2
        assert self.manager.get_track_count() == 0
        assert all(e.kind == TrackEventKind.REMOVED for e in self.subscription.drain())
