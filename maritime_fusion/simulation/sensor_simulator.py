"""
Sensor Simulator

Moves a set of ground-truth ships and produces AIS, radar and EO/IR
detections of them from an airborne sensor platform, each sensor on its
own update interval and with its own coverage and position error.

Usage:
    python -m maritime_fusion.simulation.sensor_simulator
    python -m maritime_fusion.simulation.sensor_simulator --ships 20 --speed-mult 10
"""

import argparse
import asyncio
import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union

import numpy as np
from dotenv import load_dotenv

from ..config import FusionSettings, get_settings
from ..fusion.config import SENSOR_CONFIG, SensorCharacteristics
from ..fusion.schema import Detection, SensorKind
from ..projection.geometry import (
    MS_TO_KNOTS,
    bearing_deg,
    enu_to_geodetic,
    geodetic_to_enu,
    haversine_m,
    velocity_from_course,
    wrap_degrees,
)
from ..projection.projector import GeodeticPose, GeoPoint, is_on_screen, project_with_orientation
from ..schema import AISData, Ship

logger = logging.getLogger(__name__)

Emission = Tuple[SensorKind, Union[Detection, AISData]]

SHIP_NAMES = [
    "Northern Star", "Sea Falcon", "Atlantic Dawn", "Ocean Pioneer", "Blue Horizon",
    "Silver Tide", "Coastal Runner", "Polar Wind", "Harbour Light", "Grey Heron",
]


@dataclass
class SimulatedShip:
    """Ground truth ship state"""
    name: str
    mmsi: str
    imo: str
    latitude: float
    longitude: float
    speed: float = 10.0              # knots
    course: float = 0.0              # degrees, 0 = North
    ais_transponder: bool = True     # Dark ships are still seen by radar/EO-IR

    def move(self, seconds: float):
        """Advance along the current course at constant speed"""
        east, north, _ = self.velocity() * seconds
        self.latitude, self.longitude = enu_to_geodetic(self.latitude, self.longitude, east, north)

    def velocity(self) -> np.ndarray:
        """ENU velocity in m/s"""
        return velocity_from_course(self.speed, self.course)

    def position_with_error(self, magnitude: float, rng: random.Random) -> Tuple[float, float]:
        """Position displaced by a uniform horizontal error of up to magnitude meters"""
        if magnitude <= 0:
            return self.latitude, self.longitude
        east = rng.uniform(-magnitude, magnitude)
        north = rng.uniform(-magnitude, magnitude)
        return enu_to_geodetic(self.latitude, self.longitude, east, north)

    def to_ship(self, position_error: float, rng: random.Random) -> Ship:
        """AIS report for this ship"""
        lat, lon = self.position_with_error(position_error, rng)
        east, north, _ = self.velocity()
        speed_ms = float(np.hypot(east, north))
        return Ship(
            name=self.name,
            mmsi=self.mmsi,
            imo=self.imo,
            lat=lat,
            lon=lon,
            course=bearing_deg(east, north) if speed_ms >= 0.1 else 0.0,
            speed=speed_ms * MS_TO_KNOTS,
        )


def random_mmsi(rng: random.Random) -> str:
    """9 digits, first digit 2-7"""
    return f"{rng.randint(2, 7)}{rng.randint(0, 99999999):08d}"


def random_imo(rng: random.Random) -> str:
    return f"IMO{rng.randint(1000000, 9999999)}"


class SensorSimulator:
    """
    Produces detections for the fusion core.

    step() is deterministic for a given seed; run() drives it in real
    time and submits everything to an ingester.
    """

    def __init__(
        self,
        ships: List[SimulatedShip],
        platform: GeodeticPose,
        sensors: Optional[dict] = None,
        radar_azimuth_coverage: float = 360.0,
        image_width: int = 1920,
        image_height: int = 1080,
        seed: Optional[int] = None,
        speed_multiplier: float = 1.0,
    ):
        self.ships = ships
        self.platform = platform
        self.sensors = {**SENSOR_CONFIG, **(sensors or {})}
        self.radar_azimuth_coverage = radar_azimuth_coverage
        self.image_width = image_width
        self.image_height = image_height
        self.speed_mult = speed_multiplier
        self.rng = random.Random(seed)

        self.enabled = {"ais": True, "radar": True, "eoir": True}
        self._timers = {"ais": 0.0, "radar": 0.0, "eoir": 0.0}
        self.sim_time = datetime.now(timezone.utc)

        self.running = False
        self.stats = {
            "steps": 0,
            "ais_reports": 0,
            "radar_detections": 0,
            "eoir_detections": 0,
        }

    @classmethod
    def create_fleet(
        cls,
        num_ships: int,
        center: GeoPoint = GeoPoint(50.0, -1.0),
        radius_m: float = 8000.0,
        dark_ship_pct: float = 10.0,
        seed: Optional[int] = None,
        fov_horizontal: float = 30.0,
        fov_vertical: float = 17.0,
        **kwargs,
    ) -> "SensorSimulator":
        """Random fleet scattered around an aircraft orbiting at center"""
        rng = random.Random(seed)
        ships = []
        for i in range(num_ships):
            east = rng.uniform(-radius_m, radius_m)
            north = rng.uniform(-radius_m, radius_m)
            lat, lon = enu_to_geodetic(center.latitude, center.longitude, east, north)
            ships.append(SimulatedShip(
                name=f"{SHIP_NAMES[i % len(SHIP_NAMES)]} {i + 1}",
                mmsi=random_mmsi(rng),
                imo=random_imo(rng),
                latitude=lat,
                longitude=lon,
                speed=rng.uniform(4.0, 18.0),
                course=rng.uniform(0.0, 360.0),
                ais_transponder=rng.random() * 100 >= dark_ship_pct,
            ))

        platform = GeodeticPose(
            latitude=center.latitude,
            longitude=center.longitude,
            altitude=1500.0,
            azimuth=0.0,
            elevation=60.0,
            fov_horizontal=fov_horizontal,
            fov_vertical=fov_vertical,
        )
        return cls(ships, platform, seed=seed, **kwargs)

    @classmethod
    def from_settings(cls, settings: FusionSettings, num_ships: int, **kwargs) -> "SensorSimulator":
        """Random fleet with the camera FOV and image size taken from settings"""
        return cls.create_fleet(
            num_ships,
            fov_horizontal=settings.fov_horizontal,
            fov_vertical=settings.fov_vertical,
            image_width=settings.image_width,
            image_height=settings.image_height,
            **kwargs,
        )

    # ============ Sensors ============

    def _range_to(self, ship: SimulatedShip) -> float:
        return haversine_m(self.platform.latitude, self.platform.longitude, ship.latitude, ship.longitude)

    def simulate_ais(self) -> List[Emission]:
        """One AIS batch with every transponding ship in range"""
        config: SensorCharacteristics = self.sensors["ais"]
        reports = [
            ship.to_ship(config.position_error_m, self.rng)
            for ship in self.ships
            if ship.ais_transponder and self._range_to(ship) <= config.range_m
        ]
        if not reports:
            return []
        self.stats["ais_reports"] += len(reports)
        logger.debug(f"[AIS] {len(reports)} reports")
        return [(SensorKind.AIS, AISData(timestamp=self.sim_time, ships=reports))]

    def simulate_radar(self) -> List[Emission]:
        """Radar returns for ships in range and inside the azimuth coverage"""
        config: SensorCharacteristics = self.sensors["radar"]
        emissions = []
        for ship in self.ships:
            distance = self._range_to(ship)
            if distance > config.range_m:
                continue

            east, north, _ = geodetic_to_enu(
                self.platform.latitude, self.platform.longitude, ship.latitude, ship.longitude
            )
            relative = wrap_degrees(bearing_deg(east, north) - self.platform.azimuth)
            if abs(relative) > self.radar_azimuth_coverage / 2.0:
                continue

            lat, lon = ship.position_with_error(config.position_error_m, self.rng)
            emissions.append((SensorKind.RADAR, Detection(
                sensor_kind=SensorKind.RADAR,
                latitude=lat,
                longitude=lon,
                velocity=tuple(float(v) for v in ship.velocity()),
                timestamp=self.sim_time,
            )))
            logger.debug(f"[Radar] {ship.name} at {distance:.1f} m, azimuth {relative:.1f}")

        self.stats["radar_detections"] += len(emissions)
        return emissions

    def simulate_eoir(self) -> List[Emission]:
        """EO/IR detections for ships in range and inside the camera frustum"""
        config: SensorCharacteristics = self.sensors["eoir"]
        candidates = []
        for ship in self.ships:
            distance = self._range_to(ship)
            if distance <= config.range_m:
                candidates.append((ship, distance))
        if not candidates:
            return []

        points = project_with_orientation(
            self.platform, self.image_width, self.image_height,
            [GeoPoint(ship.latitude, ship.longitude) for ship, _ in candidates],
        )

        emissions = []
        for (ship, distance), point in zip(candidates, points):
            if not is_on_screen(point, self.image_width, self.image_height):
                continue
            # Error grows with range
            error = config.position_error_m * (distance / config.range_m)
            lat, lon = ship.position_with_error(error, self.rng)
            emissions.append((SensorKind.EOIR, Detection(
                sensor_kind=SensorKind.EOIR,
                latitude=lat,
                longitude=lon,
                timestamp=self.sim_time,
            )))
            logger.debug(f"[EOIR] {ship.name} at {distance:.1f} m")

        self.stats["eoir_detections"] += len(emissions)
        return emissions

    # ============ Stepping ============

    def step(self, seconds: float) -> List[Emission]:
        """
        Advance the world by seconds of simulated time.

        Each enabled sensor fires when its timer reaches its update
        interval.
        """
        self.sim_time += timedelta(seconds=seconds)
        for ship in self.ships:
            ship.move(seconds)

        emissions: List[Emission] = []
        sensors = (
            ("ais", self.simulate_ais),
            ("radar", self.simulate_radar),
            ("eoir", self.simulate_eoir),
        )
        for name, simulate in sensors:
            if not self.enabled[name]:
                continue
            self._timers[name] += seconds
            if self._timers[name] >= self.sensors[name].update_interval_s:
                self._timers[name] = 0.0
                emissions.extend(simulate())

        self.stats["steps"] += 1
        return emissions

    def now(self) -> datetime:
        """Current simulated time"""
        return self.sim_time

    def move_platform(self, **changes):
        """Update the aircraft pose (e.g. azimuth=..., latitude=...)"""
        self.platform = replace(self.platform, **changes)

    async def run(self, ingester, update_rate_hz: float = 10.0):
        """Step in real time and submit every detection to the ingester"""
        self.running = True
        interval = 1.0 / update_rate_hz
        log_every = max(1, int(10 * update_rate_hz))

        logger.info(
            f"Sensor simulator started ({len(self.ships)} ships, "
            f"rate={update_rate_hz}Hz, speed={self.speed_mult}x)"
        )

        try:
            while self.running:
                loop_start = asyncio.get_event_loop().time()

                for sensor_kind, payload in self.step(interval * self.speed_mult):
                    if isinstance(payload, AISData):
                        ingester.submit_ais_data(payload)
                    else:
                        ingester.submit(sensor_kind, payload)

                if self.stats["steps"] % log_every == 0:
                    logger.info(
                        f"Simulated: AIS={self.stats['ais_reports']} | "
                        f"Radar={self.stats['radar_detections']} | "
                        f"EOIR={self.stats['eoir_detections']}"
                    )

                elapsed = asyncio.get_event_loop().time() - loop_start
                await asyncio.sleep(max(0, interval - elapsed))

        except asyncio.CancelledError:
            logger.info("Sensor simulator cancelled")
        except Exception as e:
            logger.error(f"Sensor simulator error: {e}")
            raise
        finally:
            self.running = False
            logger.info("Sensor simulator stopped")

    def stop(self):
        """Stop the simulator"""
        self.running = False


async def main():
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - SIM - %(levelname)s - %(message)s"
    )

    parser = argparse.ArgumentParser(description="Maritime Sensor Simulator")
    parser.add_argument("--ships", type=int, default=10,
                        help="Number of ships to simulate")
    parser.add_argument("--dark-pct", type=float, default=10.0,
                        help="Percentage of ships without AIS")
    parser.add_argument("--speed-mult", type=float, default=1.0,
                        help="Time acceleration factor")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--redis-url", default=None,
                        help="Publish fused tracks to Redis")
    args = parser.parse_args()

    from ..fusion.fusion_ingester import FusionIngester

    settings = get_settings()
    if args.redis_url:
        settings = settings.model_copy(update={"redis_url": args.redis_url})

    redis_client = None
    if settings.redis_url:
        import redis.asyncio as redis
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        await redis_client.ping()
        logger.info(f"Connected to Redis at {settings.redis_url}")

    simulator = SensorSimulator.from_settings(
        settings,
        args.ships,
        dark_ship_pct=args.dark_pct,
        seed=args.seed,
        speed_multiplier=args.speed_mult,
    )
    # Track ages are measured in simulated time
    ingester = FusionIngester.from_settings(
        settings, redis_client=redis_client, clock=simulator.now
    )

    try:
        await asyncio.gather(simulator.run(ingester), ingester.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        simulator.stop()
        ingester.stop()
        if redis_client is not None:
            await redis_client.close()


if __name__ == "__main__":
    asyncio.run(main())
