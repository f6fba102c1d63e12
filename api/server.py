"""
Fusion API Server

FastAPI application hosting the fusion core:
- Runs the FusionIngester loop for the lifetime of the app
- Mounts the track router at /api
- Optionally feeds the ingester from the sensor simulator

Run with:
    python -m api.server --simulate
"""

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.track_endpoints import create_router
from maritime_fusion import __version__
from maritime_fusion.config import FusionSettings, get_settings
from maritime_fusion.fusion.fusion_ingester import FusionIngester

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[FusionSettings] = None,
    ingester: Optional[FusionIngester] = None,
    simulate: bool = False,
    num_ships: int = 10,
) -> FastAPI:
    """
    Build the API application.

    When no ingester is given one is built from settings. Its Redis
    publisher is attached at startup if settings.redis_url is set.
    """
    settings = settings or get_settings()

    simulator = None
    if simulate:
        from maritime_fusion.simulation.sensor_simulator import SensorSimulator
        simulator = SensorSimulator.from_settings(settings, num_ships)

    fusion = ingester
    if fusion is None:
        clock = simulator.now if simulator is not None else None
        fusion = FusionIngester.from_settings(settings, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        redis_client = None
        if settings.redis_url and fusion.publisher is None:
            try:
                import redis.asyncio as redis
                from maritime_fusion.fusion.redis_publisher import RedisTrackPublisher
                redis_client = redis.from_url(settings.redis_url, decode_responses=True)
                await redis_client.ping()
                fusion.publisher = RedisTrackPublisher(redis_client)
                logger.info(f"Connected to Redis at {settings.redis_url}")
            except Exception as e:
                logger.warning(f"Could not connect to Redis: {e}")
                redis_client = None

        tasks = [asyncio.create_task(fusion.run())]
        if simulator is not None:
            tasks.append(asyncio.create_task(simulator.run(fusion)))

        yield

        # Cleanup
        if simulator is not None:
            simulator.stop()
        fusion.stop()
        await asyncio.gather(*tasks, return_exceptions=True)

        if redis_client:
            await redis_client.close()

    app = FastAPI(
        title="Maritime Fusion API",
        description="Fused vessel tracks, camera projection and telemetry decoding",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for overlay clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_router(fusion, settings))
    logger.info("Track endpoints mounted at /api")
    return app


def main():
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - API - %(levelname)s - %(message)s"
    )

    parser = argparse.ArgumentParser(description="Maritime Fusion API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8001, help="Port")
    parser.add_argument(
        "--simulate", action="store_true",
        help="Feed the ingester from the built-in sensor simulator"
    )
    parser.add_argument(
        "--ships", type=int, default=10,
        help="Number of simulated ships (with --simulate)"
    )
    args = parser.parse_args()

    import uvicorn
    app = create_app(simulate=args.simulate, num_ships=args.ships)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
