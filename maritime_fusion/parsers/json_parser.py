"""
JSON Feed Parser

Parses the JSON side-channel feeds:

AIS batch:
{
  "timestamp": "2025-06-01T12:00:00Z",
  "ships": [
    {"name": "MV Example", "mmsi": "235000001", "imo": "9300000",
     "lat": 50.1, "lon": -1.2, "course": 245.0, "speed": 12.5}
  ]
}

EO/IR camera metadata:
{
  "timestamp": "2025-06-01T12:00:00Z",
  "cameraPosition": {"lat": 50.0, "lon": -1.0},
  "cameraOrientation": {"azimuth": 90.0, "elevation": 80.0, "roll": 0.0},
  "fov": {"horizontal": 30.0, "vertical": 17.0}
}
"""

import logging
from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..schema import AISData, EOIRMetadata

logger = logging.getLogger(__name__)

Model = TypeVar("Model", bound=BaseModel)
Payload = Union[str, bytes, dict]


def _parse(model: Type[Model], payload: Payload) -> Optional[Model]:
    if payload is None:
        return None
    try:
        if isinstance(payload, dict):
            return model.model_validate(payload)
        return model.model_validate_json(payload)
    except ValidationError as e:
        logger.warning(f"Invalid {model.__name__} payload: {e.error_count()} error(s)")
        return None


def parse_ais_data(payload: Payload) -> Optional[AISData]:
    """Parse an AIS batch. Returns None if the payload is invalid."""
    return _parse(AISData, payload)


def parse_eoir_metadata(payload: Payload) -> Optional[EOIRMetadata]:
    """Parse EO/IR camera metadata. Returns None if the payload is invalid."""
    return _parse(EOIRMetadata, payload)
