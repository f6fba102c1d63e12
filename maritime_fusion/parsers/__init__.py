"""
Sensor Data Parsers
KLV telemetry and JSON side-channel feeds
"""

from .klv_parser import KLVParser, KLVFrameMetadata, KLVDecodeResult, DecodeStatus, parse_klv_metadata
from .json_parser import parse_ais_data, parse_eoir_metadata

__all__ = [
    'KLVParser',
    'KLVFrameMetadata',
    'KLVDecodeResult',
    'DecodeStatus',
    'parse_klv_metadata',
    'parse_ais_data',
    'parse_eoir_metadata',
]
