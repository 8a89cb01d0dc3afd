"""
Cache-aside orchestration layer for the FRED proxy.
"""

from .models import (
    Observation,
    SeriesMetadataRequest,
    SeriesObservationRequest,
    parse_date,
)
from .service import FredProxyService

__all__ = [
    "FredProxyService",
    "Observation",
    "SeriesMetadataRequest",
    "SeriesObservationRequest",
    "parse_date",
]
