"""
Request and payload types handled by the proxy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from shared.errors import ValidationError


_SERIES_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

# Rendered in cache keys for absent optional fields.
KEY_PLACEHOLDER = "-"


@dataclass(frozen=True)
class Observation:
    """One dated value from a series; ``value`` keeps FRED's raw string."""

    date: date
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"date": self.date.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Observation":
        return cls(date=date.fromisoformat(payload["date"]), value=str(payload["value"]))


@dataclass(frozen=True)
class SeriesObservationRequest:
    series_id: str
    observation_start: Optional[date] = None
    observation_end: Optional[date] = None
    realtime_start: Optional[date] = None
    realtime_end: Optional[date] = None

    @property
    def is_realtime(self) -> bool:
        """Vintage (ALFRED) queries are never cached."""
        return self.realtime_start is not None or self.realtime_end is not None

    def validate(self) -> "SeriesObservationRequest":
        """Return a normalized copy, raising ValidationError on bad input."""
        series_id = normalize_series_id(self.series_id)
        _check_range("observation", self.observation_start, self.observation_end)
        _check_range("realtime", self.realtime_start, self.realtime_end)
        return SeriesObservationRequest(
            series_id=series_id,
            observation_start=self.observation_start,
            observation_end=self.observation_end,
            realtime_start=self.realtime_start,
            realtime_end=self.realtime_end,
        )

    def cache_key(self) -> str:
        parts = [
            "observations",
            self.series_id,
            _key_date(self.observation_start),
            _key_date(self.observation_end),
        ]
        if self.is_realtime:
            parts += ["realtime", _key_date(self.realtime_start), _key_date(self.realtime_end)]
        return "|".join(parts)


@dataclass(frozen=True)
class SeriesMetadataRequest:
    series_id: str

    def validate(self) -> "SeriesMetadataRequest":
        return SeriesMetadataRequest(series_id=normalize_series_id(self.series_id))

    def cache_key(self) -> str:
        return f"series|{self.series_id}"


def normalize_series_id(series_id: Optional[str]) -> str:
    """Strip and upper-case a series id after checking it against the whitelist."""
    candidate = (series_id or "").strip()
    if not candidate:
        raise ValidationError("series_id is required", {"field": "series_id"})
    if not _SERIES_ID_PATTERN.match(candidate):
        raise ValidationError("series_id contains unsupported characters", {"field": "series_id"})
    return candidate.upper()


def parse_date(value: Optional[str], *, field: str) -> Optional[date]:
    """Parse a YYYY-MM-DD query value; empty strings count as absent."""
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return date.fromisoformat(candidate)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", {"field": field})


def _check_range(prefix: str, start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError(
            f"{prefix}_start must not be after {prefix}_end",
            {f"{prefix}_start": start.isoformat(), f"{prefix}_end": end.isoformat()},
        )


def _key_date(value: Optional[date]) -> str:
    return value.isoformat() if value is not None else KEY_PLACEHOLDER


def encode_observations(observations: Iterable[Observation]) -> bytes:
    return json.dumps([obs.to_dict() for obs in observations], separators=(",", ":")).encode("utf-8")


def decode_observations(payload: bytes) -> Tuple[Observation, ...]:
    return tuple(Observation.from_dict(item) for item in json.loads(payload))


def encode_metadata(metadata: Dict[str, Any]) -> bytes:
    return json.dumps(metadata, separators=(",", ":"), sort_keys=True).encode("utf-8")


def decode_metadata(payload: bytes) -> Dict[str, Any]:
    return json.loads(payload)
