# flightaudit/weather.py
"""
Weather provider contract and the aviationweather.gov client.

fetch() contract:
 - returns a WeatherSnapshot for the departure station
 - returns None when the station has no data (204, 404, empty result)
 - raises WeatherUnavailable on transport failure or any other non-2xx answer

The audit orchestrator treats both None and WeatherUnavailable as degraded data,
never as a fatal error.
"""

from typing import Any, Dict, List, Optional, Protocol
import logging
import os

import httpx

from .exceptions import WeatherUnavailable
from .models import FlightCategory, WeatherSnapshot, Wind, utcnow

log = logging.getLogger("weather")

# ---------------- CONFIG ----------------
WEATHER_BASE_URL = os.getenv("FLIGHTAUDIT_WEATHER_URL", "https://aviationweather.gov/api/data")
WEATHER_TIMEOUT_SECONDS = float(os.getenv("FLIGHTAUDIT_WEATHER_TIMEOUT", "10"))
CONNECT_TIMEOUT_SECONDS = 5.0
DEFAULT_VISIBILITY_SM = 10.0
CEILING_COVERS = ("BKN", "OVC", "OVX")
# ----------------------------------------


class WeatherProvider(Protocol):
    async def fetch(self, airport_code: str) -> Optional[WeatherSnapshot]:
        ...


# ---------- METAR helpers ----------
def station_code(airport_code: str) -> str:
    """ICAO station id. Three-letter US identifiers get the K prefix (SFO -> KSFO)."""
    code = (airport_code or "").strip().upper()
    if len(code) == 3:
        return f"K{code}"
    return code


def find_ceiling(clouds: Optional[List[Dict[str, Any]]]) -> Optional[int]:
    """Lowest broken or overcast layer, in feet AGL. None when the sky has no ceiling."""
    bases = []
    for layer in clouds or []:
        if not isinstance(layer, dict):
            continue
        if str(layer.get("cover", "")).upper() not in CEILING_COVERS:
            continue
        base = layer.get("base")
        if base is None:
            continue
        bases.append(int(base))
    return min(bases) if bases else None


def parse_visibility(value: Any) -> float:
    """Statute miles from the METAR 'visib' field ('10+', '1/2', '1 1/2', 6, None)."""
    if value is None:
        return DEFAULT_VISIBILITY_SM
    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip().upper().rstrip("+").replace("SM", "").strip()
    if not s:
        return DEFAULT_VISIBILITY_SM
    try:
        total = 0.0
        for part in s.split():
            if "/" in part:
                num, den = part.split("/", 1)
                total += float(num) / float(den)
            else:
                total += float(part)
        return total
    except (ValueError, ZeroDivisionError):
        log.warning("Unparseable visibility %r, assuming %s SM", value, DEFAULT_VISIBILITY_SM)
        return DEFAULT_VISIBILITY_SM


def determine_flight_category(visibility: float, ceiling: Optional[int]) -> FlightCategory:
    if (ceiling is not None and ceiling < 500) or visibility < 1:
        return FlightCategory.LIFR
    if (ceiling is not None and ceiling < 1000) or visibility < 3:
        return FlightCategory.IFR
    if (ceiling is not None and ceiling < 3000) or visibility < 5:
        return FlightCategory.MVFR
    return FlightCategory.VFR


def snapshot_from_metar(station: str, metar: Dict[str, Any], taf: Optional[str] = None) -> WeatherSnapshot:
    clouds = metar.get("clouds")
    visibility = parse_visibility(metar.get("visib"))
    ceiling = find_ceiling(clouds)
    wdir = metar.get("wdir")
    return WeatherSnapshot(
        station=station,
        metar=metar.get("rawOb") or "",
        taf=taf,
        flight_category=determine_flight_category(visibility, ceiling),
        visibility=visibility,
        ceiling=ceiling,
        # variable winds come back as "VRB"
        wind=Wind(
            direction=wdir if isinstance(wdir, (int, float)) else 0,
            speed=metar.get("wspd") or 0,
            gust=metar.get("wgst") or None,
        ),
        fetched_at=utcnow(),
    )


# ---------- Client ----------
class AviationWeatherProvider:
    """
    METAR/TAF client for the aviationweather.gov data API.

    transport is injectable so tests can swap in httpx.MockTransport.
    A TAF failure never fails the fetch; the snapshot just carries no forecast.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        include_taf: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or WEATHER_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(timeout or WEATHER_TIMEOUT_SECONDS, connect=CONNECT_TIMEOUT_SECONDS)
        self.include_taf = include_taf
        self.transport = transport

    async def _get_json(self, path: str, params: Dict[str, Any], airport: str) -> Optional[Any]:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(url, params=params, headers={"Accept": "application/json"})
            except httpx.RequestError as e:
                log.error("Request error calling weather API for %s: %s", airport, e)
                raise WeatherUnavailable(airport, reason=str(e) or e.__class__.__name__) from e

        if response.status_code in (204, 404):
            return None
        if response.status_code >= 400:
            log.error("Weather API error for %s: %s", airport, response.status_code)
            raise WeatherUnavailable(airport, reason=f"HTTP {response.status_code}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise WeatherUnavailable(airport, reason="invalid JSON from weather API") from e

    async def fetch_metar(self, airport_code: str) -> Optional[Dict[str, Any]]:
        station = station_code(airport_code)
        data = await self._get_json("/metar", {"ids": station, "format": "json", "hours": 1}, station)
        if not data or not isinstance(data, list):
            return None
        return data[0]

    async def fetch_taf(self, airport_code: str) -> Optional[str]:
        station = station_code(airport_code)
        data = await self._get_json("/taf", {"ids": station, "format": "json"}, station)
        if not data or not isinstance(data, list):
            return None
        return data[0].get("rawTAF") or None

    async def fetch(self, airport_code: str) -> Optional[WeatherSnapshot]:
        station = station_code(airport_code)
        metar = await self.fetch_metar(station)
        if metar is None:
            log.info("No METAR available for %s", station)
            return None

        taf = None
        if self.include_taf:
            try:
                taf = await self.fetch_taf(station)
            except WeatherUnavailable as e:
                log.warning("TAF unavailable for %s: %s", station, e.message)

        snapshot = snapshot_from_metar(station, metar, taf)
        log.info("Weather for %s: %s", station, snapshot.flight_category.value)
        return snapshot


__all__ = [
    "AviationWeatherProvider",
    "WeatherProvider",
    "determine_flight_category",
    "find_ceiling",
    "parse_visibility",
    "snapshot_from_metar",
    "station_code",
]
