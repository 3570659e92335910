"""Best-effort geolocation providers.

A provider never raises: any failure yields a Location with all fields
set to None, so a missing position can never block an attendance match.
"""

import asyncio
import json
import logging
import urllib.request
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .constants import GeolocationSettings, get_geolocation_settings
from .types import Location

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = Location()


class BaseGeolocationProvider(ABC):
    """Abstract base class for location lookups."""

    async def get_best_effort_location(self, timeout_ms: int) -> Location:
        """Look up the current location within a time bound.

        Args:
            timeout_ms: Maximum time to wait

        Returns:
            Location, or UNKNOWN_LOCATION on any failure or timeout
        """
        try:
            return await asyncio.wait_for(self._locate(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"Geolocation timed out after {timeout_ms} ms")
        except Exception as e:
            logger.warning(f"Geolocation failed: {e}")
        return UNKNOWN_LOCATION

    @abstractmethod
    async def _locate(self) -> Location:
        pass


class NullGeolocationProvider(BaseGeolocationProvider):
    """Provider for devices without location support."""

    async def _locate(self) -> Location:
        return UNKNOWN_LOCATION


class FixedGeolocationProvider(BaseGeolocationProvider):
    """Reports the configured site coordinates (e.g. a classroom kiosk)."""

    def __init__(self, coordinates: Tuple[float, float], accuracy: Optional[float] = None):
        self.coordinates = coordinates
        self.accuracy = accuracy

    async def _locate(self) -> Location:
        lat, lng = self.coordinates
        return Location(lat=lat, lng=lng, accuracy=self.accuracy)


class IPGeolocationProvider(BaseGeolocationProvider):
    """Coarse location from a JSON IP lookup service."""

    # City-level resolution of IP lookups, in meters
    IP_ACCURACY_M = 5000.0

    def __init__(self, url: str):
        self.url = url

    async def _locate(self) -> Location:
        return await asyncio.to_thread(self._fetch)

    def _fetch(self) -> Location:
        request = urllib.request.Request(self.url, headers={"Accept": "application/json"})
        with urllib.request.urlopen(request, timeout=10) as response:
            payload = json.loads(response.read().decode("utf-8"))

        lat = payload.get("latitude", payload.get("lat"))
        lng = payload.get("longitude", payload.get("lon"))
        if lat is None or lng is None:
            return UNKNOWN_LOCATION
        return Location(lat=float(lat), lng=float(lng), accuracy=self.IP_ACCURACY_M)


def create_geolocation_provider(
    settings: Optional[GeolocationSettings] = None,
) -> BaseGeolocationProvider:
    """Create the provider selected in the configuration."""
    settings = settings or get_geolocation_settings()
    provider = settings.provider.lower()

    if provider == "fixed":
        if settings.fixed_coordinates is None:
            logger.warning("Fixed geolocation selected but no coordinates configured")
            return NullGeolocationProvider()
        return FixedGeolocationProvider(settings.fixed_coordinates, settings.fixed_accuracy)
    if provider == "ip":
        return IPGeolocationProvider(settings.ip_lookup_url)
    if provider != "none":
        logger.warning(f"Unknown geolocation provider '{provider}', location disabled")
    return NullGeolocationProvider()
