from __future__ import annotations
import logging
import requests

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class Geocoder:
    """Google geocoding lookup. Returns None instead of raising; the caller keeps its default."""

    def __init__(self, api_key: str | None, timeout: float = 10.0, url: str = GEOCODE_URL):
        self.api_key = api_key
        self.timeout = timeout
        self.url = url

    def geocode(self, address: str) -> tuple[float, float] | None:
        if not self.api_key or not address:
            return None
        try:
            resp = requests.get(self.url, params={"address": address, "key": self.api_key}, timeout=self.timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Geocoding exception for %r: %s", address, e)
            return None
        if not isinstance(data, dict):
            logger.error("Geocoding returned a non-object body for address: %s", address)
            return None
        if resp.status_code != 200 or data.get("status") != "OK" or not data.get("results"):
            logger.error("Geocoding failed for address: %s (status=%s)", address, data.get("status"))
            return None
        try:
            location = data["results"][0]["geometry"]["location"]
            lat, lng = float(location["lat"]), float(location["lng"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("Geocoding result for %r has no usable location: %r", address, e)
            return None
        logger.info("Geocoded address: %s to lat=%s lng=%s", address, lat, lng)
        return lat, lng
