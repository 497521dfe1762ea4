"""IP geolocation backed by a MaxMind GeoIP2 city database."""
from __future__ import annotations

import ipaddress
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors

from ipguard.cache import TTLCache

LOGGER = logging.getLogger(__name__)


class GeoIPLocator:
    """Best-effort ``address -> location`` lookups.

    Returns ``None`` for private or malformed addresses, when no database
    is configured, and on any lookup error. The database reader is opened
    on first use; results (misses included) are cached per address.
    """

    def __init__(self, db_path: Optional[str] = None, *, cache_ttl_seconds: float = 3600) -> None:
        self._db_path = db_path
        self._reader: geoip2.database.Reader | None = None
        self._reader_failed = False
        self._reader_lock = Lock()
        self._cache = TTLCache(cache_ttl_seconds)

    def lookup(self, address: str) -> Optional[Dict[str, Any]]:
        if not address or not self._db_path or self._is_private(address):
            return None
        hit, cached = self._cache.lookup(address)
        if hit:
            return cached
        location = self._lookup_uncached(address)
        self._cache.set(address, location)
        return location

    __call__ = lookup

    def _lookup_uncached(self, address: str) -> Optional[Dict[str, Any]]:
        reader = self._get_reader()
        if reader is None:
            return None
        try:
            response = reader.city(address)
        except geoip2.errors.AddressNotFoundError:
            LOGGER.debug("address not in GeoIP database", extra={"client_ip": address})
            return None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("GeoIP lookup failed: %s", exc, extra={"client_ip": address})
            return None

        latitude = response.location.latitude
        longitude = response.location.longitude
        subdivision = response.subdivisions.most_specific.iso_code
        return {
            "country": response.country.iso_code,
            "region": subdivision,
            "city": response.city.name,
            "timezone": response.location.time_zone,
            "ll": [latitude, longitude] if latitude is not None and longitude is not None else None,
        }

    def _get_reader(self) -> geoip2.database.Reader | None:
        if self._reader is not None or self._reader_failed:
            return self._reader
        with self._reader_lock:
            if self._reader is not None or self._reader_failed:
                return self._reader
            db_file = Path(self._db_path or "")
            try:
                self._reader = geoip2.database.Reader(str(db_file))
                LOGGER.info("GeoIP database loaded from %s", db_file)
            except (OSError, ValueError, RuntimeError) as exc:
                LOGGER.warning("GeoIP database unavailable at %s: %s", db_file, exc)
                self._reader_failed = True
            return self._reader

    @staticmethod
    def _is_private(address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return True
        return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
