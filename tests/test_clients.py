from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest import mock

import geoip2.errors
from starlette.requests import Request

from ipguard.clients import GeoIPLocator, describe_user_agent, get_client_address

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def make_request(headers=None, client=("10.0.0.2", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_forwarded_for_first_hop_wins():
    request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

    assert get_client_address(request) == "203.0.113.7"


def test_forwarded_headers_ignored_when_untrusted():
    request = make_request({"X-Forwarded-For": "203.0.113.7"})

    assert get_client_address(request, trust_forwarded=False) == "10.0.0.2"


def test_real_ip_then_peer_then_unknown():
    assert get_client_address(make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"
    assert get_client_address(make_request()) == "10.0.0.2"
    assert get_client_address(make_request(client=None)) == "unknown"


def test_describe_user_agent():
    descriptor = describe_user_agent(CHROME_UA)

    assert descriptor["full"] == CHROME_UA
    assert descriptor["browser"] == "Chrome"
    assert descriptor["os"] == "Windows"
    assert descriptor["isBot"] is False


def test_describe_missing_user_agent():
    assert describe_user_agent(None) == {"full": ""}


def test_geoip_disabled_without_database():
    assert GeoIPLocator(None).lookup("8.8.8.8") is None


def test_geoip_skips_private_and_malformed_addresses():
    locator = GeoIPLocator("/does/not/matter.mmdb")

    with mock.patch("geoip2.database.Reader") as reader_cls:
        assert locator.lookup("192.168.1.10") is None
        assert locator.lookup("unknown") is None

    reader_cls.assert_not_called()


def test_geoip_lookup_is_mapped_and_cached():
    response = SimpleNamespace(
        country=SimpleNamespace(iso_code="US"),
        subdivisions=SimpleNamespace(most_specific=SimpleNamespace(iso_code="CA")),
        city=SimpleNamespace(name="Mountain View"),
        location=SimpleNamespace(latitude=37.4, longitude=-122.1, time_zone="America/Los_Angeles"),
    )
    locator = GeoIPLocator("/data/GeoLite2-City.mmdb")

    with mock.patch("geoip2.database.Reader") as reader_cls:
        reader_cls.return_value.city.return_value = response
        first = locator.lookup("8.8.8.8")
        second = locator.lookup("8.8.8.8")

    assert first == {
        "country": "US",
        "region": "CA",
        "city": "Mountain View",
        "timezone": "America/Los_Angeles",
        "ll": [37.4, -122.1],
    }
    assert second == first
    reader_cls.return_value.city.assert_called_once_with("8.8.8.8")


def test_geoip_fails_open():
    locator = GeoIPLocator("/data/GeoLite2-City.mmdb")

    with mock.patch("geoip2.database.Reader") as reader_cls:
        reader_cls.return_value.city.side_effect = geoip2.errors.AddressNotFoundError("missing")
        assert locator.lookup("8.8.8.8") is None
        reader_cls.return_value.city.side_effect = ValueError("broken")
        assert locator.lookup("1.1.1.1") is None


def test_geoip_missing_database_fails_open(tmp_path):
    locator = GeoIPLocator(str(tmp_path / "missing.mmdb"))

    assert locator.lookup("8.8.8.8") is None


def test_geoip_reader_opened_once_under_concurrency():
    locator = GeoIPLocator("/data/GeoLite2-City.mmdb")
    reader = mock.Mock()
    reader.city.side_effect = geoip2.errors.AddressNotFoundError("missing")

    def slow_open(path):
        time.sleep(0.05)
        return reader

    addresses = [f"8.8.4.{i}" for i in range(1, 9)]
    with mock.patch("geoip2.database.Reader", side_effect=slow_open) as reader_cls:
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(locator.lookup, addresses))

    reader_cls.assert_called_once()
    assert reader.city.call_count == len(addresses)
