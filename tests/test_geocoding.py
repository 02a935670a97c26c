"""Tests for address geocoding."""

import httpx
import pytest

from favorants.geocoding import Coordinates, GeocodingClient, build_query
from favorants.resilience.retry import RetryConfig

NO_WAIT = RetryConfig(max_attempts=2, base_delay=0.0, timeout=1.0, max_jitter=0.0)


def client_for(handler):
    return GeocodingClient(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_config=NO_WAIT,
    )


class TestBuildQuery:
    """Test query assembly."""

    def test_joins_parts_with_country(self):
        assert build_query("Via Roma 1", "00100", "Roma") == "Via Roma 1, 00100, Roma, Italy"

    def test_skips_blank_parts(self):
        assert build_query("Via Roma 1", None, " ", country="") == "Via Roma 1"


class TestGeocode:
    """Test lookups against a mocked Nominatim."""

    @pytest.mark.asyncio
    async def test_returns_best_match(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"lat": "41.9", "lon": "12.5"}])

        client = client_for(handler)
        result = await client.geocode("Via Roma 1, Roma, Italy")

        assert result == Coordinates(latitude=41.9, longitude=12.5)
        params = seen[0].url.params
        assert params["q"] == "Via Roma 1, Roma, Italy"
        assert params["format"] == "json"
        assert params["limit"] == "1"
        assert params["countrycodes"] == "it"
        assert seen[0].headers["User-Agent"] == "Favorants/1.0"

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self):
        client = client_for(lambda request: httpx.Response(200, json=[]))
        assert await client.geocode("Nowhere") is None

    @pytest.mark.asyncio
    async def test_blank_address_skips_request(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=[])

        client = client_for(handler)
        assert await client.geocode("   ") is None
        assert calls == 0

    @pytest.mark.asyncio
    async def test_retries_service_unavailable(self):
        """Test that a 503 is retried and the next answer used."""
        responses = [
            httpx.Response(503),
            httpx.Response(200, json=[{"lat": "45.4", "lon": "9.2"}]),
        ]

        client = client_for(lambda request: responses.pop(0))
        result = await client.geocode("Piazza Duomo, Milano")

        assert result == Coordinates(latitude=45.4, longitude=9.2)
        assert responses == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(400)

        client = client_for(handler)
        with pytest.raises(httpx.HTTPStatusError):
            await client.geocode("Via Roma 1")
        assert calls == 1

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
        client = GeocodingClient(http_client=http, retry_config=NO_WAIT)

        await client.close()

        assert http.is_closed is False
        await http.aclose()
