import httpx
import pytest

from gatehouse.services.geo import (
    GEO_FALLBACK,
    LOCAL_RESULT,
    GeoProviderError,
    GeoResolver,
    GeoResult,
    IpApiProvider,
    IpapiIsProvider,
    IpWhoIsProvider,
    build_providers,
    is_local_address,
)
from tests.conftest import RESOLVED_GEO, FakeGeoProvider


def make_resolver(providers, clock, **kwargs):
    return GeoResolver(providers, clock, ttl_seconds=1800, max_entries=16, **kwargs)


@pytest.mark.parametrize(
    ("address", "local"),
    [
        ("127.0.0.1", True),
        ("10.1.2.3", True),
        ("192.168.0.10", True),
        ("::1", True),
        ("::ffff:127.0.0.1", True),
        ("unknown", True),
        ("", True),
        ("8.8.8.8", False),
        ("2606:4700:4700::1111", False),
    ],
)
def test_is_local_address(address, local):
    assert is_local_address(address) is local


@pytest.mark.asyncio
async def test_second_provider_answers_when_first_is_ambiguous(clock):
    ambiguous = FakeGeoProvider("first", GeoResult(country="Unknown", source="first"))
    second = FakeGeoProvider("second", RESOLVED_GEO)
    resolver = make_resolver([ambiguous, second], clock)

    result = await resolver.resolve("8.8.8.8")

    assert result == RESOLVED_GEO
    assert ambiguous.calls == ["8.8.8.8"]
    assert second.calls == ["8.8.8.8"]


@pytest.mark.asyncio
async def test_repeat_lookup_within_ttl_uses_cache(clock):
    failing = FakeGeoProvider("first", error=GeoProviderError("quota exceeded"))
    second = FakeGeoProvider("second", RESOLVED_GEO)
    resolver = make_resolver([failing, second], clock)

    await resolver.resolve("8.8.8.8")
    clock.advance(1799)
    result = await resolver.resolve("8.8.8.8")

    assert result == RESOLVED_GEO
    assert len(failing.calls) == 1
    assert len(second.calls) == 1


@pytest.mark.asyncio
async def test_cache_entry_expires_after_ttl(clock):
    provider = FakeGeoProvider("only", RESOLVED_GEO)
    resolver = make_resolver([provider], clock)

    await resolver.resolve("8.8.8.8")
    clock.advance(1801)
    assert resolver.expire() == 1
    await resolver.resolve("8.8.8.8")

    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_slow_provider_times_out_and_chain_continues(clock):
    slow = FakeGeoProvider("slow", RESOLVED_GEO, delay=1.0)
    fast = FakeGeoProvider("fast", GeoResult(country="Germany", source="fast"))
    resolver = make_resolver([slow, fast], clock, timeout_seconds=0.01)

    result = await resolver.resolve("8.8.8.8")

    assert result.country == "Germany"


@pytest.mark.asyncio
async def test_all_providers_failing_yields_cached_fallback(clock):
    provider = FakeGeoProvider("broken", error=httpx.ConnectError("unreachable"))
    resolver = make_resolver([provider], clock)

    assert await resolver.resolve("8.8.8.8") == GEO_FALLBACK
    assert await resolver.resolve("8.8.8.8") == GEO_FALLBACK
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_local_addresses_skip_providers(clock):
    provider = FakeGeoProvider("only", RESOLVED_GEO)
    resolver = make_resolver([provider], clock)

    assert await resolver.resolve("127.0.0.1") == LOCAL_RESULT
    assert await resolver.resolve(None) == LOCAL_RESULT
    assert provider.calls == []


@pytest.mark.asyncio
async def test_enrich_combines_geo_and_bot_verdict(clock):
    crawler_geo = GeoResult(country="United States", is_crawler=True, source="fake")
    resolver = make_resolver([FakeGeoProvider("only", crawler_geo)], clock)

    profile = await resolver.enrich("8.8.8.8", "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)")
    data = profile.as_dict()

    assert data["ip"] == "8.8.8.8"
    assert data["isBot"] is True
    assert data["botReason"] == "ip-intelligence:fake"
    assert data["deviceType"] == "mobile"
    assert data["geo"]["country"] == "United States"


def test_summary_line():
    assert RESOLVED_GEO.summary() == (
        "Geo: Mountain View, United States | Region: California | ISP: Google LLC"
        " | VPN: no | Connection: datacenter"
    )


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_ipapi_is_provider_normalizes_payload():
    def handler(request):
        assert request.url.host == "api.ipapi.is"
        assert request.url.params["q"] == "8.8.8.8"
        return httpx.Response(
            200,
            json={
                "is_datacenter": True,
                "is_vpn": False,
                "is_proxy": True,
                "location": {"country": "United States", "city": "Mountain View", "state": "California"},
                "company": {"name": "Google LLC"},
            },
        )

    async with _client(handler) as client:
        result = await IpapiIsProvider(client).lookup("8.8.8.8")

    assert result.country == "United States"
    assert result.region == "California"
    assert result.isp == "Google LLC"
    assert result.is_vpn is True
    assert result.connection_type == "datacenter"
    assert result.source == "ipapi.is"


@pytest.mark.asyncio
async def test_ip_api_provider_rejects_failed_status():
    async with _client(lambda request: httpx.Response(200, json={"status": "fail", "message": "reserved range"})) as client:
        with pytest.raises(GeoProviderError):
            await IpApiProvider(client).lookup("8.8.8.8")


@pytest.mark.asyncio
async def test_ipwho_is_provider_reads_nested_fields():
    payload = {
        "success": True,
        "country": "Australia",
        "city": "Sydney",
        "region": "New South Wales",
        "connection": {"isp": "Cloudflare", "type": "business"},
        "security": {"vpn": True},
        "timezone": {"id": "Australia/Sydney"},
    }
    async with _client(lambda request: httpx.Response(200, json=payload)) as client:
        result = await IpWhoIsProvider(client).lookup("1.1.1.1")

    assert result.city == "Sydney"
    assert result.isp == "Cloudflare"
    assert result.is_vpn is True
    assert result.timezone == "Australia/Sydney"


@pytest.mark.asyncio
async def test_http_error_status_is_raised_as_httpx_error(clock):
    async with _client(lambda request: httpx.Response(503)) as client:
        resolver = make_resolver([IpWhoIsProvider(client)], clock)
        assert await resolver.resolve("1.1.1.1") == GEO_FALLBACK


def test_build_providers_keeps_order_and_rejects_unknown():
    client = httpx.AsyncClient()
    providers = build_providers(["ipwho.is", "ipapi.is"], client)
    assert [provider.name for provider in providers] == ["ipwho.is", "ipapi.is"]
    with pytest.raises(ValueError):
        build_providers(["nope"], client)


@pytest.mark.asyncio
async def test_malformed_nested_fields_fall_through_to_next_provider(clock):
    def handler(request):
        if request.url.host == "api.ipapi.is":
            return httpx.Response(200, json={"company": "Acme", "location": "nowhere", "asn": 15169})
        return httpx.Response(200, json={"status": "success", "country": "Germany", "city": "Berlin"})

    async with _client(handler) as client:
        resolver = make_resolver([IpapiIsProvider(client), IpApiProvider(client)], clock)
        result = await resolver.resolve("8.8.8.8")

    assert result.country == "Germany"
    assert result.source == "ip-api"


@pytest.mark.asyncio
async def test_unexpected_provider_error_does_not_break_the_chain(clock):
    broken = FakeGeoProvider("broken", error=AttributeError("'str' object has no attribute 'get'"))
    second = FakeGeoProvider("second", RESOLVED_GEO)
    resolver = make_resolver([broken, second], clock)

    assert await resolver.resolve("8.8.8.8") == RESOLVED_GEO
    assert broken.calls == ["8.8.8.8"]
