"""Geolocation enrichment through an ordered chain of lookup providers.

Each provider is tried in turn under a timeout; a provider whose answer does
not name a country counts as failed and the next one is asked. When every
provider fails a fixed fallback result is returned. Results, including the
fallback, are cached per address for a bounded time so repeated traffic from
one client does not trigger repeated external calls.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

import httpx
from cachetools import TTLCache

from gatehouse.core.clock import Clock
from gatehouse.services.bot_detection import VisitorClassification, classify_visitor, device_type

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class GeoResult:
    """Normalized location, network and crawler signals for one address."""

    country: str = UNKNOWN
    city: str = UNKNOWN
    region: str = UNKNOWN
    latitude: float = 0.0
    longitude: float = 0.0
    isp: str = UNKNOWN
    is_vpn: bool = False
    connection_type: str = "unknown"
    timezone: str = UNKNOWN
    is_crawler: bool = False
    source: str = "fallback"

    @property
    def resolved(self) -> bool:
        """True when the result names a meaningful country."""
        return bool(self.country) and self.country != UNKNOWN

    @property
    def is_local(self) -> bool:
        return self.source == "local"

    def summary(self) -> str:
        """One-line digest used in attack notifications."""
        return (
            f"Geo: {self.city or UNKNOWN}, {self.country or UNKNOWN} | Region: {self.region or UNKNOWN}"
            f" | ISP: {self.isp or UNKNOWN} | VPN: {'yes' if self.is_vpn else 'no'}"
            f" | Connection: {self.connection_type or 'unknown'}"
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "country": data["country"],
            "city": data["city"],
            "region": data["region"],
            "latitude": data["latitude"],
            "longitude": data["longitude"],
            "isp": data["isp"],
            "isVpn": data["is_vpn"],
            "connectionType": data["connection_type"],
            "timezone": data["timezone"],
            "isCrawler": data["is_crawler"],
            "source": data["source"],
        }


GEO_FALLBACK = GeoResult()

LOCAL_RESULT = GeoResult(
    country="Localhost",
    city="Development Machine",
    region="Local",
    isp="Localhost",
    connection_type="ethernet",
    timezone="Local",
    source="local",
)


def _coerce_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize_geo(source: str, **fields: Any) -> GeoResult:
    """Build a :class:`GeoResult`, substituting defaults for missing or empty fields."""
    return GeoResult(
        country=fields.get("country") or UNKNOWN,
        city=fields.get("city") or UNKNOWN,
        region=fields.get("region") or UNKNOWN,
        latitude=_coerce_float(fields.get("latitude")),
        longitude=_coerce_float(fields.get("longitude")),
        isp=fields.get("isp") or UNKNOWN,
        is_vpn=bool(fields.get("is_vpn")),
        connection_type=fields.get("connection_type") or "unknown",
        timezone=fields.get("timezone") or UNKNOWN,
        is_crawler=bool(fields.get("is_crawler")),
        source=source,
    )


def is_local_address(address: str | None) -> bool:
    """Return True for loopback, private, link-local or unparseable addresses."""
    if not address:
        return True
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


class GeoProviderError(RuntimeError):
    """Raised when a provider answers but the answer is unusable."""


class GeoProvider(ABC):
    """One external lookup service in the fallback chain."""

    name: str = "provider"

    @abstractmethod
    async def lookup(self, address: str) -> GeoResult:
        """Resolve ``address`` or raise :class:`GeoProviderError`."""


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Return a nested object field, or an empty mapping when it is missing or malformed."""
    value = payload.get(key)
    return value if isinstance(value, Mapping) else {}


class HttpGeoProvider(GeoProvider):
    """Provider answering a JSON document over HTTP."""

    url_template: str = ""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    def build_url(self, address: str) -> str:
        return self.url_template.format(address=quote(address, safe=""))

    async def lookup(self, address: str) -> GeoResult:
        response = await self._client.get(self.build_url(address))
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, Mapping):
            raise GeoProviderError(f"{self.name} returned a non-object payload")
        return self.parse(payload)

    @abstractmethod
    def parse(self, payload: Mapping[str, Any]) -> GeoResult:
        ...


class IpapiIsProvider(HttpGeoProvider):
    name = "ipapi.is"
    url_template = "https://api.ipapi.is/?q={address}"

    def parse(self, payload: Mapping[str, Any]) -> GeoResult:
        if payload.get("is_bogon"):
            raise GeoProviderError("Bogon or invalid response")
        location = _section(payload, "location")
        company = _section(payload, "company")
        asn = _section(payload, "asn")
        if payload.get("is_mobile"):
            connection = "cellular"
        elif payload.get("is_datacenter"):
            connection = "datacenter"
        else:
            connection = "wifi"
        return normalize_geo(
            self.name,
            country=location.get("country"),
            city=location.get("city"),
            region=location.get("state"),
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            isp=company.get("name") or asn.get("org"),
            is_vpn=payload.get("is_vpn") or payload.get("is_proxy") or payload.get("is_tor"),
            connection_type=connection,
            timezone=location.get("timezone"),
            is_crawler=payload.get("is_crawler"),
        )


class IpApiProvider(HttpGeoProvider):
    name = "ip-api"
    url_template = (
        "http://ip-api.com/json/{address}"
        "?fields=status,message,country,city,regionName,lat,lon,isp,mobile,proxy,hosting,timezone,query"
    )

    def parse(self, payload: Mapping[str, Any]) -> GeoResult:
        if payload.get("status") != "success":
            raise GeoProviderError(payload.get("message") or "ip-api lookup failed")
        return normalize_geo(
            self.name,
            country=payload.get("country"),
            city=payload.get("city"),
            region=payload.get("regionName"),
            latitude=payload.get("lat"),
            longitude=payload.get("lon"),
            isp=payload.get("isp"),
            is_vpn=payload.get("proxy") or payload.get("hosting"),
            connection_type="cellular" if payload.get("mobile") else "wifi",
            timezone=payload.get("timezone"),
        )


class IpWhoIsProvider(HttpGeoProvider):
    name = "ipwho.is"
    url_template = "https://ipwho.is/{address}"

    def parse(self, payload: Mapping[str, Any]) -> GeoResult:
        if payload.get("success") is False:
            raise GeoProviderError(payload.get("message") or "ipwho.is lookup failed")
        connection = _section(payload, "connection")
        security = _section(payload, "security")
        timezone = payload.get("timezone") or {}
        return normalize_geo(
            self.name,
            country=payload.get("country"),
            city=payload.get("city"),
            region=payload.get("region"),
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
            isp=connection.get("isp") or connection.get("org"),
            is_vpn=security.get("vpn") or security.get("proxy") or security.get("tor"),
            connection_type=connection.get("type"),
            timezone=timezone.get("id") if isinstance(timezone, Mapping) else timezone,
        )


PROVIDER_TYPES: dict[str, type[HttpGeoProvider]] = {
    IpapiIsProvider.name: IpapiIsProvider,
    IpApiProvider.name: IpApiProvider,
    IpWhoIsProvider.name: IpWhoIsProvider,
}


def build_providers(names: Iterable[str], client: httpx.AsyncClient) -> list[GeoProvider]:
    """Instantiate the named providers in order; unknown names are rejected."""
    providers: list[GeoProvider] = []
    for name in names:
        try:
            provider_type = PROVIDER_TYPES[name]
        except KeyError as err:
            raise ValueError(f"Unknown geo provider: {name}") from err
        providers.append(provider_type(client))
    return providers


@dataclass(frozen=True)
class VisitorProfile:
    """Geo result combined with the bot/crawler verdict for one request."""

    address: str
    geo: GeoResult
    classification: VisitorClassification
    device_type: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "ip": self.address,
            "geo": self.geo.as_dict(),
            "deviceType": self.device_type,
            **self.classification.as_dict(),
        }


class GeoResolver:
    """Resolve addresses through the provider chain with a TTL cache in front."""

    def __init__(
        self,
        providers: Sequence[GeoProvider],
        clock: Clock,
        *,
        ttl_seconds: float = 30 * 60,
        max_entries: int = 4096,
        timeout_seconds: float = 4.5,
    ) -> None:
        self._providers = list(providers)
        self._timeout = timeout_seconds
        self._cache: TTLCache[str, GeoResult] = TTLCache(
            maxsize=max_entries, ttl=ttl_seconds, timer=clock.now
        )

    @property
    def providers(self) -> list[GeoProvider]:
        return list(self._providers)

    def cached(self, address: str) -> GeoResult | None:
        return self._cache.get(address)

    async def resolve(self, address: str | None) -> GeoResult:
        if address is None or is_local_address(address):
            return LOCAL_RESULT
        cached = self._cache.get(address)
        if cached is not None:
            return cached

        result = await self._query_providers(address)
        self._cache[address] = result
        return result

    async def _query_providers(self, address: str) -> GeoResult:
        for provider in self._providers:
            try:
                result = await asyncio.wait_for(provider.lookup(address), timeout=self._timeout)
            except TimeoutError:
                logger.warning("Geo provider %s timed out for %s", provider.name, address)
                continue
            except Exception as exc:
                logger.warning(
                    "Geo provider %s failed for %s: %s: %s",
                    provider.name,
                    address,
                    exc.__class__.__name__,
                    exc,
                )
                continue
            if result.resolved:
                return result
            logger.debug("Geo provider %s gave an unresolved answer for %s", provider.name, address)
        return GEO_FALLBACK

    async def enrich(self, address: str | None, user_agent: str | None) -> VisitorProfile:
        geo = await self.resolve(address)
        return VisitorProfile(
            address=address or "unknown",
            geo=geo,
            classification=classify_visitor(user_agent, geo.is_crawler, geo.source),
            device_type=device_type(user_agent),
        )

    def expire(self) -> int:
        """Drop expired cache entries and return how many were removed."""
        return len(self._cache.expire())

    def __len__(self) -> int:
        return len(self._cache)
