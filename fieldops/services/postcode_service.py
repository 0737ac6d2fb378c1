"""
Postcode to coordinate lookup.

Talks to a postcodes.io compatible API over httpx with tenacity retries on
transport errors. Results are memoised in a bounded TTL cache. Lookups never
raise: every failure comes back as a LookupResult with success=False so
callers can fall back to postcode prefix matching.
"""
from collections import OrderedDict
from dataclasses import dataclass
import logging
from threading import Lock
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

import httpx
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fieldops.lib.config_flags import get_feature_flags
from fieldops.lib.errors import UpstreamLookupException
from fieldops.lib.geo import clean_postcode
from fieldops.lib.logging import get_logger, log_decision
from fieldops.lib.metrics import get_metrics_collector
from fieldops.lib.settings import settings
from fieldops.models.engineers import CoverageArea
from fieldops.models.sites import Site

logger = get_logger(__name__)

# postcodes.io accepts at most 100 postcodes per bulk request
BULK_LIMIT = 100


@dataclass(frozen=True)
class LookupResult:
    """Outcome of one coordinate lookup."""
    success: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if not self.success:
            return None
        return (self.latitude, self.longitude)


class PostcodeCache:
    """
    Thread-safe TTL cache keyed by normalised postcode.

    Entries expire after ttl_seconds; when max_entries is reached the oldest
    entry is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: int = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, LookupResult]]" = OrderedDict()
        self._lock = Lock()

    def get(self, key: str) -> Optional[LookupResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, result = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return result

    def set(self, key: str, result: LookupResult) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock(), result)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PostcodeClient:
    """Client for a postcodes.io compatible lookup API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        retries: int = None,
        cache: Optional[PostcodeCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        retry_wait=None,
    ):
        """
        Args:
            base_url: API root, defaults to settings.postcode_api_url
            timeout: Per-request timeout in seconds
            retries: Attempts per request on transport errors
            cache: Shared result cache (a fresh one is created if omitted)
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            retry_wait: tenacity wait strategy between attempts
        """
        self.base_url = (base_url or settings.postcode_api_url).rstrip("/")
        self.retries = retries or settings.postcode_lookup_retries
        self.cache = cache if cache is not None else PostcodeCache(
            ttl_seconds=settings.postcode_cache_ttl_seconds,
            max_entries=settings.postcode_cache_max_entries,
        )
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.2, max=2)
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or settings.postcode_lookup_timeout_seconds,
            transport=transport,
        )
        self.metrics = get_metrics_collector()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs) -> Optional[dict]:
        """
        Send a request, retrying transport errors.

        Returns the decoded JSON body, or None for a 404.

        Raises:
            UpstreamLookupException: Service unreachable or answered garbage
        """
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.retries),
                wait=self._retry_wait,
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise UpstreamLookupException(
                "Postcode service unreachable",
                details={"path": path, "error": str(e)},
            )

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise UpstreamLookupException(
                f"Postcode service returned HTTP {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )
        try:
            return response.json()
        except ValueError:
            raise UpstreamLookupException(
                "Postcode service returned invalid JSON",
                details={"path": path},
            )

    @staticmethod
    def _parse_result(payload: Optional[dict]) -> LookupResult:
        result = (payload or {}).get("result") or {}
        latitude = result.get("latitude")
        longitude = result.get("longitude")
        if latitude is None or longitude is None:
            return LookupResult(success=False, error="No coordinates for postcode")
        return LookupResult(success=True, latitude=float(latitude), longitude=float(longitude))

    def _cached_lookup(self, cache_key: str, path: str, label: str) -> LookupResult:
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.metrics.increment_postcode_lookups(outcome="cache_hit")
            return cached

        try:
            payload = self._request("GET", path)
        except UpstreamLookupException as e:
            log_decision(
                logger, "lookup", "Postcode lookup failed", level=logging.WARNING,
                postcode=label, error=e.message, upstream=e.details,
            )
            self.metrics.increment_postcode_lookups(outcome="failed")
            return LookupResult(success=False, error=e.message)

        if payload is None:
            self.metrics.increment_postcode_lookups(outcome="not_found")
            return LookupResult(success=False, error=f"Postcode {label} not found")

        result = self._parse_result(payload)
        if result.success:
            self.cache.set(cache_key, result)
            self.metrics.increment_postcode_lookups(outcome="resolved")
        else:
            self.metrics.increment_postcode_lookups(outcome="not_found")
        return result

    def lookup(self, postcode: str) -> LookupResult:
        """Resolve a full postcode to coordinates."""
        cleaned = clean_postcode(postcode)
        if not cleaned:
            return LookupResult(success=False, error="Empty postcode")
        return self._cached_lookup(cleaned, f"/postcodes/{cleaned}", cleaned)

    def lookup_outcode(self, outcode: str) -> LookupResult:
        """Resolve an outward code ("SW1A") to the centre of that district."""
        cleaned = clean_postcode(outcode)
        if not cleaned:
            return LookupResult(success=False, error="Empty outcode")
        return self._cached_lookup(f"outcode:{cleaned}", f"/outcodes/{cleaned}", cleaned)

    def bulk_lookup(self, postcodes: Iterable[str]) -> Dict[str, LookupResult]:
        """
        Resolve many postcodes, using the cache first and bulk requests for the rest.

        Returns a mapping keyed by normalised postcode.
        """
        results: Dict[str, LookupResult] = {}
        pending = []
        for postcode in postcodes:
            cleaned = clean_postcode(postcode)
            if not cleaned or cleaned in results or cleaned in pending:
                continue
            cached = self.cache.get(cleaned)
            if cached is not None:
                self.metrics.increment_postcode_lookups(outcome="cache_hit")
                results[cleaned] = cached
            else:
                pending.append(cleaned)

        for start in range(0, len(pending), BULK_LIMIT):
            chunk = pending[start:start + BULK_LIMIT]
            try:
                payload = self._request("POST", "/postcodes", json={"postcodes": chunk})
            except UpstreamLookupException as e:
                logger.warning(
                    "Bulk postcode lookup failed",
                    extra={"count": len(chunk), "error": e.message},
                )
                self.metrics.increment_postcode_lookups(outcome="failed", amount=len(chunk))
                for cleaned in chunk:
                    results[cleaned] = LookupResult(success=False, error=e.message)
                continue

            answered = {}
            for item in (payload or {}).get("result") or []:
                answered[clean_postcode(item.get("query") or "")] = self._parse_result(item)
            for cleaned in chunk:
                result = answered.get(cleaned) or LookupResult(
                    success=False, error=f"Postcode {cleaned} not found"
                )
                if result.success:
                    self.cache.set(cleaned, result)
                    self.metrics.increment_postcode_lookups(outcome="resolved")
                else:
                    self.metrics.increment_postcode_lookups(outcome="not_found")
                results[cleaned] = result

        return results


class CoordinateResolver:
    """
    Lazily fills in missing coordinates on sites and coverage areas.

    Resolved coordinates are written to the row (flushed, committed by the
    caller's unit of work). Nothing is written on failure.
    """

    def __init__(self, client: Optional[PostcodeClient] = None):
        self._client = client

    @property
    def client(self) -> PostcodeClient:
        if self._client is None:
            self._client = get_postcode_client()
        return self._client

    def site_coordinates(self, db: Session, site: Site) -> Optional[Tuple[float, float]]:
        """Return the site's coordinates, resolving and persisting them on first use."""
        if site.has_coordinates:
            return (site.latitude, site.longitude)
        if not get_feature_flags().postcode_lookup_enabled:
            return None

        result = self.client.lookup(site.postcode)
        if not result.success:
            return None

        site.latitude = result.latitude
        site.longitude = result.longitude
        db.flush()
        logger.info(
            "Resolved site coordinates",
            extra={"site_id": str(site.id), "postcode": site.postcode},
        )
        return result.coordinates

    def resolve_sites(self, db: Session, sites: Iterable[Site]) -> int:
        """
        Fill in coordinates for every site missing them with bulk requests.

        Returns the number of sites that gained coordinates.
        """
        missing = [site for site in sites if not site.has_coordinates]
        if not missing or not get_feature_flags().postcode_lookup_enabled:
            return 0

        results = self.client.bulk_lookup(site.postcode for site in missing)
        resolved = 0
        for site in missing:
            result = results.get(clean_postcode(site.postcode))
            if result is None or not result.success:
                continue
            site.latitude = result.latitude
            site.longitude = result.longitude
            resolved += 1
        db.flush()

        log_decision(
            logger, "lookup", "Resolved site coordinates in bulk",
            requested=len(missing), resolved=resolved,
        )
        return resolved

    def coverage_centre(self, db: Session, area: CoverageArea) -> Optional[Tuple[float, float]]:
        """Return the coverage area's centre, resolving it from its outward code if unset."""
        if area.has_center:
            return (area.center_latitude, area.center_longitude)
        if not get_feature_flags().postcode_lookup_enabled:
            return None

        result = self.client.lookup_outcode(area.postcode_prefix)
        if not result.success:
            return None

        area.center_latitude = result.latitude
        area.center_longitude = result.longitude
        db.flush()
        return result.coordinates


# Global client instance
_postcode_client: Optional[PostcodeClient] = None


def get_postcode_client() -> PostcodeClient:
    """Get or create the global postcode client."""
    global _postcode_client
    if _postcode_client is None:
        _postcode_client = PostcodeClient()
    return _postcode_client


def set_postcode_client(client: Optional[PostcodeClient]) -> None:
    """Replace the global postcode client (tests install a mocked transport)."""
    global _postcode_client
    _postcode_client = client
