"""HTTP client for the Grand Lyon open-data feeds with retry logic.

The provider serves four structurally different formats: SIRI Lite 2.0 JSON
(realtime), GeoServer WFS GeoJSON (stations, stops, lines), a REST JSON
datapusher (alerts) and, for line pictograms, a CSV file shipped alongside
the service. Each getter returns the plain list of provider records.
"""

import asyncio
import csv
from pathlib import Path
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lyon_transit.models import EndpointConfig, LineCategory, ProviderConfig, RetryConfig
from lyon_transit.siri import dig


class FeedRejectedError(Exception):
    """The provider answered with a 4xx: not retried, not a transport failure."""

    def __init__(self, feed: str, status_code: int) -> None:
        self.feed = feed
        self.status_code = status_code
        super().__init__(f"HTTP {status_code} from feed {feed}")


# Exception types that warrant a retry
RETRYABLE_EXCEPTIONS = (
    httpx.TransportError,  # Connection errors
    httpx.TimeoutException,  # Timeouts
    httpx.HTTPStatusError,  # 5xx server errors (after raise_for_status)
)


def create_retrying(retry: RetryConfig) -> AsyncRetrying:
    """Create a tenacity AsyncRetrying instance from an endpoint's retry policy.

    Args:
        retry: Retry settings for the endpoint.

    Returns:
        An AsyncRetrying instance for use in async for loops.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(retry.max_attempts),
        wait=wait_exponential(
            multiplier=retry.backoff_base,
            max=retry.backoff_max,
        ),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        reraise=True,
    )


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def unwrap_vehicle_activity(payload: Any) -> list[dict[str, Any]]:
    """``Siri.ServiceDelivery.VehicleMonitoringDelivery[0].VehicleActivity``, or []."""
    return _as_list(
        dig(payload, "Siri", "ServiceDelivery", "VehicleMonitoringDelivery", 0, "VehicleActivity")
    )


def unwrap_estimated_journeys(payload: Any) -> list[dict[str, Any]]:
    """``...EstimatedTimetableDelivery[0].EstimatedJourneyVersionFrame[0].EstimatedVehicleJourney``."""
    return _as_list(
        dig(
            payload,
            "Siri",
            "ServiceDelivery",
            "EstimatedTimetableDelivery",
            0,
            "EstimatedJourneyVersionFrame",
            0,
            "EstimatedVehicleJourney",
        )
    )


def unwrap_values(payload: Any) -> list[dict[str, Any]]:
    """The ``values`` array of a datapusher REST response, or []."""
    return _as_list(dig(payload, "values"))


def unwrap_features(payload: Any) -> list[dict[str, Any]]:
    """The ``features`` array of a GeoJSON FeatureCollection, or []."""
    return _as_list(dig(payload, "features"))


def read_line_icons_csv(path: Path) -> list[list[str]]:
    """Rows of the ``code_ligne;picto_mode;picto_ligne`` CSV, header and blank lines skipped."""
    with path.open(encoding="utf-8-sig", newline="") as f:
        rows = [row for row in csv.reader(f, delimiter=";") if any(cell.strip() for cell in row)]
    return rows[1:]


class GrandLyonClient:
    """Authenticated client for the data.grandlyon.com feeds."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_token: str,
        provider: ProviderConfig | None = None,
        line_icons_path: Path = Path("./Liste_pictogrammes_lignes.csv"),
    ) -> None:
        """Initialize the client.

        Args:
            http_client: Shared async HTTP client (connection pool).
            api_token: Basic credential sent with every request.
            provider: Endpoint catalog; defaults to the built-in Grand Lyon URLs.
            line_icons_path: Local pictogram CSV.
        """
        self._http = http_client
        self._headers = {"Authorization": f"Basic {api_token}"}
        self.provider = provider or ProviderConfig()
        self.line_icons_path = line_icons_path

    async def _do_get(
        self,
        feed: str,
        endpoint: EndpointConfig,
        params: dict[str, str] | None,
    ) -> Any:
        """Perform a single GET and decode the JSON body.

        Raises:
            FeedRejectedError: For 4xx responses.
            httpx.HTTPStatusError: For 5xx responses.
            httpx.TransportError: For network errors.
            httpx.TimeoutException: For timeout errors.
        """
        response = await self._http.get(
            str(endpoint.url),
            params=params,
            headers=self._headers,
            timeout=self.provider.timeout_for(endpoint),
        )

        if 400 <= response.status_code < 500:
            raise FeedRejectedError(feed, response.status_code)

        response.raise_for_status()
        return response.json()

    async def get_json(
        self,
        feed: str,
        endpoint: EndpointConfig,
        params: dict[str, str] | None = None,
    ) -> Any:
        """GET an endpoint with the endpoint's retry policy.

        Args:
            feed: Feed name used in errors and logs.
            endpoint: Endpoint to query.
            params: Extra query parameters, merged with any in the URL.

        Returns:
            The decoded JSON payload.
        """
        retrying = create_retrying(self.provider.retry_for(endpoint))

        async for attempt in retrying:
            with attempt:
                return await self._do_get(feed, endpoint, params)

        # This should never be reached due to reraise=True
        raise RuntimeError("Retry loop exited without returning or raising")

    def _wfs_params(self, type_name: str) -> dict[str, str]:
        wfs = self.provider.wfs
        return {
            "SERVICE": "WFS",
            "VERSION": wfs.version,
            "request": "GetFeature",
            "typename": type_name,
            "outputFormat": wfs.output_format,
            "SRSNAME": wfs.srs_name,
        }

    # SIRI Lite 2.0 - realtime

    async def get_vehicle_monitoring(self) -> list[dict[str, Any]]:
        payload = await self.get_json("vehicle_monitoring", self.provider.vehicle_monitoring)
        return unwrap_vehicle_activity(payload)

    async def get_estimated_timetables(self) -> list[dict[str, Any]]:
        payload = await self.get_json("estimated_timetables", self.provider.estimated_timetables)
        return unwrap_estimated_journeys(payload)

    # REST JSON - traffic alerts

    async def get_alerts(self) -> list[dict[str, Any]]:
        payload = await self.get_json("alerts", self.provider.alerts)
        return unwrap_values(payload)

    # WFS (GeoServer) - geographic reference data

    async def get_stations(self) -> list[dict[str, Any]]:
        wfs = self.provider.wfs
        payload = await self.get_json("stations", wfs, self._wfs_params(wfs.stations_type_name))
        return unwrap_features(payload)

    async def get_stops(self) -> list[dict[str, Any]]:
        wfs = self.provider.wfs
        payload = await self.get_json("stops", wfs, self._wfs_params(wfs.stops_type_name))
        return unwrap_features(payload)

    async def get_lines(self, category: LineCategory) -> list[dict[str, Any]]:
        wfs = self.provider.wfs
        payload = await self.get_json(
            f"lines_{category.value}",
            wfs,
            self._wfs_params(wfs.line_type_names[category]),
        )
        return unwrap_features(payload)

    # Local CSV - line pictograms

    async def get_line_icons(self) -> list[list[str]]:
        return await asyncio.to_thread(read_line_icons_csv, self.line_icons_path)


def create_http_client(max_connections: int = 20) -> httpx.AsyncClient:
    """Create an async HTTP client with connection pooling.

    Args:
        max_connections: Maximum number of concurrent connections.

    Returns:
        Configured httpx.AsyncClient instance.
    """
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max(1, max_connections // 2),
    )

    return httpx.AsyncClient(
        limits=limits,
        follow_redirects=True,
    )
