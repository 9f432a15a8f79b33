"""Pydantic models for the Grand Lyon provider configuration."""

from enum import Enum
from typing import Self

from pydantic import BaseModel, Field, HttpUrl, model_validator


class LineCategory(str, Enum):
    """Transport categories published as separate WFS line layers."""

    BUS = "bus"
    METRO = "metro"
    TRAM = "tram"
    RHONEXPRESS = "rhonexpress"


class Direction(str, Enum):
    """Direction vocabulary used by clients when filtering vehicles."""

    ALLER = "Aller"
    RETOUR = "Retour"

    @classmethod
    def parse(cls, value: str) -> "Direction":
        """Parse either the domain vocabulary or the feed's direction refs."""
        normalized = value.strip().lower()
        if normalized in ("aller", "outbound"):
            return cls.ALLER
        if normalized in ("retour", "inbound"):
            return cls.RETOUR
        raise ValueError(f"Unknown direction: {value!r}")

    @property
    def direction_ref(self) -> str:
        """The DirectionRef value the SIRI feed uses for this direction."""
        return "outbound" if self is Direction.ALLER else "inbound"


class RetryConfig(BaseModel):
    """Configuration for retry behavior on transient failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base: float = Field(default=1.0, ge=0.1, le=10.0)
    backoff_max: float = Field(default=10.0, ge=1.0, le=60.0)


class EndpointConfig(BaseModel):
    """A single provider endpoint (before defaults are applied)."""

    url: HttpUrl
    timeout_seconds: int | None = Field(default=None, ge=1, le=120)
    retry: RetryConfig | None = None


class WfsConfig(EndpointConfig):
    """GeoServer WFS endpoint and the layer type names it serves."""

    version: str = "2.0.0"
    output_format: str = "application/json"
    srs_name: str = "EPSG:4171"
    stations_type_name: str = "sytral:tcl_sytral.tclstation"
    stops_type_name: str = "sytral:tcl_sytral.tclarret"
    line_type_names: dict[LineCategory, str] = Field(
        default_factory=lambda: {
            LineCategory.BUS: "sytral:tcl_sytral.tcllignebus_2_0_0",
            LineCategory.METRO: "sytral:tcl_sytral.tcllignemf_2_0_0",
            LineCategory.TRAM: "sytral:tcl_sytral.tcllignetram_2_0_0",
            LineCategory.RHONEXPRESS: "sytral:rx_rhonexpress.rxligne_2_0_0",
        }
    )

    @model_validator(mode="after")
    def validate_all_categories(self) -> Self:
        """Ensure every line category has a layer to read from."""
        missing = [c.value for c in LineCategory if c not in self.line_type_names]
        if missing:
            raise ValueError(f"Missing WFS type names for line categories: {missing}")
        return self


class ProviderDefaults(BaseModel):
    """Default values applied to every endpoint that does not override them."""

    timeout_seconds: int = Field(default=30, ge=1, le=120)
    retry: RetryConfig = Field(default_factory=RetryConfig)


def _default_endpoint(url: str, max_attempts: int | None = None) -> EndpointConfig:
    retry = RetryConfig(max_attempts=max_attempts) if max_attempts is not None else None
    return EndpointConfig(url=url, retry=retry)  # type: ignore[arg-type]


class ProviderConfig(BaseModel):
    """Schema for the feeds.yaml endpoint catalog."""

    defaults: ProviderDefaults = Field(default_factory=ProviderDefaults)
    # Realtime endpoints are polled every few seconds; a retry would only
    # collide with the next tick, so they default to a single attempt.
    vehicle_monitoring: EndpointConfig = Field(
        default_factory=lambda: _default_endpoint(
            "https://data.grandlyon.com/siri-lite/2.0/vehicle-monitoring.json", 1
        )
    )
    estimated_timetables: EndpointConfig = Field(
        default_factory=lambda: _default_endpoint(
            "https://data.grandlyon.com/siri-lite/2.0/estimated-timetables.json", 1
        )
    )
    alerts: EndpointConfig = Field(
        default_factory=lambda: _default_endpoint(
            "https://data.grandlyon.com/fr/datapusher/ws/rdata/"
            "tcl_sytral.tclalertetrafic_2/all.json?maxfeatures=-1&start=1"
        )
    )
    wfs: WfsConfig = Field(
        default_factory=lambda: WfsConfig(
            url="https://data.grandlyon.com/geoserver/sytral/ows",  # type: ignore[arg-type]
        )
    )

    def timeout_for(self, endpoint: EndpointConfig) -> int:
        """Resolve an endpoint's timeout (endpoint > global default)."""
        if endpoint.timeout_seconds is not None:
            return endpoint.timeout_seconds
        return self.defaults.timeout_seconds

    def retry_for(self, endpoint: EndpointConfig) -> RetryConfig:
        """Resolve an endpoint's retry policy (endpoint > global default)."""
        return endpoint.retry or self.defaults.retry
