"""
This module defines the immutable records describing the telemetry pipeline, and the
single function that validates settings and turns them into a `PipelineConfig`.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

from opentelemetry.sdk.metrics import (
    Counter,
    Histogram,
    ObservableCounter,
    ObservableGauge,
    ObservableUpDownCounter,
    UpDownCounter,
)
from opentelemetry.sdk.metrics.export import AggregationTemporality
from opentelemetry.sdk.metrics.view import (
    Aggregation,
    ExponentialBucketHistogramAggregation,
)

from instrumented.env import OTLP_ENDPOINT_NAME, NewRelicSettings
from instrumented.exceptions import TelemetryConfigurationError
from instrumented.resources import DEFAULT_SERVICE_NAME

COMPRESSION = "gzip"
API_KEY_HEADER = "api-key"

# New Relic's max attribute length is 4095 characters
MAX_ATTRIBUTE_VALUE_LENGTH = 4095


def delta_preferred() -> Mapping[type, AggregationTemporality]:
    """
    Returns the temporality preferences used for metrics: delta for monotonic
    instruments and histograms, cumulative for instruments whose values can go down.
    New Relic requires metrics to be delta temporality.
    """
    return MappingProxyType(
        {
            Counter: AggregationTemporality.DELTA,
            ObservableCounter: AggregationTemporality.DELTA,
            Histogram: AggregationTemporality.DELTA,
            UpDownCounter: AggregationTemporality.CUMULATIVE,
            ObservableUpDownCounter: AggregationTemporality.CUMULATIVE,
            ObservableGauge: AggregationTemporality.CUMULATIVE,
        }
    )


def exponential_histograms() -> Mapping[type, Aggregation]:
    return MappingProxyType({Histogram: ExponentialBucketHistogramAggregation()})


@dataclass(frozen=True)
class ExporterConfig:
    endpoint: str
    headers: Tuple[Tuple[str, str], ...] = ()
    compression: str = COMPRESSION
    timeout: Optional[float] = None

    def get_header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class ProcessorConfig:
    max_attribute_length: int = MAX_ATTRIBUTE_VALUE_LENGTH


@dataclass(frozen=True)
class MetricsConfig:
    temporality: Mapping[type, AggregationTemporality] = field(
        default_factory=delta_preferred
    )
    aggregation: Mapping[type, Aggregation] = field(
        default_factory=exponential_histograms
    )
    export_interval_millis: Optional[float] = None


@dataclass(frozen=True)
class PipelineConfig:
    exporter: ExporterConfig
    traces: ProcessorConfig = field(default_factory=ProcessorConfig)
    logs: ProcessorConfig = field(default_factory=ProcessorConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    service_name: str = DEFAULT_SERVICE_NAME


def validate_endpoint(endpoint: str) -> str:
    try:
        parsed = urlparse(endpoint)
        hostname = parsed.hostname
        # raises ValueError for a port that is not a number in range
        parsed.port
    except ValueError as value_error:
        raise TelemetryConfigurationError(
            OTLP_ENDPOINT_NAME, endpoint, "The endpoint is not a valid URL."
        ) from value_error

    if parsed.scheme not in {"http", "https"}:
        raise TelemetryConfigurationError(
            OTLP_ENDPOINT_NAME, endpoint, "The endpoint scheme must be http or https."
        )

    if not hostname:
        raise TelemetryConfigurationError(
            OTLP_ENDPOINT_NAME, endpoint, "The endpoint must include a host."
        )

    return endpoint


def create_pipeline_config(
    settings: NewRelicSettings,
    *,
    service_name: str = DEFAULT_SERVICE_NAME,
    export_interval_millis: Optional[float] = None,
) -> PipelineConfig:
    """
    Validates the given settings and returns the configuration of the telemetry
    pipeline. The same exporter configuration (endpoint, gzip compression, and api-key
    header) is used for traces, metrics, and logs.

    Raises:
        TelemetryConfigurationError: if the OTLP endpoint is not a valid http or https
            URL.
    """
    endpoint = validate_endpoint(settings.otlp_endpoint.strip())

    return PipelineConfig(
        exporter=ExporterConfig(
            endpoint=endpoint,
            headers=((API_KEY_HEADER, settings.license_key),),
        ),
        metrics=MetricsConfig(export_interval_millis=export_interval_millis),
        service_name=service_name,
    )
