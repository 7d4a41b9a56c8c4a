"""
This module provides functions creating the OTLP gRPC exporters used by the telemetry
pipeline, from an `ExporterConfig`. Creating an exporter does not open a connection:
connections are established by the exporter on the first export attempt.
"""

from typing import Any, Optional, Sequence

from grpc import Compression
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

from instrumented.config import ExporterConfig, MetricsConfig

_COMPRESSIONS = {
    "gzip": Compression.Gzip,
    "deflate": Compression.Deflate,
    "none": Compression.NoCompression,
}


def get_compression(config: ExporterConfig) -> Compression:
    try:
        return _COMPRESSIONS[config.compression.lower()]
    except KeyError:
        raise ValueError(f"Unsupported compression: '{config.compression}'.")


def _common_options(config: ExporterConfig):
    return dict(
        endpoint=config.endpoint,
        headers=config.headers,
        compression=get_compression(config),
        timeout=config.timeout,
    )


def create_span_exporter(config: ExporterConfig) -> OTLPSpanExporter:
    return OTLPSpanExporter(**_common_options(config))


def create_metric_exporter(
    config: ExporterConfig, metrics: MetricsConfig
) -> OTLPMetricExporter:
    return OTLPMetricExporter(
        **_common_options(config),
        preferred_temporality=dict(metrics.temporality),
        preferred_aggregation=dict(metrics.aggregation),
    )


def create_log_exporter(config: ExporterConfig) -> OTLPLogExporter:
    return OTLPLogExporter(**_common_options(config))


def truncate_value(value: Any, max_length: int) -> Any:
    if isinstance(value, str):
        return value[:max_length] if len(value) > max_length else value
    if isinstance(value, (tuple, list)) and any(
        isinstance(item, str) and len(item) > max_length for item in value
    ):
        return type(value)(truncate_value(item, max_length) for item in value)
    return value


class TruncatingLogExporter:
    """
    Log exporter that truncates attribute values longer than the configured length
    before handing records to the wrapped exporter. The SDK LoggerProvider does not
    support log limits, so the limit is applied here, on the export path.
    """

    def __init__(self, exporter, max_attribute_length: int) -> None:
        self._exporter = exporter
        self._max_attribute_length = max_attribute_length

    @property
    def exporter(self):
        return self._exporter

    @property
    def max_attribute_length(self) -> int:
        return self._max_attribute_length

    def _truncate(self, log_record) -> None:
        attributes = log_record.attributes
        if not attributes:
            return
        for key, value in list(attributes.items()):
            truncated = truncate_value(value, self._max_attribute_length)
            if truncated is not value:
                attributes[key] = truncated

    def export(self, batch: Sequence[Any]):
        for log_data in batch:
            self._truncate(log_data.log_record)
        return self._exporter.export(batch)

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._exporter.force_flush(timeout_millis)

    def shutdown(self) -> Optional[Any]:
        return self._exporter.shutdown()
