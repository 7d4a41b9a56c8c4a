"""
This module assembles the telemetry pipeline: one tracer provider, one meter provider,
and one logger provider, each bound to an exporter through a batching component and
sharing the same resource, plus the W3C trace-context propagator.

Usage:
    from instrumented.config import create_pipeline_config
    from instrumented.env import NewRelicSettings
    from instrumented.pipeline import assemble_pipeline

    pipeline = assemble_pipeline(create_pipeline_config(NewRelicSettings.from_env()))
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from opentelemetry import metrics, trace
from opentelemetry._logs import Logger, LoggerProvider, NoOpLoggerProvider
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.sdk._logs import LoggerProvider as SdkLoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider as SdkMeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanLimits
from opentelemetry.sdk.trace import TracerProvider as SdkTracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from instrumented.config import PipelineConfig
from instrumented.exceptions import PipelineAssemblyError
from instrumented.exporters import (
    TruncatingLogExporter,
    create_log_exporter,
    create_metric_exporter,
    create_span_exporter,
)
from instrumented.resources import build_resource

logger = logging.getLogger("instrumented")


@dataclass(frozen=True)
class TelemetryPipeline:
    """
    The assembled telemetry pipeline. Instances are immutable and safe to share
    between threads.
    """

    tracer_provider: trace.TracerProvider
    meter_provider: metrics.MeterProvider
    logger_provider: LoggerProvider
    propagator: TextMapPropagator
    resource: Optional[Resource] = None
    config: Optional[PipelineConfig] = None

    @classmethod
    def noop(cls) -> "TelemetryPipeline":
        return cls(
            tracer_provider=trace.NoOpTracerProvider(),
            meter_provider=metrics.NoOpMeterProvider(),
            logger_provider=NoOpLoggerProvider(),
            propagator=CompositePropagator([]),
        )

    @property
    def is_noop(self) -> bool:
        return self.config is None

    def get_tracer(self, name: str, version: Optional[str] = None) -> trace.Tracer:
        return self.tracer_provider.get_tracer(name, version)

    def get_meter(self, name: str, version: Optional[str] = None) -> metrics.Meter:
        return self.meter_provider.get_meter(name, version)

    def get_logger(self, name: str, version: Optional[str] = None) -> Logger:
        return self.logger_provider.get_logger(name, version)

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """
        Exports all telemetry that is buffered in the pipeline.
        Returns False if any of the providers could not flush in time.
        """
        if self.is_noop:
            return True
        results = [
            self.tracer_provider.force_flush(timeout_millis),  # type: ignore
            self.meter_provider.force_flush(timeout_millis),  # type: ignore
            self.logger_provider.force_flush(timeout_millis),  # type: ignore
        ]
        return all(result is not False for result in results)

    def shutdown(self) -> None:
        if self.is_noop:
            return
        for provider in (self.tracer_provider, self.meter_provider, self.logger_provider):
            try:
                provider.shutdown()  # type: ignore
            except Exception:
                logger.exception("Error while shutting down %r", provider)


def _shutdown_all(components: List[Any]) -> None:
    for component in reversed(components):
        try:
            component.shutdown()
        except Exception:
            logger.exception("Error while releasing %r", component)


def assemble_pipeline(
    config: PipelineConfig,
    *,
    resource: Optional[Resource] = None,
    span_exporter=None,
    metric_exporter=None,
    log_exporter=None,
) -> TelemetryPipeline:
    """
    Creates the telemetry pipeline described by the given configuration.

    Exporters that are not provided are created from `config.exporter`. Assembly is
    atomic: if any exporter or provider cannot be created, everything created so far
    is shut down and PipelineAssemblyError is raised. No network I/O happens here.

    Args:
        config: pipeline configuration, see `create_pipeline_config`.
        resource: optional resource; by default a new one is built, with a new
            service instance id.
        span_exporter: optional span exporter (e.g. in-memory exporter for tests).
        metric_exporter: optional metric exporter; when provided, it is responsible
            for its own temporality and aggregation preferences.
        log_exporter: optional log exporter.
    """
    created: List[Any] = []

    try:
        if span_exporter is None:
            span_exporter = create_span_exporter(config.exporter)
            created.append(span_exporter)

        if metric_exporter is None:
            metric_exporter = create_metric_exporter(config.exporter, config.metrics)
            created.append(metric_exporter)

        if log_exporter is None:
            log_exporter = create_log_exporter(config.exporter)
            created.append(log_exporter)

        if resource is None:
            resource = build_resource(config.service_name)

        tracer_provider = SdkTracerProvider(
            resource=resource,
            span_limits=SpanLimits(
                max_span_attribute_length=config.traces.max_attribute_length
            ),
        )
        created.append(tracer_provider)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))

        reader_options = {}
        if config.metrics.export_interval_millis is not None:
            reader_options["export_interval_millis"] = (
                config.metrics.export_interval_millis
            )
        meter_provider = SdkMeterProvider(
            resource=resource,
            metric_readers=[
                PeriodicExportingMetricReader(metric_exporter, **reader_options)
            ],
        )
        created.append(meter_provider)

        logger_provider = SdkLoggerProvider(resource=resource)
        created.append(logger_provider)
        logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(
                TruncatingLogExporter(log_exporter, config.logs.max_attribute_length)
            )
        )
    except Exception as exc:
        _shutdown_all(created)
        raise PipelineAssemblyError(
            f"Cannot assemble the telemetry pipeline: {exc}", exc
        ) from exc

    pipeline = TelemetryPipeline(
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        logger_provider=logger_provider,
        propagator=TraceContextTextMapPropagator(),
        resource=resource,
        config=config,
    )
    logger.info(
        "Telemetry pipeline assembled: service=%s, endpoint=%s",
        config.service_name,
        config.exporter.endpoint,
    )
    return pipeline
