import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry import metrics, trace
from opentelemetry._logs import NoOpLoggerProvider
from opentelemetry.sdk._logs import LoggingHandler
from opentelemetry.sdk._logs.export import InMemoryLogExporter, LogExportResult
from opentelemetry.sdk.metrics.export import (
    AggregationTemporality,
    ExponentialHistogram,
    Sum,
)
from opentelemetry.sdk.resources import SERVICE_INSTANCE_ID, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from instrumented.config import create_pipeline_config
from instrumented.env import NewRelicSettings
from instrumented.exceptions import PipelineAssemblyError
from instrumented.pipeline import TelemetryPipeline, assemble_pipeline
from tests.utils.exporters import CapturingMetricExporter, get_log_records


def test_noop_pipeline():
    pipeline = TelemetryPipeline.noop()

    assert pipeline.is_noop is True
    assert pipeline.config is None
    assert isinstance(pipeline.tracer_provider, trace.NoOpTracerProvider)
    assert isinstance(pipeline.meter_provider, metrics.NoOpMeterProvider)
    assert isinstance(pipeline.logger_provider, NoOpLoggerProvider)
    assert pipeline.force_flush() is True
    pipeline.shutdown()


def test_assembled_pipeline(pipeline, config):
    assert pipeline.is_noop is False
    assert pipeline.config is config
    assert isinstance(pipeline.tracer_provider, TracerProvider)
    assert isinstance(pipeline.propagator, TraceContextTextMapPropagator)
    assert pipeline.resource.attributes[SERVICE_NAME] == "getting-started-java"


def test_pipeline_is_immutable(pipeline):
    with pytest.raises(AttributeError):
        pipeline.tracer_provider = TracerProvider()  # type: ignore


def test_providers_share_the_resource(pipeline):
    assert pipeline.tracer_provider.resource is pipeline.resource
    assert pipeline.meter_provider._sdk_config.resource is pipeline.resource
    assert pipeline.logger_provider.resource is pipeline.resource


def test_two_assemblies_have_different_instance_ids(config):
    first = assemble_pipeline(
        config,
        span_exporter=MagicMock(),
        metric_exporter=CapturingMetricExporter(),
        log_exporter=InMemoryLogExporter(),
    )
    second = assemble_pipeline(
        config,
        span_exporter=MagicMock(),
        metric_exporter=CapturingMetricExporter(),
        log_exporter=InMemoryLogExporter(),
    )
    try:
        assert (
            first.resource.attributes[SERVICE_INSTANCE_ID]
            != second.resource.attributes[SERVICE_INSTANCE_ID]
        )
        assert (
            first.resource.attributes[SERVICE_NAME]
            == second.resource.attributes[SERVICE_NAME]
        )
    finally:
        first.shutdown()
        second.shutdown()


def test_span_attributes_are_truncated(pipeline, span_exporter):
    tracer = pipeline.get_tracer(__name__)

    with tracer.start_as_current_span("example") as span:
        span.set_attribute("long", "x" * 5000)
        span.set_attribute("short", "y" * 10)

    assert pipeline.force_flush() is True

    spans = span_exporter.get_finished_spans()
    assert len(spans) == 1
    assert spans[0].attributes["long"] == "x" * 4095
    assert spans[0].attributes["short"] == "y" * 10


def test_spans_are_exported_with_the_resource(pipeline, span_exporter):
    with pipeline.get_tracer(__name__).start_as_current_span("example"):
        pass

    pipeline.force_flush()

    span = span_exporter.get_finished_spans()[0]
    assert span.resource.attributes[SERVICE_NAME] == "getting-started-java"


def test_log_attributes_are_truncated(pipeline, log_exporter):
    logger = logging.getLogger("tests.pipeline")
    logger.propagate = False
    handler = LoggingHandler(logger_provider=pipeline.logger_provider)
    logger.addHandler(handler)

    try:
        logger.warning("Example", extra={"long": "x" * 5000, "short": "ok"})
        assert pipeline.force_flush() is True
    finally:
        logger.removeHandler(handler)
        logger.propagate = True

    records = get_log_records(log_exporter)
    assert len(records) == 1
    assert records[0].body == "Example"
    assert records[0].attributes["long"] == "x" * 4095
    assert records[0].attributes["short"] == "ok"
    assert records[0].resource.attributes[SERVICE_NAME] == "getting-started-java"


def test_histograms_use_exponential_aggregation(pipeline, metric_exporter):
    meter = pipeline.get_meter(__name__)
    histogram = meter.create_histogram("example.duration", unit="ms")
    counter = meter.create_counter("example.requests")

    for value in (1, 5, 20, 100):
        histogram.record(value)
    counter.add(3)

    assert pipeline.force_flush() is True

    exported = metric_exporter.get_metrics()
    histogram_data = exported["example.duration"][0].data
    counter_data = exported["example.requests"][0].data

    assert isinstance(histogram_data, ExponentialHistogram)
    assert histogram_data.data_points[0].count == 4
    assert histogram_data.aggregation_temporality is AggregationTemporality.DELTA

    assert isinstance(counter_data, Sum)
    assert counter_data.aggregation_temporality is AggregationTemporality.DELTA
    assert counter_data.data_points[0].value == 3


def test_up_down_counters_stay_cumulative(pipeline, metric_exporter):
    meter = pipeline.get_meter(__name__)
    counter = meter.create_up_down_counter("example.active")
    counter.add(2)

    pipeline.force_flush()

    data = metric_exporter.get_metrics()["example.active"][0].data
    assert isinstance(data, Sum)
    assert data.aggregation_temporality is AggregationTemporality.CUMULATIVE


def test_assemble_pipeline_creates_exporters_from_config():
    config = create_pipeline_config(NewRelicSettings(license_key="abc123"))

    with patch(
        "instrumented.pipeline.create_span_exporter"
    ) as create_span_exporter, patch(
        "instrumented.pipeline.create_metric_exporter",
        return_value=CapturingMetricExporter(),
    ) as create_metric_exporter, patch(
        "instrumented.pipeline.create_log_exporter"
    ) as create_log_exporter:
        pipeline = assemble_pipeline(config)

    try:
        create_span_exporter.assert_called_once_with(config.exporter)
        create_metric_exporter.assert_called_once_with(config.exporter, config.metrics)
        create_log_exporter.assert_called_once_with(config.exporter)

        assert config.exporter.endpoint == "https://otlp.nr-data.net:4317"
        assert config.exporter.get_header("api-key") == "abc123"
    finally:
        pipeline.shutdown()


def test_assemble_pipeline_exporters_share_endpoint_and_api_key():
    config = create_pipeline_config(NewRelicSettings(license_key="abc123"))

    with patch("instrumented.exporters.OTLPSpanExporter") as span_class, patch(
        "instrumented.exporters.OTLPLogExporter"
    ) as log_class, patch(
        "instrumented.exporters.OTLPMetricExporter",
        side_effect=lambda **kwargs: CapturingMetricExporter(
            preferred_temporality=kwargs["preferred_temporality"],
            preferred_aggregation=kwargs["preferred_aggregation"],
        ),
    ) as metric_class:
        pipeline = assemble_pipeline(config)

    try:
        for exporter_class in (span_class, log_class, metric_class):
            kwargs = exporter_class.call_args.kwargs
            assert kwargs["endpoint"] == "https://otlp.nr-data.net:4317"
            assert kwargs["headers"] == (("api-key", "abc123"),)
    finally:
        pipeline.shutdown()


def test_assemble_pipeline_is_atomic(config):
    span_exporter = MagicMock()

    with patch(
        "instrumented.pipeline.create_span_exporter", return_value=span_exporter
    ), patch(
        "instrumented.pipeline.create_metric_exporter",
        side_effect=ValueError("Invalid metric exporter"),
    ), patch(
        "instrumented.pipeline.create_log_exporter"
    ) as create_log_exporter:
        with pytest.raises(PipelineAssemblyError) as error:
            assemble_pipeline(config)

    assert isinstance(error.value.inner_exception, ValueError)
    assert isinstance(error.value.__cause__, ValueError)
    span_exporter.shutdown.assert_called_once()
    create_log_exporter.assert_not_called()


def test_assemble_pipeline_does_not_release_given_exporters(config):
    span_exporter = MagicMock()

    with patch(
        "instrumented.pipeline.build_resource", side_effect=RuntimeError("Crash")
    ):
        with pytest.raises(PipelineAssemblyError):
            assemble_pipeline(
                config,
                span_exporter=span_exporter,
                metric_exporter=CapturingMetricExporter(),
                log_exporter=InMemoryLogExporter(),
            )

    span_exporter.shutdown.assert_not_called()


def test_pipeline_shutdown_releases_exporters(config, log_exporter):
    pipeline = assemble_pipeline(
        config,
        span_exporter=MagicMock(),
        metric_exporter=CapturingMetricExporter(),
        log_exporter=log_exporter,
    )

    pipeline.shutdown()

    assert log_exporter.export([]) is LogExportResult.FAILURE
