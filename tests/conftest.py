import os

import pytest
from opentelemetry.sdk._logs.export import InMemoryLogExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from instrumented.config import create_pipeline_config
from instrumented.env import LICENSE_KEY_NAME, OTLP_ENDPOINT_NAME, NewRelicSettings
from instrumented.pipeline import assemble_pipeline
from instrumented.properties import PropertyStore
from tests.utils.application import FakeApplication
from tests.utils.exporters import CapturingMetricExporter

os.environ["APP_DEFAULT_ROUTER"] = "0"
os.environ["APP_SIGNAL_HANDLER"] = "0"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Ensures tests never see New Relic settings of the machine running them."""
    monkeypatch.delenv(LICENSE_KEY_NAME, raising=False)
    monkeypatch.delenv(OTLP_ENDPOINT_NAME, raising=False)


@pytest.fixture
def properties():
    return PropertyStore()


@pytest.fixture
def config():
    return create_pipeline_config(NewRelicSettings(license_key="abc123"))


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def metric_exporter(config):
    return CapturingMetricExporter(
        preferred_temporality=dict(config.metrics.temporality),
        preferred_aggregation=dict(config.metrics.aggregation),
    )


@pytest.fixture
def log_exporter():
    return InMemoryLogExporter()


@pytest.fixture
def pipeline(config, span_exporter, metric_exporter, log_exporter):
    pipeline = assemble_pipeline(
        config,
        span_exporter=span_exporter,
        metric_exporter=metric_exporter,
        log_exporter=log_exporter,
    )
    yield pipeline
    pipeline.shutdown()


@pytest.fixture
def app():
    return FakeApplication()
