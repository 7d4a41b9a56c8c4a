"""
This module holds the process-wide telemetry pipeline. Until a pipeline is published,
readers get a no-op pipeline; publication happens exactly once, at startup, before
other subsystems start using telemetry.

Consumers should receive the pipeline explicitly (see `instrumented.integration`);
the process slot exists for code that cannot be given the pipeline, like third-party
instrumentations reading the OpenTelemetry API globals.
"""

import logging
import threading

from opentelemetry import _logs, metrics, propagate, trace

from instrumented.exceptions import PipelineAlreadyPublishedError
from instrumented.pipeline import TelemetryPipeline

logger = logging.getLogger("instrumented")


class PipelineSlot:
    """
    Holds a single TelemetryPipeline. Readers never lock: the reference is replaced
    once, atomically, and the pipeline it points to is immutable.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pipeline = TelemetryPipeline.noop()
        self._published = False

    @property
    def published(self) -> bool:
        return self._published

    def get(self) -> TelemetryPipeline:
        return self._pipeline

    def publish(self, pipeline: TelemetryPipeline) -> TelemetryPipeline:
        if pipeline.is_noop:
            raise ValueError("Cannot publish a no-op pipeline.")

        with self._lock:
            if self._published:
                raise PipelineAlreadyPublishedError()
            self._pipeline = pipeline
            self._published = True
        return pipeline


_process_slot = PipelineSlot()


def get_pipeline() -> TelemetryPipeline:
    """
    Returns the pipeline published for this process, or a no-op pipeline if none was
    published yet.
    """
    return _process_slot.get()


def is_published() -> bool:
    return _process_slot.published


def publish_pipeline(
    pipeline: TelemetryPipeline, set_api_globals: bool = True
) -> TelemetryPipeline:
    """
    Publishes the given pipeline for the whole process. By default, its providers and
    its propagator are also set as OpenTelemetry API globals.

    Raises:
        PipelineAlreadyPublishedError: if a pipeline was already published.
    """
    _process_slot.publish(pipeline)

    if set_api_globals:
        trace.set_tracer_provider(pipeline.tracer_provider)
        metrics.set_meter_provider(pipeline.meter_provider)
        _logs.set_logger_provider(pipeline.logger_provider)
        propagate.set_global_textmap(pipeline.propagator)

    logger.info("Telemetry pipeline published")
    return pipeline
