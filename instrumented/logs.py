import logging
from typing import Optional

from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggingHandler

from instrumented.pipeline import TelemetryPipeline


def use_logging_bridge(
    pipeline: TelemetryPipeline,
    level: int = logging.NOTSET,
    target: Optional[logging.Logger] = None,
    set_logging_format: bool = True,
) -> LoggingHandler:
    """
    Sends the records of the standard logging module to the log pipeline.

    - Adds a LoggingHandler bound to the logger provider of the pipeline to the root
      logger (or to the given target logger).
    - Sets the level of the "opentelemetry" logger to WARNING to reduce noise, and to
      avoid exporting the logs of the exporters themselves.
    - Optionally instruments logging with LoggingInstrumentor, so that formatted logs
      include the trace and span ids of the current span.

    Must be called after the pipeline is published, so that log records are never
    sent to a pipeline other than the process one.
    """
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    # basicConfig, used to set the logging format, does nothing once the root logger
    # has a handler
    if set_logging_format:
        LoggingInstrumentor().instrument(
            tracer_provider=pipeline.tracer_provider, set_logging_format=True
        )

    handler = LoggingHandler(level=level, logger_provider=pipeline.logger_provider)
    (target or logging.getLogger()).addHandler(handler)
    return handler


def remove_logging_bridge(
    handler: LoggingHandler, target: Optional[logging.Logger] = None
) -> None:
    (target or logging.getLogger()).removeHandler(handler)
    handler.flush()
