"""
This module is the entry point of the web application. Telemetry is configured as
early as possible, before the application is created:

1. settings are read from environment variables (or the property store);
2. the telemetry pipeline is assembled and published for the process;
3. the standard logging module is bridged to the log pipeline;
4. runtime metrics observers are registered;
5. the application is created with the pipeline, and served with uvicorn.

Any error while assembling the pipeline aborts the startup.
"""

import logging
from typing import Optional

from blacksheep import Application
from blacksheep.server.routing import Router

from instrumented.config import create_pipeline_config
from instrumented.env import NewRelicSettings, ServerSettings
from instrumented.integration import use_telemetry
from instrumented.logs import use_logging_bridge
from instrumented.pipeline import TelemetryPipeline, assemble_pipeline
from instrumented.properties import PropertyStore
from instrumented.runtime import register_runtime_observers
from instrumented.state import publish_pipeline

logger = logging.getLogger("instrumented")


def bootstrap(properties: Optional[PropertyStore] = None) -> TelemetryPipeline:
    settings = NewRelicSettings.from_env(properties)
    logger.debug("Configuring telemetry with %r", settings)

    pipeline = assemble_pipeline(create_pipeline_config(settings))

    publish_pipeline(pipeline)
    use_logging_bridge(pipeline)
    register_runtime_observers(pipeline)
    return pipeline


def create_app(pipeline: TelemetryPipeline) -> Application:
    app = Application(router=Router())
    use_telemetry(app, pipeline)

    @app.router.get("/")
    async def home():
        return "Hello, World!"

    return app


def main(properties: Optional[PropertyStore] = None) -> None:
    import uvicorn

    pipeline = bootstrap(properties)
    server = ServerSettings.from_env(properties)

    try:
        uvicorn.run(create_app(pipeline), host=server.host, port=server.port)
    finally:
        pipeline.shutdown()
