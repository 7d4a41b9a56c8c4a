"""
This module integrates a telemetry pipeline with a BlackSheep application.

Usage:
    from blacksheep import Application
    from instrumented.integration import use_telemetry

    app = Application()
    use_telemetry(app, pipeline)
"""

import logging
from functools import wraps
from typing import Optional

from blacksheep import Application

from instrumented.middleware import TelemetryMiddleware
from instrumented.pipeline import TelemetryPipeline

logger = logging.getLogger("instrumented")


def use_telemetry(
    app: Application,
    pipeline: TelemetryPipeline,
    middleware: Optional[TelemetryMiddleware] = None,
) -> TelemetryMiddleware:
    """
    Configures tracing of web requests for a BlackSheep application, using the given
    telemetry pipeline.

    - Registers the pipeline as a singleton service, so that it can be injected in
      request handlers and in other services by type (TelemetryPipeline).
    - Inserts the telemetry middleware at the beginning of the middlewares chain.
    - Patches the router to track the route pattern that matched each request, used
      to name spans.
    - Flushes the pipeline when the application stops.

    The pipeline is not shut down when the application stops: its owner is the
    process entry point, since the pipeline can outlive the application.

    Args:
        app: The BlackSheep application instance.
        pipeline: The telemetry pipeline (see `instrumented.pipeline`).
        middleware (optional TelemetryMiddleware): Custom middleware instance.
            If not provided, a TelemetryMiddleware bound to the pipeline is used.

    Returns:
        The middleware handling requests.
    """
    app.services.add_instance(pipeline, TelemetryPipeline)  # type: ignore

    middleware = middleware or TelemetryMiddleware(
        pipeline, app.handle_request_handler_exception
    )

    # Insert the middleware at the beginning of the middlewares list
    @app.on_middlewares_configuration
    def add_telemetry_middleware(app):
        app.middlewares.insert(0, middleware)

    @app.on_start
    async def track_routes(app):
        # Keep track of the route pattern that matched the request, if any.
        def wrap_get_route_match(fn):
            @wraps(fn)
            def get_route_match(request):
                match = fn(request)
                request.route = match.pattern.decode() if match else "Not Found"
                return match

            return get_route_match

        app.router.get_match = wrap_get_route_match(app.router.get_match)

    @app.on_stop
    async def flush_telemetry(app):
        if not pipeline.force_flush():
            logger.warning("The telemetry pipeline could not be flushed in time.")

    return middleware
