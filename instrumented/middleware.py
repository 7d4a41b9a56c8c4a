from typing import Awaitable, Callable, List, Optional

from blacksheep.messages import Request, Response
from opentelemetry import trace
from opentelemetry.propagators.textmap import Getter
from opentelemetry.trace import SpanKind

from instrumented import __version__
from instrumented.pipeline import TelemetryPipeline

ExceptionHandler = Callable[[Request, Exception], Awaitable[Response]]


class RequestHeadersGetter(Getter[Request]):
    """
    Reads propagation headers (e.g. traceparent, tracestate) from a request.
    """

    def get(self, carrier: Request, key: str) -> Optional[List[str]]:
        values = carrier.get_headers(key.encode())
        if not values:
            return None
        return [value.decode("latin-1") for value in values]

    def keys(self, carrier: Request) -> List[str]:
        return [name.decode("latin-1") for name, _ in carrier.headers.items()]


request_headers_getter = RequestHeadersGetter()


class TelemetryMiddleware:
    """
    Middleware creating a server span for every web request, using the tracer provider
    of the given pipeline. If the request carries W3C trace-context headers, the span
    continues the incoming trace.
    """

    def __init__(
        self, pipeline: TelemetryPipeline, exc_handler: ExceptionHandler
    ) -> None:
        self._pipeline = pipeline
        self._exc_handler = exc_handler
        self._tracer = pipeline.get_tracer(__name__, __version__)

    @property
    def pipeline(self) -> TelemetryPipeline:
        return self._pipeline

    async def __call__(self, request: Request, handler):
        path = request.url.path.decode("utf8")
        method = request.method
        parent_context = self._pipeline.propagator.extract(
            request, getter=request_headers_getter
        )

        with self._tracer.start_as_current_span(
            f"{method} {path}",
            context=parent_context,
            kind=SpanKind.SERVER,
        ) as span:
            try:
                response = await handler(request)
            except Exception as exc:
                # The exception is converted into a response here, as the application
                # would do, so that the span describes the actual response.
                span.record_exception(exc)
                response = await self._exc_handler(request, exc)

            self.set_span_attributes(span, request, response, path)
            return response

    def set_span_attributes(
        self, span: trace.Span, request: Request, response: Response, path: str
    ) -> None:
        """
        Configure the attributes on the span for a given request-response cycle.
        """
        # To reduce cardinality, update the span name to use the
        # route that matched the request
        route = getattr(request, "route", None) or path
        span.update_name(f"{request.method} {route}")

        span.set_attribute("http.request.method", request.method)
        span.set_attribute("http.route", route)
        span.set_attribute("url.path", path)
        span.set_attribute("url.full", request.url.value.decode())
        span.set_attribute("http.response.status_code", response.status)
        span.set_attribute("client.address", request.original_client_ip)

        if response.status >= 500:
            span.set_status(trace.Status(trace.StatusCode.ERROR))
