from starlette.middleware.base import BaseHTTPMiddleware

from magicpaws.core.logging import get_request_id
from magicpaws.core.tracing import start_span


class TracingMiddleware(BaseHTTPMiddleware):
    """Wrap each request in an http.request span; a no-op while tracing is off."""

    async def dispatch(self, request, call_next):
        attributes = {
            "http.method": request.method,
            "http.target": request.url.path,
            "request_id": get_request_id(),
        }
        with start_span("http.request", attributes) as span:
            response = await call_next(request)
            if span is not None:
                span.set_attribute("http.status_code", response.status_code)
        return response
