import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests handled",
    ["service", "method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["service", "method", "path"],
)

ORDERS_CREATED = Counter("orders_created_total", "Orders placed", ["payment_method"])
ORDER_STATUS_CHANGES = Counter("order_status_changes_total", "Order status transitions", ["status"])
PAYMENTS_VERIFIED = Counter("payments_verified_total", "Payment verification attempts", ["outcome"])
REVIEWS_SUBMITTED = Counter("reviews_submitted_total", "Reviews submitted")


def _path_template(request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            path = _path_template(request)
            REQUEST_COUNT.labels(self.service_name, request.method, path, str(status)).inc()
            REQUEST_LATENCY.labels(self.service_name, request.method, path).observe(
                time.perf_counter() - start
            )


def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
