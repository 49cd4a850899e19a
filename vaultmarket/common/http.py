"""Request middleware shared by the HTTP apps."""

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

from vaultmarket.common.logging import order_id_ctx, trace_id_ctx
from vaultmarket.common.metrics import http_request_duration_seconds, http_requests_total


def install_request_middleware(app: FastAPI, service_name: str) -> None:
    """Record request count/latency and bind a trace id for every HTTP call."""

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
        order_id_ctx.set("")
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()
