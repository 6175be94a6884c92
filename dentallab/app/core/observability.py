"""
Observability Middleware.

Adds correlation IDs and structured logging context to requests.

The correlation id and client address of the request being served are
published through context variables, so code far below the route (the
ledger unit of work, the audit log) can tag its records without the
request being passed down.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("dentallab.http")

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


def current_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def current_client_ip() -> Optional[str]:
    return client_ip_var.get()


def request_log_context() -> Dict[str, str]:
    """Request fields to merge into a log record's extra, empty outside a request."""
    context = {}
    correlation_id = correlation_id_var.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    return context


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        client_ip = request.client.host if request.client else None
        correlation_token = correlation_id_var.set(correlation_id)
        ip_token = client_ip_var.set(client_ip)
        start_time = time.time()

        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(correlation_token)
            client_ip_var.reset(ip_token)

        process_time = (time.time() - start_time) * 1000  # ms
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(process_time)

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
            "ip": client_ip or "unknown"
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        else:
            logger.info("Request served", extra=log_data)

        return response
