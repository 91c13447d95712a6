"""
Correlation ids for earnings requests and consumed order events.

Every HTTP request and every consumed order event runs inside one span. The
span's trace id is echoed back in X-Trace-ID and copied into error bodies,
and spans opened while another is active join its trace.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

_active_span: ContextVar[Optional["Span"]] = ContextVar("earnings_active_span", default=None)

class Span:
    def __init__(self, service: str, operation: str, trace_id: str = None, parent_span_id: str = None):
        self.service = service
        self.operation = operation
        self.trace_id = trace_id or uuid.uuid4().hex[:16]
        self.span_id = uuid.uuid4().hex[:8]
        self.parent_span_id = parent_span_id
        self.tags = {}
        self.failed = False
        self._started = time.perf_counter()
        self._token = None

    def add_tag(self, key: str, value):
        self.tags[key] = value
        return self

    def __enter__(self):
        self._token = _active_span.set(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is not None:
            self.failed = True
            self.add_tag("error.type", exc_type.__name__)
            self.add_tag("error.message", str(exc_val))
        _active_span.reset(self._token)

        record = {
            "service": self.service,
            "operation": self.operation,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "duration_ms": round((time.perf_counter() - self._started) * 1000, 2),
            "status": "error" if self.failed else "ok",
            "tags": self.tags,
        }
        logger.info(f"TRACE: {json.dumps(record, default=str)}")
        return False

class Tracer:
    def __init__(self, service_name: str):
        self.service_name = service_name

    def start_span(self, operation: str, trace_id: str = None, parent_span_id: str = None) -> Span:
        parent = _active_span.get()
        if trace_id is None and parent is not None:
            trace_id, parent_span_id = parent.trace_id, parent.span_id
        return Span(self.service_name, operation, trace_id, parent_span_id)

earnings_tracer = Tracer("earnings-service")

async def tracing_middleware(request: Request, call_next, tracer: Tracer):
    """Open a span per request, continuing the caller's trace when it sends one."""
    span = tracer.start_span(
        f"{request.method} {request.url.path}",
        trace_id=request.headers.get("X-Trace-ID"),
        parent_span_id=request.headers.get("X-Span-ID"),
    )
    with span:
        span.add_tag("http.method", request.method)
        request.state.trace_id = span.trace_id
        request.state.request_id = request.headers.get("X-Request-ID", span.span_id)

        response = await call_next(request)
        span.add_tag("http.status_code", response.status_code)
        if response.status_code >= 400:
            span.failed = True

        response.headers["X-Trace-ID"] = span.trace_id
        response.headers["X-Span-ID"] = span.span_id
        return response
