import uuid
import contextvars
from starlette.middleware.base import BaseHTTPMiddleware

trace_id_var = contextvars.ContextVar("trace_id", default=None)


class TraceMiddleware(BaseHTTPMiddleware):
    """Tags each request with an X-Trace-ID, reusing the client's when given."""

    async def dispatch(self, request, call_next):
        trace_id = request.headers.get("X-Trace-ID") or str(uuid.uuid4())
        trace_id_var.set(trace_id)

        response = await call_next(request)
        response.headers["X-Trace-ID"] = trace_id
        return response
