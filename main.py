import uvicorn
from dotenv import load_dotenv
from redis import asyncio as redis
from edgegate.config.routes import build_route_table
from edgegate.config.settings import load_settings
from edgegate.core.gateway_router import GatewayRouter
from edgegate.core.admission_gate import AdmissionGate
from edgegate.core.admission_middleware import AdmissionGateMiddleware
from edgegate.core.rate_limit import InMemoryRateLimiter, RedisRateLimiter
from edgegate.core.trace import TraceMiddleware
from edgegate.core.logging_setup import configure_logging
from edgegate.core.admin_router import AdminRouter, AdminMount

# Load environment variables from .env file
load_dotenv()
settings = load_settings()
configure_logging(settings.log_level)

# Origin proxy
core_gateway = GatewayRouter(build_route_table(settings.origin_url))

gate = AdmissionGate(
    base_url=settings.admission_service_url,
    timeout=settings.admission_timeout,
    fail_open_on_unclassified=settings.fail_open_on_unclassified,
)
core_gateway.add_cleanup_callback(gate.aclose)

# Overload detection switches a site's waiting room on
if settings.redis_host:
    redis_client = redis.Redis(host=settings.redis_host, port=settings.redis_port, decode_responses=True)
    core_gateway.add_cleanup_callback(redis_client.aclose)
    limiter = RedisRateLimiter(redis_client, limit=settings.overload_limit,
                               window_ms=settings.overload_window_ms)
else:
    limiter = InMemoryRateLimiter(limit=settings.overload_limit,
                                  window_seconds=settings.overload_window_ms / 1000)

gated_app = AdmissionGateMiddleware(core_gateway, gate, limiter=limiter)

# Admin paths bypass the gate
app = TraceMiddleware(AdminMount(AdminRouter(gated_app), gated_app))

if __name__ == "__main__":
    uvicorn.run(app, host=settings.listen_host, port=settings.listen_port)
