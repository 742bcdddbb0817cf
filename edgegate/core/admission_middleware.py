import logging
import redis.asyncio as redis
from typing import Optional, Union
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Scope, Receive, Send
from .admission import Block, InboundRequest, valid_host
from .admission_gate import AdmissionGate
from .rate_limit import InMemoryRateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)


def request_host(scope: Scope) -> str:
    """Host the client addressed, lowercased and without a port."""
    host = Headers(scope=scope).get("host", "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, keep the brackets
        end = host.find("]")
        host = host[:end + 1] if end != -1 else host
    else:
        host = host.split(":", 1)[0]

    if not host:
        server = scope.get("server")
        host = server[0].lower() if server else ""
    return host


class AdmissionGateMiddleware:
    """Runs every HTTP request through the admission gate before the wrapped app.

    With an overload limiter configured, a site that goes over its rate is
    checked in enable mode, which turns its waiting room on.
    """

    def __init__(
        self,
        app: ASGIApp,
        gate: AdmissionGate,
        limiter: Optional[Union[InMemoryRateLimiter, RedisRateLimiter]] = None,
        enable: bool = False,
    ) -> None:
        self.app = app
        self.gate = gate
        self.limiter = limiter
        self.enable = enable

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = InboundRequest(
            host=request_host(scope),
            headers=Headers(scope=scope),
            outbound_headers=MutableHeaders(),
        )
        enable = await self._should_enable(request.host)
        disposition = await self.gate.evaluate(request, enable=enable)

        if isinstance(disposition, Block):
            await self._send_block(disposition, scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = message.setdefault("headers", [])
                for name, value in request.outbound_headers.raw:
                    headers.append((name, value))
            await send(message)

        await self.app(scope, receive, send_with_headers)

    async def _should_enable(self, host: str) -> bool:
        if self.enable:
            return True
        if self.limiter is None or not valid_host(host):
            return False

        try:
            allowed, _ = await self.limiter.allow(host)
        except redis.RedisError as e:
            # admission is still checked, only enable mode is lost
            logger.error(f"Overload check for {host} failed, continuing without enable mode: {e!r}")
            return False

        if not allowed:
            logger.warning(f"Site {host} is over {self.limiter.limit} requests, enabling waiting room")
        return not allowed

    async def _send_block(self, block: Block, scope: Scope, receive: Receive, send: Send) -> None:
        response = PlainTextResponse("Service Unavailable", status_code=block.status)
        for name, value in block.headers:
            response.headers.append(name, value)
        await response(scope, receive, send)
