import asyncio
import httpx
import time
import logging
from starlette.types import Scope, Receive, Send
from starlette.responses import PlainTextResponse, Response
from typing import Optional, Any, Callable
from urllib.parse import urljoin
from edgegate.core.metrics import REQUEST_COUNT, REQUEST_DURATION, ACTIVE_REQUESTS
from .admission_gate import HOP_BY_HOP_HEADERS, cookieless_jar
from .path_router import PathRouter
from .trace import trace_id_var


logger = logging.getLogger(__name__)

# httpx hands back a decoded body, so the origin's framing no longer applies
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding"}


class GatewayRouter:
    """Reverse proxy to the origins named in the route table."""

    def __init__(
        self,
        route_table: Optional[dict[str, Any]] = None,
        timeout: float = 5.0,
        retries: int = 2,
        retry_delay: float = 0.1,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.path_router = PathRouter(route_table or {})
        self.default_retries = retries
        self.default_retry_delay = retry_delay
        self.default_timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout, cookies=cookieless_jar())

        self.cleanup_callbacks: list[Callable] = []
        self.add_cleanup_callback(self.client.aclose)

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        if scope["type"] != "http":
            await PlainTextResponse("Unsupported", status_code=400)(scope, receive, send)
            return

        await self._handle_http(scope, receive, send)

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send):
        path = scope["path"]
        method = scope["method"]
        query = scope.get("query_string", b"").decode()
        logger.info(f"Incoming request: {method} {path}?{query}")

        route, backend_base, config = self.path_router.match(path)
        if not backend_base:
            logger.warning(f"No route match for {path}")
            await PlainTextResponse("Route not found", status_code=404)(scope, receive, send)
            return

        retries = config.get("retries", self.default_retries)
        retry_delay = config.get("retry_delay", self.default_retry_delay)
        timeout = config.get("timeout", self.default_timeout)

        target_url = self._construct_target_url(backend_base, path, query)
        logger.info(f"Proxying request to: {target_url}")

        headers = self._extract_headers(scope)
        body = await self._read_body(receive)

        ACTIVE_REQUESTS.inc()
        start = time.time()
        try:
            backend_response = await self._send_with_retries(
                method, target_url, headers, body,
                retries=retries, retry_delay=retry_delay, timeout=timeout
            )
        finally:
            ACTIVE_REQUESTS.dec()
            REQUEST_DURATION.labels(route=route).observe(time.time() - start)

        if backend_response is None:
            REQUEST_COUNT.labels(method=method, route=route, status="502").inc()
            logger.error(f"Upstream failure after {retries} retries for {target_url}")
            await PlainTextResponse(
                f"Upstream error after {retries} retries",
                status_code=502
            )(scope, receive, send)
            return

        REQUEST_COUNT.labels(method=method, route=route,
                             status=str(backend_response.status_code)).inc()
        logger.info(f"Response from backend: {target_url} ({backend_response.status_code})")
        await self._send_response(scope, receive, send, backend_response)

    def _construct_target_url(self, base: str, path: str, query: str) -> str:
        url = urljoin(base, path)
        return f"{url}?{query}" if query else url

    def _extract_headers(self, scope: Scope) -> list[tuple[str, str]]:
        headers = [
            (k.decode("latin-1"), v.decode("latin-1"))
            for k, v in scope.get("headers", [])
            if k.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        trace_id = trace_id_var.get()
        if trace_id:
            headers = [(k, v) for k, v in headers if k.lower() != "x-trace-id"]
            headers.append(("x-trace-id", trace_id))
        return headers

    async def _read_body(self, receive: Receive) -> bytes:
        body = b""
        more_body = True
        while more_body:
            message = await receive()
            body += message.get("body", b"")
            more_body = message.get("more_body", False)
        return body

    async def _send_with_retries(
        self,
        method: str,
        url: str,
        headers: list[tuple[str, str]],
        body: bytes,
        retries: int,
        retry_delay: float,
        timeout: float
    ) -> Optional[httpx.Response]:
        attempt = 0
        while attempt <= retries:
            try:
                logger.info(f"Attempt {attempt+1} to {url}")
                response = await self.client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    content=body,
                    timeout=timeout or self.default_timeout
                )
                if response.status_code < 500:
                    return response
                logger.warning(f"Backend {url} answered {response.status_code}")
            except httpx.RequestError as e:
                logger.error(f"Request error to {url}: {str(e)}")

            attempt += 1
            if attempt <= retries:
                logger.info(f"Retrying after delay ({retry_delay}s)")
                await asyncio.sleep(retry_delay)

        logger.error(f"All retries failed for {url}")
        return None

    async def _send_response(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        backend_response: httpx.Response
    ):
        response = Response(
            content=backend_response.content,
            status_code=backend_response.status_code,
        )
        for name, value in backend_response.headers.multi_items():
            if name.lower() not in STRIPPED_RESPONSE_HEADERS:
                response.headers.append(name, value)
        await response(scope, receive, send)

    def add_cleanup_callback(self, cb: Callable) -> None:
        self.cleanup_callbacks.append(cb)

    async def _handle_lifespan(self, scope: Scope, receive: Receive, send: Send):
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                for cb in self.cleanup_callbacks:
                    result = cb()
                    if asyncio.iscoroutine(result): await result
                logger.info("[gateway] Shutdown complete. All resources closed.")
                await send({"type": "lifespan.shutdown.complete"})
                return
