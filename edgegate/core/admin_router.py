from typing import Any, Optional
from starlette.types import ASGIApp, Scope, Receive, Send
from starlette.responses import PlainTextResponse, JSONResponse, Response
from edgegate.core.metrics import render_prometheus_metrics
from edgegate.core.admission_gate import AdmissionGate
from edgegate.core.admission_middleware import AdmissionGateMiddleware


ADMIN_PREFIX = "/__"


class AdminRouter:
    def __init__(self, gate: Optional[AdmissionGateMiddleware] = None) -> None:
        self.gate = gate

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "")
        if path == "/__health":
            await self.health(scope, receive, send)
        elif path == "/__metrics":
            await self.metrics(scope, receive, send)
        elif path == "/__gate":
            await self.gate_status(scope, receive, send)
        else:
            await PlainTextResponse("Not Found", status_code=404)(scope, receive, send)

    async def health(self, scope: Scope, receive: Receive, send: Send) -> None:
        await PlainTextResponse("OK")(scope, receive, send)

    async def metrics(self, scope: Scope, receive: Receive, send: Send) -> None:
        data, content_type = render_prometheus_metrics()
        await Response(content=data, media_type=content_type)(scope, receive, send)

    async def gate_status(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self.gate is None:
            return await JSONResponse({"enabled": False})(scope, receive, send)

        gate: AdmissionGate = self.gate.gate
        limiter = self.gate.limiter
        data: dict[str, Any] = {
            "enabled": True,
            "admission_service": gate.base_url,
            "unclassified_status": "admit" if gate.fail_open_on_unclassified else "block",
            "force_enable": self.gate.enable,
            "overload_limit": getattr(limiter, "limit", None),
        }
        await JSONResponse(data)(scope, receive, send)


class AdminMount:
    """Serves admin paths directly so they never wait on the admission service."""

    def __init__(self, admin_app: ASGIApp, main_app: ASGIApp) -> None:
        self.admin_app = admin_app
        self.main_app = main_app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(ADMIN_PREFIX):
            await self.admin_app(scope, receive, send)
        else:
            await self.main_app(scope, receive, send)
