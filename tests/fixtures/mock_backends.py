from typing import Any, Optional
from starlette.responses import JSONResponse, PlainTextResponse, Response


class FakeAdmissionService:
    """Stands in for the waiting-room service behind /queues/."""

    def __init__(self, status: int = 200, body: Optional[Any] = None, cookies: tuple[str, ...] = ()):
        self.status = status
        self.body = body
        self.cookies = cookies
        self.paths: list[str] = []
        self.headers: list[dict[str, str]] = []

    async def __call__(self, scope, receive, send):
        self.paths.append(scope["path"])
        self.headers.append({k.decode(): v.decode() for k, v in scope["headers"]})

        if isinstance(self.body, (dict, list)):
            response = JSONResponse(self.body, status_code=self.status)
        else:
            response = Response(content=self.body or b"", status_code=self.status)
        for cookie in self.cookies:
            response.headers.append("set-cookie", cookie)
        await response(scope, receive, send)


class FakeOrigin:
    def __init__(self, cookies: tuple[str, ...] = ()):
        self.cookies = cookies
        self.calls = 0

    async def __call__(self, scope, receive, send):
        self.calls += 1
        response = PlainTextResponse(f"origin {scope['path']}")
        for cookie in self.cookies:
            response.headers.append("set-cookie", cookie)
        await response(scope, receive, send)


async def fake_users_backend(scope, receive, send):
    await JSONResponse({"status": "ok", "source": "users"})(scope, receive, send)
