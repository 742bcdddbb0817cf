import time
import logging
import traceback
import httpx
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional, Union
from starlette.datastructures import MutableHeaders
from edgegate.core.metrics import ADMISSION_DECISIONS, ADMISSION_DURATION
from .admission import (
    AdmissionError,
    AdmissionFailure,
    AdmissionResponse,
    AdmissionUnreachable,
    Block,
    Continue,
    Disposition,
    InboundRequest,
    InvalidHost,
    ThrottleInfo,
    UnclassifiedStatus,
    admission_query_target,
    valid_host,
)
from .trace import trace_id_var


logger = logging.getLogger(__name__)

SERVICE_UNAVAILABLE = 503

# Headers that describe the inbound connection rather than the client.
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
}


def cookieless_jar() -> CookieJar:
    """Jar that never stores cookies, so one client's cookies never leak to another."""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class AdmissionGate:
    """Decides whether a request may reach its origin.

    Every evaluation issues exactly one ``GET /queues/{host}[/enable]`` to the
    admission service and maps the answer onto a disposition:

    * 200 admits the request,
    * 429 blocks it with 503 and the caller's queue position,
    * anything that goes wrong blocks it with a bare 503.

    The ``Set-Cookie`` values of the admission response are always copied to
    the outbound headers so the client keeps its place in the queue.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:18080",
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        fail_open_on_unclassified: bool = True,
    ) -> None:
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout, cookies=cookieless_jar()
        )
        self.fail_open_on_unclassified = fail_open_on_unclassified

    async def evaluate(self, request: InboundRequest, enable: bool = False) -> Disposition:
        start = time.time()
        try:
            disposition, outcome = await self._evaluate(request, enable)
        except Exception as e:
            # anything not already turned into a failure value still fails closed
            disposition, outcome = self._fail(request, AdmissionFailure(AdmissionError(repr(e))), e), "failed"
        finally:
            ADMISSION_DURATION.observe(time.time() - start)

        ADMISSION_DECISIONS.labels(outcome=outcome).inc()
        return disposition

    async def _evaluate(self, request: InboundRequest, enable: bool) -> tuple[Disposition, str]:
        if not request.host:
            return self._fail(request, AdmissionFailure(AdmissionError("inbound request has no host"))), "failed"
        if not valid_host(request.host):
            error = InvalidHost(f"host {request.host!r} is not a valid host name")
            return self._fail(request, AdmissionFailure(error)), "failed"

        target = admission_query_target(request.host, enable)
        result = await self._query(target, request)
        if isinstance(result, AdmissionFailure):
            return self._fail(request, result), "failed"

        self._copy_cookies(result, request.outbound_headers)

        if result.status == 200:
            logger.info(f"Admission granted for {request.host}")
            return Continue(), "admitted"

        if result.status == 429:
            info = ThrottleInfo.parse(result.body)
            if isinstance(info, AdmissionFailure):
                return self._fail(request, info), "failed"
            info.apply(request.outbound_headers)
            logger.info(f"Admission throttled for {request.host}: "
                        f"serial_no={info.serial_no} permitted_no={info.permitted_no}")
            return Block(SERVICE_UNAVAILABLE, tuple(request.outbound_headers.items())), "throttled"

        return self._unclassified(request, UnclassifiedStatus(result.status)), "unclassified"

    async def _query(
        self,
        target: str,
        request: InboundRequest,
    ) -> Union[AdmissionResponse, AdmissionFailure]:
        headers = [(k, v) for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS]
        trace_id = trace_id_var.get()
        if trace_id:
            headers.append(("x-trace-id", trace_id))

        try:
            response = await self.client.get(target, headers=headers)
        except httpx.HTTPError as e:
            error = AdmissionUnreachable(f"GET {target} failed: {e!r}")
            error.__cause__ = e
            return AdmissionFailure(error)
        return AdmissionResponse.from_httpx(response)

    def _copy_cookies(self, response: AdmissionResponse, outbound: MutableHeaders) -> None:
        del outbound["set-cookie"]
        for cookie in response.set_cookies:
            outbound.append("set-cookie", cookie)

    def _unclassified(self, request: InboundRequest, error: UnclassifiedStatus) -> Disposition:
        if self.fail_open_on_unclassified:
            logger.info(f"Admitting {request.host} on {error}")
            return Continue()
        logger.warning(f"Blocking {request.host} on {error}")
        return Block(SERVICE_UNAVAILABLE, self._cookie_headers(request))

    def _fail(
        self,
        request: InboundRequest,
        failure: AdmissionFailure,
        exc: Optional[BaseException] = None,
    ) -> Block:
        error = exc or failure.error
        logger.error(f"Admission check failed for {request.host or '-'}: {failure}")
        logger.error("".join(traceback.format_exception(type(error), error, error.__traceback__)))
        return Block(SERVICE_UNAVAILABLE, self._cookie_headers(request))

    def _cookie_headers(self, request: InboundRequest) -> tuple[tuple[str, str], ...]:
        return tuple(("set-cookie", v) for v in request.outbound_headers.getlist("set-cookie"))

    async def aclose(self) -> None:
        await self.client.aclose()
