import json
import re
from dataclasses import dataclass, field
from typing import Union

import httpx
from starlette.datastructures import Headers, MutableHeaders


THROTTLE_FIELDS = ("serial_no", "permitted_no")

# RFC 3986 reg-name without percent-encoding, or a bracketed IPv6 literal.
HOST_PATTERN = re.compile(r"[a-z0-9\-._~!$&'()*+,;=]+|\[[0-9a-f:.]+\]", re.IGNORECASE)


class AdmissionError(Exception):
    """Base class for failures while consulting the admission service."""


class AdmissionUnreachable(AdmissionError):
    pass


class InvalidHost(AdmissionError):
    pass


class MalformedThrottleBody(AdmissionError):
    pass


class UnclassifiedStatus(AdmissionError):
    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"admission service returned unclassified status {status}")


@dataclass
class InboundRequest:
    host: str
    headers: Headers = field(default_factory=Headers)
    outbound_headers: MutableHeaders = field(default_factory=MutableHeaders)


@dataclass(frozen=True)
class AdmissionResponse:
    status: int
    headers: httpx.Headers
    body: bytes = b""

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "AdmissionResponse":
        return cls(status=response.status_code, headers=response.headers, body=response.content)

    @property
    def set_cookies(self) -> list[str]:
        return self.headers.get_list("set-cookie")


@dataclass(frozen=True)
class AdmissionFailure:
    error: AdmissionError

    def __str__(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


@dataclass(frozen=True)
class ThrottleInfo:
    """Queue position of a throttled caller.

    Values are kept in their string form since they are only ever written to
    response headers.
    """

    serial_no: str
    permitted_no: str

    @classmethod
    def parse(cls, body: bytes) -> Union["ThrottleInfo", AdmissionFailure]:
        try:
            data = json.loads(body)
        except ValueError as e:
            error = MalformedThrottleBody(f"throttle body is not JSON: {e}")
            error.__cause__ = e
            return AdmissionFailure(error)

        if not isinstance(data, dict):
            return AdmissionFailure(MalformedThrottleBody("throttle body is not a JSON object"))

        missing = [name for name in THROTTLE_FIELDS if data.get(name) is None]
        if missing:
            return AdmissionFailure(MalformedThrottleBody(f"throttle body lacks {', '.join(missing)}"))

        return cls(serial_no=str(data["serial_no"]), permitted_no=str(data["permitted_no"]))

    def apply(self, headers: MutableHeaders) -> None:
        headers["serial_no"] = self.serial_no
        headers["permitted_no"] = self.permitted_no


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Block:
    status: int
    headers: tuple[tuple[str, str], ...] = ()


Disposition = Union[Continue, Block]


def admission_query_target(host: str, enable: bool = False) -> str:
    url = f"/queues/{host}"
    if enable:
        url += "/enable"
    return url


def valid_host(host: str) -> bool:
    """True when ``host`` can be used as a single path segment of the query target."""
    return bool(HOST_PATTERN.fullmatch(host)) and host.strip(".") != ""
