"""Request configuration, retries and execution for the hypeman HTTP API."""

from __future__ import annotations

import copy
import email.utils
import functools
import json
import platform
import random
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

PACKAGE_VERSION = "0.9.0"

_MAX_RETRY_AFTER = 60.0
_MAX_BACKOFF = 8.0
_STREAM_CHUNK = 64 * 1024

RequestOption = Callable[["RequestConfig"], None]
Middleware = Callable[[httpx.Request, Callable[[httpx.Request], httpx.Response]], httpx.Response]


class APIError(Exception):
    """Raised when the API answers with a status code of 400 or above."""

    def __init__(
        self,
        status_code: int,
        request: httpx.Request,
        response: httpx.Response,
        body: Any,
        raw: str,
    ) -> None:
        self.status_code = status_code
        self.request = request
        self.response = response
        self.body = body
        self.raw = raw
        super().__init__(str(self))

    def __str__(self) -> str:
        reason = self.response.reason_phrase if self.response is not None else ""
        return f'{self.request.method} "{self.request.url}": {self.status_code} {reason} {self.raw}'.rstrip()


def _normalized_os() -> str:
    system = platform.system()
    names = {
        "ios": "iOS",
        "android": "Android",
        "darwin": "MacOS",
        "windows": "Windows",
        "freebsd": "FreeBSD",
        "openbsd": "OpenBSD",
        "linux": "Linux",
    }
    return names.get(system.lower(), f"Other:{system}")


def _normalized_arch() -> str:
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x64"
    if machine in ("i386", "i686", "x86", "386"):
        return "x32"
    if machine in ("arm64", "aarch64"):
        return "arm64"
    if machine.startswith("arm"):
        return "arm"
    return f"other:{machine}"


def _default_headers() -> dict[str, str]:
    return {
        "User-Agent": f"Hypeman/Python {PACKAGE_VERSION}",
        "X-Stainless-Lang": "python",
        "X-Stainless-Package-Version": PACKAGE_VERSION,
        "X-Stainless-OS": _normalized_os(),
        "X-Stainless-Arch": _normalized_arch(),
        "X-Stainless-Runtime": platform.python_implementation(),
        "X-Stainless-Runtime-Version": platform.python_version(),
    }


@dataclass
class RequestConfig:
    """All the state related to one API request."""

    method: str
    path: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    query: httpx.QueryParams = field(default_factory=httpx.QueryParams)
    body: Any = None
    max_retries: int = 2
    request_timeout: float = 0.0
    base_url: Optional[httpx.URL] = None
    default_base_url: Optional[httpx.URL] = None
    http_client: Any = None
    middlewares: list = field(default_factory=list)
    api_key: str = ""
    response_into: Optional[Callable[[Optional[httpx.Response]], None]] = None

    def apply(self, *args: RequestOption) -> None:
        """Apply request options in order; the first failure propagates."""
        for option in args:
            option(self)

    @property
    def body_replayable(self) -> bool:
        """Whether the body can be sent again on a retry."""
        if self.body is None or isinstance(self.body, (bytes, bytearray)):
            return True
        seekable = getattr(self.body, "seekable", None)
        return bool(seekable and seekable())

    def _content(self) -> Any:
        if self.body is None:
            return None
        if isinstance(self.body, (bytes, bytearray)):
            return bytes(self.body)
        if self.body_replayable:
            self.body.seek(0)
            return self.body.read()
        return iter(functools.partial(self.body.read, _STREAM_CHUNK), b"")

    def _resolve_url(self) -> httpx.URL:
        if self.base_url is None:
            if self.default_base_url is None:
                raise ValueError("requestconfig: base url is not set")
            self.base_url = self.default_base_url
        return httpx.URL(self.base_url).join(self.path.lstrip("/"))

    def _build_request(self, url: httpx.URL) -> httpx.Request:
        request = httpx.Request(
            self.method,
            url,
            params=self.query if self.query else None,
            headers=self.headers,
            content=self._content(),
        )
        if self.request_timeout:
            request.extensions["timeout"] = httpx.Timeout(self.request_timeout).as_dict()
        return request

    def _handler(self, client: Any) -> Callable[[httpx.Request], httpx.Response]:
        handler = client.send
        for middleware in reversed(self.middlewares):
            handler = functools.partial(middleware, next=handler) if False else _chain(middleware, handler)
        return handler

    def execute(self) -> Any:
        """Send the request with retries and return the decoded response body.

        JSON responses are decoded into Python objects, other responses are
        returned as text, and an empty body gives None.
        """
        url = self._resolve_url()
        send_retry_count = self.headers.get("X-Stainless-Retry-Count") == "0"

        with ExitStack() as stack:
            client = self.http_client
            if client is None:
                client = stack.enter_context(httpx.Client())
            handler = self._handler(client)

            response: Optional[httpx.Response] = None
            error: Optional[BaseException] = None
            request: Optional[httpx.Request] = None
            for retry_count in range(self.max_retries + 1):
                request = self._build_request(url)
                if send_retry_count:
                    request.headers["X-Stainless-Retry-Count"] = str(retry_count)
                error = None
                try:
                    response = handler(request)
                except httpx.TimeoutException:
                    raise
                except httpx.TransportError as exc:
                    response, error = None, exc

                if not should_retry(self, response) or retry_count >= self.max_retries:
                    break
                if response is not None:
                    response.close()
                time.sleep(retry_delay(response, retry_count))

            if self.response_into is not None:
                self.response_into(response)
            if error is not None:
                raise error
            assert response is not None and request is not None

            content = response.read()
            if response.status_code >= 400:
                raw = content.decode("utf-8", errors="replace")
                try:
                    body = json.loads(raw) if raw else None
                except ValueError:
                    body = None
                raise APIError(response.status_code, request, response, body, raw)

        content_type = response.headers.get("content-type", "")
        media_type = content_type.split(";", 1)[0].strip().lower()
        is_json = "application/json" in media_type or media_type.endswith("+json")
        if not is_json:
            return content.decode("utf-8", errors="replace")
        if not content.strip():
            return None
        try:
            return json.loads(content)
        except ValueError as exc:
            raise ValueError(f"error parsing response json: {exc}") from exc

    def clone(self) -> "RequestConfig":
        """Copy the configuration; the default base URL and response hook are not carried over."""
        return RequestConfig(
            method=self.method,
            path=self.path,
            headers=httpx.Headers(self.headers),
            query=httpx.QueryParams(self.query),
            body=self.body,
            max_retries=self.max_retries,
            request_timeout=self.request_timeout,
            base_url=self.base_url,
            http_client=self.http_client,
            middlewares=list(self.middlewares),
            api_key=self.api_key,
        )


def _chain(middleware: Middleware, nxt: Callable[[httpx.Request], httpx.Response]):
    def handler(request: httpx.Request) -> httpx.Response:
        return middleware(request, nxt)

    return handler


def _serialize_body(body: Any) -> tuple[Any, bool]:
    """Return the body to send and whether it is JSON."""
    if body is None:
        return None, False
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), True
    if hasattr(body, "read"):
        return body, True
    to_dict = getattr(body, "to_dict", None)
    payload = to_dict() if callable(to_dict) else body
    return json.dumps(payload, separators=(",", ":")).encode(), True


def new_request_config(method: str, path: str, body: Any, *args: RequestOption) -> RequestConfig:
    """Build a request configuration with default headers and apply the options."""
    path, _, raw_query = path.partition("?")
    content, has_body = _serialize_body(body)

    headers = httpx.Headers()
    if has_body:
        headers["Content-Type"] = "application/json"
    headers["Accept"] = "application/json"
    headers["X-Stainless-Retry-Count"] = "0"
    headers["X-Stainless-Timeout"] = "0"
    for key, value in _default_headers().items():
        headers[key] = value

    cfg = RequestConfig(
        method=method,
        path=path,
        headers=headers,
        query=httpx.QueryParams(raw_query),
        body=content,
    )
    cfg.apply(*args)

    if cfg.headers.get("X-Stainless-Timeout") == "0":
        if not cfg.request_timeout:
            del cfg.headers["X-Stainless-Timeout"]
        else:
            cfg.headers["X-Stainless-Timeout"] = str(int(cfg.request_timeout))
    return cfg


def execute_new_request(method: str, path: str, body: Any, *args: RequestOption) -> Any:
    """Build a request configuration and execute it."""
    return new_request_config(method, path, body, *args).execute()


def should_retry(request: RequestConfig, response: Optional[httpx.Response]) -> bool:
    """Decide whether the request described by ``request`` should be sent again."""
    if not request.body_replayable:
        return False
    if response is None:
        return True
    hint = response.headers.get("x-should-retry")
    if hint == "true":
        return True
    if hint == "false":
        return False
    status = response.status_code
    return status in (408, 409, 429) or status >= 500


def parse_retry_after(response: Optional[httpx.Response]) -> Optional[float]:
    """Return the server's requested retry delay in seconds, or None."""
    if response is None:
        return None
    for header, unit in (("Retry-After-Ms", 0.001), ("Retry-After", 1.0)):
        value = response.headers.get(header, "")
        if not value:
            continue
        try:
            return float(value) * unit
        except ValueError:
            pass
        if header == "Retry-After":
            try:
                when = email.utils.parsedate_to_datetime(value)
            except (TypeError, ValueError):
                continue
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return (when - datetime.now(timezone.utc)).total_seconds()
    return None


def retry_delay(response: Optional[httpx.Response], retry_count: int) -> float:
    """Seconds to wait before the next attempt."""
    requested = parse_retry_after(response)
    if requested is not None and 0 <= requested < _MAX_RETRY_AFTER:
        return requested
    delay = min(0.5 * 2**retry_count, _MAX_BACKOFF)
    return delay - random.random() * (delay / 4)


def with_default_base_url(base_url: str) -> RequestOption:
    """Option that sets the base URL used when none is set explicitly."""
    try:
        url: Optional[httpx.URL] = httpx.URL(base_url)
        failure: Optional[Exception] = None
    except (httpx.InvalidURL, TypeError) as exc:
        url, failure = None, exc

    def option(cfg: RequestConfig) -> None:
        if failure is not None:
            raise failure
        cfg.default_base_url = url

    return option


__all__ = [
    "APIError",
    "PACKAGE_VERSION",
    "RequestConfig",
    "execute_new_request",
    "new_request_config",
    "parse_retry_after",
    "retry_delay",
    "should_retry",
    "with_default_base_url",
    "copy",
]