"""Request options accepted by clients, services and individual API calls."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

import httpx

from hypeman.requestconfig import (
    Middleware,
    RequestConfig,
    RequestOption,
    with_default_base_url,
)

PRODUCTION_BASE_URL = "http://localhost:8080/"


def with_base_url(base: str) -> RequestOption:
    """Set the base URL; a path without a trailing slash gets one."""
    url: Optional[httpx.URL] = None
    failure: Optional[Exception] = None
    try:
        url = httpx.URL(base)
        if url.path and not url.path.endswith("/"):
            url = url.copy_with(path=url.path + "/")
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        failure = exc

    def option(cfg: RequestConfig) -> None:
        if failure is not None:
            raise ValueError(f"requestoption: with_base_url failed to parse url {failure}") from failure
        cfg.base_url = url

    return option


def with_http_client(client: Any) -> RequestOption:
    """Use ``client`` (anything with an httpx-style ``send``) to make requests."""

    def option(cfg: RequestConfig) -> None:
        if client is None:
            raise ValueError("requestoption: custom http client cannot be None")
        cfg.http_client = client

    return option


def with_middleware(*args: Middleware) -> RequestOption:
    """Add middlewares; they run in the order given, first one outermost."""

    def option(cfg: RequestConfig) -> None:
        cfg.middlewares.extend(args)

    return option


def with_max_retries(retries: int) -> RequestOption:
    """Set the number of retries; 0 means a single attempt."""
    if retries < 0:
        raise ValueError("option: cannot have fewer than 0 retries")

    def option(cfg: RequestConfig) -> None:
        cfg.max_retries = retries

    return option


def with_header(key: str, value: str) -> RequestOption:
    """Set a header, replacing any existing values."""

    def option(cfg: RequestConfig) -> None:
        cfg.headers[key] = value

    return option


def with_header_add(key: str, value: str) -> RequestOption:
    """Add a header value, keeping existing ones."""

    def option(cfg: RequestConfig) -> None:
        cfg.headers = httpx.Headers([*cfg.headers.multi_items(), (key, value)])

    return option


def with_header_del(key: str) -> RequestOption:
    """Remove every value of a header."""

    def option(cfg: RequestConfig) -> None:
        if key in cfg.headers:
            del cfg.headers[key]

    return option


def with_query(key: str, value: str) -> RequestOption:
    """Set a query parameter, replacing any existing values."""

    def option(cfg: RequestConfig) -> None:
        cfg.query = cfg.query.set(key, value)

    return option


def with_query_add(key: str, value: str) -> RequestOption:
    """Add a query parameter value, keeping existing ones."""

    def option(cfg: RequestConfig) -> None:
        cfg.query = cfg.query.add(key, value)

    return option


def with_query_del(key: str) -> RequestOption:
    """Remove every value of a query parameter."""

    def option(cfg: RequestConfig) -> None:
        cfg.query = cfg.query.remove(key)

    return option


def _split_path(key: str) -> list[str]:
    if not key:
        raise ValueError("json path cannot be empty")
    parts: list[str] = []
    current: list[str] = []
    chars = iter(key)
    for char in chars:
        if char == "\\":
            current.append(next(chars, "\\"))
        elif char == ".":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _is_index(part: str) -> bool:
    return part == "-1" or part.isdigit()


def _list_index(node: list, part: str) -> int:
    if part == "-1":
        return len(node)
    if not part.isdigit():
        raise ValueError(f"invalid array index {part!r}")
    return int(part)


def _set_child(child: Any, rest: list[str], value: Any) -> Any:
    if not rest:
        return value
    if isinstance(child, list) and not _is_index(rest[0]):
        child = {}
    elif not isinstance(child, (dict, list)):
        child = [] if _is_index(rest[0]) else {}
    _set_path(child, rest, value)
    return child


def _set_path(node: Any, parts: list[str], value: Any) -> None:
    part, rest = parts[0], parts[1:]
    if isinstance(node, list):
        index = _list_index(node, part)
        node.extend([None] * (index + 1 - len(node)))
        node[index] = _set_child(node[index], rest, value)
    else:
        node[part] = _set_child(node.get(part), rest, value)


def _delete_path(node: Any, parts: list[str]) -> None:
    *parents, last = parts
    for part in parents:
        if isinstance(node, dict):
            if part not in node:
                return
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return
    if isinstance(node, dict):
        node.pop(last, None)
    elif isinstance(node, list):
        if last == "-1" and node:
            node.pop()
        elif last.isdigit() and int(last) < len(node):
            del node[int(last)]


def _load_document(body: bytes) -> Any:
    return json.loads(body) if body.strip() else {}


def _dump_document(document: Any) -> bytes:
    return json.dumps(document, separators=(",", ":")).encode()


def with_json_set(key: str, value: Any) -> RequestOption:
    """Set the value at a dotted JSON path in the request body.

    Path parts are separated by ``.`` (escape a literal dot as ``\\.``);
    numeric parts index arrays and ``-1`` appends.
    """

    def option(cfg: RequestConfig) -> None:
        if cfg.body is None:
            body = b""
        elif isinstance(cfg.body, (bytes, bytearray)):
            body = bytes(cfg.body)
        else:
            raise TypeError("cannot use with_json_set on a body that is not serialized as bytes")
        document = _set_child(_load_document(body), _split_path(key), value)
        cfg.body = _dump_document(document)

    return option


def with_json_del(key: str) -> RequestOption:
    """Delete the value at a dotted JSON path in the request body."""

    def option(cfg: RequestConfig) -> None:
        if not isinstance(cfg.body, (bytes, bytearray)):
            raise TypeError("cannot use with_json_del on a body that is not serialized as bytes")
        document = _load_document(bytes(cfg.body))
        _delete_path(document, _split_path(key))
        cfg.body = _dump_document(document)

    return option


def with_response_into(callback: Callable[[Optional[httpx.Response]], None]) -> RequestOption:
    """Hand the final HTTP response (or None on transport failure) to ``callback``."""

    def option(cfg: RequestConfig) -> None:
        cfg.response_into = callback

    return option


def with_request_body(content_type: str, body: Any) -> RequestOption:
    """Send a pre-serialized body (bytes or a readable object) with the given content type."""

    def option(cfg: RequestConfig) -> None:
        if isinstance(body, (bytes, bytearray)):
            cfg.body = bytes(body)
        elif hasattr(body, "read"):
            cfg.body = body
        else:
            raise TypeError("body must be bytes or a readable object")
        cfg.headers["Content-Type"] = content_type

    return option


def with_request_timeout(seconds: float) -> RequestOption:
    """Set the timeout, in seconds, for each request attempt."""

    def option(cfg: RequestConfig) -> None:
        cfg.request_timeout = seconds

    return option


def with_environment_production() -> RequestOption:
    """Use the production environment's base URL by default."""
    return with_default_base_url(PRODUCTION_BASE_URL)


def with_api_key(value: str) -> RequestOption:
    """Set the API key and the bearer authorization header."""

    def option(cfg: RequestConfig) -> None:
        cfg.api_key = value
        cfg.headers["authorization"] = f"Bearer {value}"

    return option


def _dump_headers(headers: httpx.Headers) -> str:
    return "\n".join(f"{name}: {value}" for name, value in headers.multi_items())


def with_debug_log(logger: Optional[logging.Logger]) -> RequestOption:
    """Log every request and response in full; meant for development only."""

    def middleware(request: httpx.Request, nxt: Callable[[httpx.Request], httpx.Response]) -> httpx.Response:
        log = logger if logger is not None else logging.getLogger("hypeman")
        try:
            content = request.content.decode("utf-8", errors="replace")
        except httpx.RequestNotRead:
            content = None
        if content is not None:
            log.debug(
                "Request Content:\n%s %s\n%s\n\n%s\n",
                request.method,
                request.url,
                _dump_headers(request.headers),
                content,
            )

        response = nxt(request)

        body = response.read().decode("utf-8", errors="replace")
        log.debug(
            "Response Content:\n%s %s\n%s\n\n%s\n",
            response.status_code,
            response.reason_phrase,
            _dump_headers(response.headers),
            body,
        )
        return response

    return with_middleware(middleware)


__all__ = [
    "PRODUCTION_BASE_URL",
    "with_api_key",
    "with_base_url",
    "with_debug_log",
    "with_environment_production",
    "with_header",
    "with_header_add",
    "with_header_del",
    "with_http_client",
    "with_json_del",
    "with_json_set",
    "with_max_retries",
    "with_middleware",
    "with_query",
    "with_query_add",
    "with_query_del",
    "with_request_body",
    "with_request_timeout",
    "with_response_into",
]