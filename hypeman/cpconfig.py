"""Configuration and path helpers for copying files to and from instances."""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from hypeman.requestconfig import RequestConfig, RequestOption


@dataclass(frozen=True)
class CpConfig:
    """Where the API lives and how to authenticate to it."""

    base_url: str
    api_key: str = ""


@dataclass
class CpCallbacks:
    """Optional progress callbacks for copy operations."""

    on_file_start: Optional[Callable[[str, int], None]] = None
    on_progress: Optional[Callable[[int], None]] = None
    on_file_end: Optional[Callable[[str], None]] = None


class CopyError(Exception):
    """A copy to or from an instance failed."""


def extract_cp_config(opts: Iterable[RequestOption]) -> CpConfig:
    """Derive the base URL and API key from a set of request options."""
    cfg = RequestConfig(method="GET", path="")
    try:
        cfg.apply(*opts)
    except Exception as exc:
        raise ValueError(f"apply options: {exc}") from exc

    base_url = cfg.base_url if cfg.base_url is not None else cfg.default_base_url
    if base_url is None:
        raise ValueError("base URL not configured")
    return CpConfig(base_url=str(base_url), api_key=cfg.api_key)


def sanitize_path(base: str, path: str) -> str:
    """Join a server-provided relative path onto ``base``, refusing to escape it."""
    cleaned = os.path.normpath(path)
    if os.path.isabs(cleaned):
        raise ValueError(f"invalid path: absolute paths not allowed: {path}")
    if cleaned.startswith(".."):
        raise ValueError(f"invalid path: path escapes destination: {path}")

    result = os.path.normpath(os.path.join(base, cleaned))
    abs_base = os.path.abspath(base)
    abs_result = os.path.abspath(result)

    is_root = abs_base in ("/", os.sep)
    if not is_root and abs_result != abs_base and not abs_result.startswith(abs_base + os.sep):
        raise ValueError(f"invalid path: path escapes destination: {path}")
    return result


def build_ws_url(base_url: str, instance_id: str) -> str:
    """Build the WebSocket URL of an instance's copy endpoint."""
    if not instance_id:
        raise ValueError("instance ID cannot be empty")
    if any(marker in instance_id for marker in ("/", "\\", "..")):
        raise ValueError("invalid instance ID: contains path separator or traversal sequence")

    try:
        parts = urlsplit(base_url)
    except ValueError as exc:
        raise ValueError(f"invalid base URL: {exc}") from exc

    joined = posixpath.normpath(posixpath.join(parts.path, "instances", instance_id, "cp"))
    if joined.startswith("/"):
        joined = "/" + joined.lstrip("/")
    elif parts.netloc:
        joined = "/" + joined

    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, joined, parts.query, parts.fragment))


__all__ = [
    "CopyError",
    "CpCallbacks",
    "CpConfig",
    "build_ws_url",
    "extract_cp_config",
    "sanitize_path",
]