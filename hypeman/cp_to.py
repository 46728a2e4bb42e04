"""Copying local files and directories into a running instance."""

from __future__ import annotations

import functools
import json
import os
import posixpath
import stat
from dataclasses import dataclass, replace
from typing import Any, Optional

from hypeman.cpconfig import CopyError, CpCallbacks, CpConfig, build_ws_url
from hypeman.ws import (
    DefaultDialer,
    DialError,
    MessageType,
    WebSocketClosed,
    WsConn,
    WsDialer,
    get_file_ownership,
)

_CHUNK_SIZE = 32 * 1024


def _encode(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode()


_END_MESSAGE = _encode({"type": "end"})


@dataclass
class CpToInstanceOptions:
    """What to copy into an instance and how."""

    instance_id: str
    src_path: str
    dst_path: str
    mode: int = 0
    archive: bool = False
    follow_links: bool = False
    callbacks: Optional[CpCallbacks] = None
    dialer: Optional[WsDialer] = None


def _open_connection(cfg: CpConfig, instance_id: str, dialer: Optional[WsDialer]) -> WsConn:
    try:
        url = build_ws_url(cfg.base_url, instance_id)
    except ValueError as exc:
        raise CopyError(f"build ws url: {exc}") from exc

    headers = {"Authorization": f"Bearer {cfg.api_key}"}
    dialer = dialer if dialer is not None else DefaultDialer()
    try:
        return dialer.dial(url, headers)
    except DialError as exc:
        raise CopyError(str(exc)) from exc
    except Exception as exc:
        raise CopyError(f"websocket connect failed: {exc}") from exc


def _send(ws: WsConn, message_type: MessageType, data: bytes, what: str) -> None:
    try:
        ws.write_message(message_type, data)
    except (WebSocketClosed, OSError) as exc:
        raise CopyError(f"{what}: {exc}") from exc


def _await_result(ws: WsConn) -> None:
    """Read the server's verdict on one transfer; raise CopyError on failure."""
    try:
        _, message = ws.read_message()
    except (WebSocketClosed, OSError) as exc:
        raise CopyError(f"read result: {exc}") from exc

    try:
        reply = json.loads(message)
    except ValueError as exc:
        raise CopyError(f"parse message type: {exc}") from exc
    if not isinstance(reply, dict):
        raise CopyError("parse message type: expected a JSON object")

    if reply.get("type") == "error":
        raise CopyError(f"copy failed: {reply.get('message') or ''}")
    if reply.get("success") is not True:
        raise CopyError(f"copy failed: {reply.get('error') or ''}")


def _request(opts: CpToInstanceOptions, is_dir: bool, mode: int, uid: int, gid: int) -> dict:
    request: dict = {"direction": "to", "guest_path": opts.dst_path}
    optional = {
        "is_dir": is_dir,
        "mode": mode,
        "follow_links": opts.follow_links,
        "uid": uid,
        "gid": gid,
    }
    request.update((key, value) for key, value in optional.items() if value)
    return request


def _copy_file(ws: WsConn, src_path: str, size: int, callbacks: Optional[CpCallbacks]) -> None:
    try:
        source = open(src_path, "rb")
    except OSError as exc:
        raise CopyError(f"open source: {exc}") from exc

    with source:
        if callbacks is not None and callbacks.on_file_start is not None:
            callbacks.on_file_start(src_path, size)

        bytes_sent = 0
        try:
            for chunk in iter(functools.partial(source.read, _CHUNK_SIZE), b""):
                _send(ws, MessageType.BINARY, chunk, "send data")
                bytes_sent += len(chunk)
                if callbacks is not None and callbacks.on_progress is not None:
                    callbacks.on_progress(bytes_sent)
        except OSError as exc:
            raise CopyError(f"read source: {exc}") from exc

    _send(ws, MessageType.TEXT, _END_MESSAGE, "send end")
    _await_result(ws)

    if callbacks is not None and callbacks.on_file_end is not None:
        callbacks.on_file_end(src_path)


def _copy_dir(cfg: CpConfig, ws: WsConn, opts: CpToInstanceOptions, visited: set) -> None:
    # The server creates the directory itself; each entry then goes over its own connection.
    _send(ws, MessageType.TEXT, _END_MESSAGE, "send end")
    _await_result(ws)

    try:
        with os.scandir(opts.src_path) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError as exc:
        raise CopyError(f"read directory: {exc}") from exc

    for entry in entries:
        target = posixpath.normpath(posixpath.join(opts.dst_path, entry.name))
        try:
            info = entry.stat(follow_symlinks=False)
        except OSError as exc:
            raise CopyError(f"info: {exc}") from exc

        is_link = stat.S_ISLNK(info.st_mode)
        if opts.follow_links and is_link:
            try:
                real_path = os.path.realpath(entry.path, strict=True)
                real_info = os.stat(real_path)
            except OSError:
                continue
            if stat.S_ISDIR(real_info.st_mode):
                if real_path in visited:
                    continue
                visited.add(real_path)

        # A followed link takes its mode from the target, not the link's 0777.
        mode = 0 if (is_link and opts.follow_links) else stat.S_IMODE(info.st_mode) & 0o777
        _copy_to(cfg, replace(opts, src_path=entry.path, dst_path=target, mode=mode), visited)


def _copy_to(cfg: CpConfig, opts: CpToInstanceOptions, visited: Optional[set]) -> None:
    ws = _open_connection(cfg, opts.instance_id, opts.dialer)
    try:
        try:
            info = os.stat(opts.src_path)
        except OSError as exc:
            raise CopyError(f"stat source: {exc}") from exc

        mode = opts.mode or stat.S_IMODE(info.st_mode) & 0o777
        uid, gid = get_file_ownership(info) if opts.archive else (0, 0)
        is_dir = stat.S_ISDIR(info.st_mode)

        _send(ws, MessageType.TEXT, _encode(_request(opts, is_dir, mode, uid, gid)), "send request")

        if is_dir:
            if visited is None:
                visited = set()
            visited.add(os.path.realpath(os.path.abspath(opts.src_path)))
            _copy_dir(cfg, ws, opts, visited)
        else:
            _copy_file(ws, opts.src_path, info.st_size, opts.callbacks)
    finally:
        ws.close()


def cp_to_instance(cfg: CpConfig, opts: CpToInstanceOptions) -> None:
    """Copy a local file or directory into a running instance; raises CopyError."""
    _copy_to(cfg, opts, None)


def cp_to_instance_from_url(base_url: str, api_key: str, opts: CpToInstanceOptions) -> None:
    """Copy into an instance given the base URL and API key directly."""
    cp_to_instance(CpConfig(base_url=base_url, api_key=api_key), opts)


__all__ = ["CpToInstanceOptions", "cp_to_instance", "cp_to_instance_from_url"]