"""Copying files and directories out of a running instance."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from typing import Any, BinaryIO, Optional

from hypeman.cp_to import _encode, _open_connection, _send
from hypeman.cpconfig import CopyError, CpCallbacks, CpConfig, sanitize_path
from hypeman.ws import NORMAL_CLOSE_CODES, MessageType, WebSocketClosed, WsDialer


@dataclass
class CpFromInstanceOptions:
    """What to copy out of an instance and where to put it."""

    instance_id: str
    src_path: str
    dst_path: str
    follow_links: bool = False
    archive: bool = False
    callbacks: Optional[CpCallbacks] = None
    dialer: Optional[WsDialer] = None


@dataclass
class _FileHeader:
    path: str = ""
    mode: int = 0
    is_dir: bool = False
    is_symlink: bool = False
    link_target: str = ""
    size: int = 0
    mtime: int = 0
    uid: int = 0
    gid: int = 0

    @classmethod
    def from_message(cls, message: dict) -> "_FileHeader":
        values = {}
        for spec in fields(cls):
            value = message.get(spec.name)
            if value is None:
                continue
            kind = type(spec.default)
            if kind is int:
                valid = isinstance(value, int) and not isinstance(value, bool)
            else:
                valid = isinstance(value, kind)
            if not valid:
                raise ValueError(f"field {spec.name!r} has the wrong type")
            values[spec.name] = value
        return cls(**values)


def _set_owner(path: str, uid: int, gid: int, follow: bool = True) -> None:
    if follow:
        change = getattr(os, "chown", None)
    else:
        change = getattr(os, "lchown", None)
    if change is None:
        return
    try:
        change(path, uid, gid)
    except OSError:
        pass


class _Download:
    """State of one incoming copy stream."""

    def __init__(self, opts: CpFromInstanceOptions) -> None:
        self.opts = opts
        self.file: Optional[BinaryIO] = None
        self.header: Optional[_FileHeader] = None
        self.received = 0

    def close_file(self) -> None:
        if self.file is not None:
            self.file.close()
            self.file = None

    def handle_text(self, message: bytes) -> bool:
        """Process a control message; return True once the final marker arrives."""
        try:
            reply = json.loads(message)
        except ValueError as exc:
            raise CopyError(f"parse message: {exc}") from exc
        if reply is None:
            return False
        if not isinstance(reply, dict):
            raise CopyError("parse message: expected a JSON object")

        kind = reply.get("type")
        if kind == "header":
            self._start(reply)
        elif kind == "end":
            return self._end(reply)
        elif kind == "error":
            raise CopyError(f"copy error at {reply.get('path') or ''}: {reply.get('message') or ''}")
        elif kind == "result" and reply.get("success") is not True:
            raise CopyError(f"copy failed: {reply.get('error') or ''}")
        return False

    def _start(self, message: dict) -> None:
        self.close_file()
        try:
            header = _FileHeader.from_message(message)
        except ValueError as exc:
            raise CopyError(f"parse header: {exc}") from exc
        self.header = header

        try:
            target = sanitize_path(self.opts.dst_path, header.path)
        except ValueError as exc:
            raise CopyError(f"invalid path from server: {exc}") from exc

        if header.is_dir:
            try:
                os.makedirs(target, header.mode & 0o7777, exist_ok=True)
            except OSError as exc:
                raise CopyError(f"create directory {target}: {exc}") from exc
            if self.opts.archive:
                _set_owner(target, header.uid, header.gid)
        elif header.is_symlink:
            link = header.link_target
            if os.path.isabs(link) or os.path.normpath(link).startswith(".."):
                raise CopyError(f"invalid symlink target: {link}")
            try:
                os.makedirs(os.path.dirname(target) or ".", 0o755, exist_ok=True)
            except OSError as exc:
                raise CopyError(f"create parent dir for symlink: {exc}") from exc
            try:
                os.remove(target)
            except OSError:
                pass
            try:
                os.symlink(link, target)
            except OSError as exc:
                raise CopyError(f"create symlink {target}: {exc}") from exc
            if self.opts.archive:
                _set_owner(target, header.uid, header.gid, follow=False)
        else:
            try:
                os.makedirs(os.path.dirname(target) or ".", 0o755, exist_ok=True)
            except OSError as exc:
                raise CopyError(f"create parent dir: {exc}") from exc
            try:
                fd = os.open(target, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, header.mode & 0o7777)
                self.file = os.fdopen(fd, "wb")
            except OSError as exc:
                raise CopyError(f"create file {target}: {exc}") from exc
            callbacks = self.opts.callbacks
            if callbacks is not None and callbacks.on_file_start is not None:
                callbacks.on_file_start(header.path, header.size)

    def _end(self, message: dict) -> bool:
        final = message.get("final")
        if final is not None and not isinstance(final, bool):
            raise CopyError("invalid end marker: field 'final' must be a boolean")

        if self.file is not None:
            self.close_file()
            header = self.header
            if header is not None:
                target = sanitize_path(self.opts.dst_path, header.path)
                if header.mtime > 0:
                    try:
                        os.utime(target, (header.mtime, header.mtime))
                    except OSError:
                        pass
                if self.opts.archive:
                    _set_owner(target, header.uid, header.gid)
                callbacks = self.opts.callbacks
                if callbacks is not None and callbacks.on_file_end is not None:
                    callbacks.on_file_end(header.path)
            self.header = None
            self.received = 0

        return bool(final)

    def write(self, data: bytes) -> None:
        if self.file is None:
            return
        try:
            self.file.write(data)
        except OSError as exc:
            raise CopyError(f"write: {exc}") from exc
        self.received += len(data)
        callbacks = self.opts.callbacks
        if callbacks is not None and callbacks.on_progress is not None:
            callbacks.on_progress(self.received)


def cp_from_instance(cfg: CpConfig, opts: CpFromInstanceOptions) -> None:
    """Copy a file or directory out of a running instance; raises CopyError."""
    ws = _open_connection(cfg, opts.instance_id, opts.dialer)
    download = _Download(opts)
    try:
        request: dict[str, Any] = {"direction": "from", "guest_path": opts.src_path}
        if opts.follow_links:
            request["follow_links"] = True
        _send(ws, MessageType.TEXT, _encode(request), "send request")

        while True:
            try:
                kind, message = ws.read_message()
            except WebSocketClosed as exc:
                if exc.code in NORMAL_CLOSE_CODES:
                    break
                raise CopyError(f"read message: {exc}") from exc
            except OSError as exc:
                raise CopyError(f"read message: {exc}") from exc

            if kind == MessageType.TEXT:
                if download.handle_text(message):
                    return
            elif kind == MessageType.BINARY:
                download.write(message)
    finally:
        download.close_file()
        ws.close()

    raise CopyError("copy stream ended without completion marker")


def cp_from_instance_from_url(base_url: str, api_key: str, opts: CpFromInstanceOptions) -> None:
    """Copy out of an instance given the base URL and API key directly."""
    cp_from_instance(CpConfig(base_url=base_url, api_key=api_key), opts)


__all__ = ["CpFromInstanceOptions", "cp_from_instance", "cp_from_instance_from_url"]