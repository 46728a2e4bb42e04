"""WebSocket connection abstractions used by the copy protocol."""

from __future__ import annotations

import enum
import os
import struct
import sys
from typing import Mapping, Optional, Protocol, runtime_checkable

import websocket

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_NO_STATUS = 1005
CLOSE_ABNORMAL = 1006

NORMAL_CLOSE_CODES = frozenset({CLOSE_NORMAL, CLOSE_GOING_AWAY})


class MessageType(enum.IntEnum):
    """WebSocket data frame kinds."""

    TEXT = 1
    BINARY = 2


class WebSocketClosed(Exception):
    """The peer closed the connection, or it was lost."""

    def __init__(self, code: int, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"websocket closed ({code}){': ' + reason if reason else ''}")


class DialError(Exception):
    """Opening a WebSocket connection failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"websocket connect failed (HTTP {self.status_code}): {self.body}"
        return f"websocket connect failed: {self.message}"


@runtime_checkable
class WsConn(Protocol):
    """A message-oriented WebSocket connection."""

    def write_message(self, message_type: MessageType, data: bytes) -> None:
        """Send one message."""

    def read_message(self) -> tuple[MessageType, bytes]:
        """Receive one message; raises WebSocketClosed when the connection ends."""

    def close(self) -> None:
        """Close the connection."""


@runtime_checkable
class WsDialer(Protocol):
    """Something that opens WebSocket connections."""

    def dial(self, url: str, headers: Mapping[str, str]) -> WsConn:
        """Connect to ``url`` with the given handshake headers."""


class _WebSocketClientConn:
    """WsConn backed by a websocket-client connection."""

    def __init__(self, ws: websocket.WebSocket) -> None:
        self._ws = ws

    def write_message(self, message_type: MessageType, data: bytes) -> None:
        opcode = (
            websocket.ABNF.OPCODE_TEXT
            if message_type == MessageType.TEXT
            else websocket.ABNF.OPCODE_BINARY
        )
        try:
            self._ws.send(bytes(data), opcode=opcode)
        except websocket.WebSocketConnectionClosedException as exc:
            raise WebSocketClosed(CLOSE_ABNORMAL, str(exc)) from exc

    def read_message(self) -> tuple[MessageType, bytes]:
        while True:
            try:
                opcode, data = self._ws.recv_data()
            except websocket.WebSocketConnectionClosedException as exc:
                raise WebSocketClosed(CLOSE_ABNORMAL, str(exc)) from exc
            if isinstance(data, str):
                data = data.encode("utf-8")
            if opcode == websocket.ABNF.OPCODE_CLOSE:
                if len(data) >= 2:
                    (code,) = struct.unpack("!H", data[:2])
                    raise WebSocketClosed(code, data[2:].decode("utf-8", errors="replace"))
                raise WebSocketClosed(CLOSE_NO_STATUS)
            if opcode == websocket.ABNF.OPCODE_TEXT:
                return MessageType.TEXT, data
            if opcode == websocket.ABNF.OPCODE_BINARY:
                return MessageType.BINARY, data

    def close(self) -> None:
        self._ws.close()


class DefaultDialer:
    """Opens real WebSocket connections."""

    def dial(self, url: str, headers: Mapping[str, str]) -> WsConn:
        """Connect to ``url``; raises DialError on failure."""
        header_lines = [f"{name}: {value}" for name, value in headers.items()]
        try:
            ws = websocket.create_connection(url, header=header_lines)
        except websocket.WebSocketBadStatusException as exc:
            body = getattr(exc, "resp_body", None) or b""
            if isinstance(body, bytes):
                body = body.decode("utf-8", errors="replace")
            raise DialError(str(exc), exc.status_code, body) from exc
        except (websocket.WebSocketException, OSError) as exc:
            raise DialError(str(exc)) from exc
        return _WebSocketClientConn(ws)


def get_file_ownership(stat_result: os.stat_result) -> tuple[int, int]:
    """Return (uid, gid) of a stat result; always (0, 0) on Windows."""
    if sys.platform == "win32":
        return 0, 0
    return getattr(stat_result, "st_uid", 0), getattr(stat_result, "st_gid", 0)


__all__ = [
    "CLOSE_ABNORMAL",
    "CLOSE_GOING_AWAY",
    "CLOSE_NORMAL",
    "CLOSE_NO_STATUS",
    "DefaultDialer",
    "DialError",
    "MessageType",
    "NORMAL_CLOSE_CODES",
    "WebSocketClosed",
    "WsConn",
    "WsDialer",
    "get_file_ownership",
]