import json
import os

import pytest

from hypeman.cp_to import CpToInstanceOptions, cp_to_instance, cp_to_instance_from_url
from hypeman.cpconfig import CopyError, CpCallbacks, CpConfig
from hypeman.ws import CLOSE_NORMAL, DialError, MessageType, WebSocketClosed, get_file_ownership

SUCCESS = json.dumps({"type": "result", "success": True, "bytes_written": 11}).encode()
CFG = CpConfig(base_url="http://localhost:8080", api_key="token")


class MockConn:
    def __init__(self, replies=()):
        self.written = []
        self.replies = list(replies)
        self.closed = False

    def write_message(self, message_type, data):
        self.written.append((message_type, bytes(data)))

    def read_message(self):
        if not self.replies:
            raise WebSocketClosed(CLOSE_NORMAL)
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class MockDialer:
    def __init__(self, make_conn=None, error=None):
        self.make_conn = make_conn
        self.error = error
        self.conns = []
        self.calls = []

    def dial(self, url, headers):
        self.calls.append((url, dict(headers)))
        if self.error is not None:
            raise self.error
        conn = self.make_conn()
        self.conns.append(conn)
        return conn


def success_dialer():
    return MockDialer(lambda: MockConn([(MessageType.TEXT, SUCCESS)]))


@pytest.fixture
def src_file(tmp_path):
    path = tmp_path / "test.txt"
    path.write_bytes(b"hello world")
    return str(path)


def first_request(conn):
    return json.loads(conn.written[0][1])


def test_single_file(src_file):
    dialer = success_dialer()
    cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/test.txt", dialer=dialer))

    conn = dialer.conns[0]
    assert conn.closed is True
    assert len(conn.written) >= 2
    request = first_request(conn)
    assert request["direction"] == "to"
    assert request["guest_path"] == "/app/test.txt"
    assert request.get("is_dir", False) is False
    assert conn.written[1] == (MessageType.BINARY, b"hello world")
    assert conn.written[2] == (MessageType.TEXT, b'{"type":"end"}')


def test_callbacks(src_file):
    events = []
    callbacks = CpCallbacks(
        on_file_start=lambda path, size: events.append(("start", path, size)),
        on_progress=lambda copied: events.append(("progress", copied)),
        on_file_end=lambda path: events.append(("end", path)),
    )
    cp_to_instance(
        CFG,
        CpToInstanceOptions(
            "inst_123", src_file, "/app/test.txt", callbacks=callbacks, dialer=success_dialer()
        ),
    )
    assert events == [("start", src_file, 11), ("progress", 11), ("end", src_file)]


def test_server_error_message(src_file):
    reply = json.dumps({"type": "error", "message": "disk full"}).encode()
    dialer = MockDialer(lambda: MockConn([(MessageType.TEXT, reply)]))
    with pytest.raises(CopyError, match="copy failed: disk full"):
        cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))


def test_unsuccessful_result(src_file):
    reply = json.dumps({"type": "result", "success": False, "error": "no space"}).encode()
    dialer = MockDialer(lambda: MockConn([(MessageType.TEXT, reply)]))
    with pytest.raises(CopyError, match="copy failed: no space"):
        cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))


def test_closed_before_result(src_file):
    dialer = MockDialer(lambda: MockConn([]))
    with pytest.raises(CopyError, match="read result"):
        cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))
    assert dialer.conns[0].closed is True


def test_mode_override(src_file):
    dialer = success_dialer()
    cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", mode=0o600, dialer=dialer))
    assert first_request(dialer.conns[0])["mode"] == 0o600


def test_mode_detected_from_source(src_file):
    dialer = success_dialer()
    cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))
    assert first_request(dialer.conns[0])["mode"] == os.stat(src_file).st_mode & 0o777


def test_archive_sends_ownership(src_file):
    dialer = success_dialer()
    cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", archive=True, dialer=dialer))
    uid, gid = get_file_ownership(os.stat(src_file))
    request = first_request(dialer.conns[0])
    assert request.get("uid", 0) == uid
    assert request.get("gid", 0) == gid


def test_directory_copy(tmp_path):
    root = tmp_path / "dir"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"a")
    (root / "sub" / "b.txt").write_bytes(b"b")

    dialer = success_dialer()
    cp_to_instance(CFG, CpToInstanceOptions("inst_123", str(root), "/app/dir", dialer=dialer))

    requests = [first_request(conn) for conn in dialer.conns]
    assert [r["guest_path"] for r in requests] == [
        "/app/dir",
        "/app/dir/a.txt",
        "/app/dir/sub",
        "/app/dir/sub/b.txt",
    ]
    assert [r.get("is_dir", False) for r in requests] == [True, False, True, False]
    assert all(conn.closed for conn in dialer.conns)


def test_follow_links_skips_cycle(tmp_path):
    root = tmp_path / "d"
    root.mkdir()
    (root / "f.txt").write_bytes(b"x")
    os.symlink(str(root), str(root / "loop"))

    dialer = success_dialer()
    cp_to_instance(
        CFG, CpToInstanceOptions("inst_123", str(root), "/app/d", follow_links=True, dialer=dialer)
    )
    assert [first_request(c)["guest_path"] for c in dialer.conns] == ["/app/d", "/app/d/f.txt"]


def test_empty_instance_id(src_file):
    dialer = success_dialer()
    with pytest.raises(CopyError, match="build ws url"):
        cp_to_instance(CFG, CpToInstanceOptions("", src_file, "/app/t", dialer=dialer))
    assert dialer.calls == []


def test_dial_failure(src_file):
    dialer = MockDialer(error=ConnectionRefusedError("refused"))
    with pytest.raises(CopyError, match="websocket connect failed: refused"):
        cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))


def test_dial_http_failure(src_file):
    dialer = MockDialer(error=DialError("bad status", 401, "unauthorized"))
    with pytest.raises(CopyError) as info:
        cp_to_instance(CFG, CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer))
    assert str(info.value) == "websocket connect failed (HTTP 401): unauthorized"


def test_missing_source(tmp_path):
    dialer = success_dialer()
    with pytest.raises(CopyError, match="stat source"):
        cp_to_instance(
            CFG, CpToInstanceOptions("inst_123", str(tmp_path / "nope"), "/app/t", dialer=dialer)
        )
    assert dialer.conns[0].closed is True


def test_from_url_builds_connection(src_file):
    dialer = success_dialer()
    cp_to_instance_from_url(
        "http://localhost:8080", "token", CpToInstanceOptions("inst_123", src_file, "/app/t", dialer=dialer)
    )
    url, headers = dialer.calls[0]
    assert url == "ws://localhost:8080/instances/inst_123/cp"
    assert headers == {"Authorization": "Bearer token"}