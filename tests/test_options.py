import io
import json
import logging

import httpx
import pytest

from hypeman.options import (
    with_api_key,
    with_base_url,
    with_debug_log,
    with_environment_production,
    with_header,
    with_header_add,
    with_header_del,
    with_http_client,
    with_json_del,
    with_json_set,
    with_max_retries,
    with_middleware,
    with_query,
    with_query_add,
    with_query_del,
    with_request_body,
    with_request_timeout,
    with_response_into,
)
from hypeman.requestconfig import APIError, new_request_config


def _client(seen, status=200, body=b"{}", content_type="application/json"):
    def handler(request):
        seen.append(request)
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_base_url_gets_trailing_slash_and_joins_path():
    seen = []
    cfg = new_request_config(
        "GET",
        "volumes",
        None,
        with_base_url("http://localhost:8080/api"),
        with_http_client(_client(seen)),
    )
    assert cfg.base_url == httpx.URL("http://localhost:8080/api/")
    assert cfg.execute() == {}
    assert seen[0].url.path == "/api/volumes"


def test_base_url_parse_failure_raised_on_apply():
    option = with_base_url(123)
    with pytest.raises(ValueError, match="failed to parse url"):
        new_request_config("GET", "volumes", None, option)


def test_http_client_none_rejected():
    with pytest.raises(ValueError, match="cannot be None"):
        new_request_config("GET", "volumes", None, with_http_client(None))


def test_middlewares_run_in_given_order():
    order = []

    def first(request, nxt):
        order.append("first")
        return nxt(request)

    def second(request, nxt):
        order.append("second")
        return nxt(request)

    seen = []
    cfg = new_request_config(
        "GET",
        "resources",
        None,
        with_base_url("http://localhost:8080"),
        with_http_client(_client(seen)),
        with_middleware(first, second),
    )
    cfg.execute()
    assert order == ["first", "second"]
    assert len(seen) == 1


def test_max_retries_negative_rejected_immediately():
    with pytest.raises(ValueError):
        with_max_retries(-1)


def test_max_retries_zero_sends_once():
    seen = []
    cfg = new_request_config(
        "GET",
        "volumes",
        None,
        with_base_url("http://localhost:8080"),
        with_http_client(_client(seen, status=500, body=b'{"message":"boom"}')),
        with_max_retries(0),
    )
    assert cfg.max_retries == 0
    with pytest.raises(APIError) as info:
        cfg.execute()
    assert info.value.status_code == 500
    assert len(seen) == 1


def test_header_set_add_and_delete():
    cfg = new_request_config(
        "GET",
        "volumes",
        None,
        with_header("X-Test", "a"),
        with_header_add("X-Test", "b"),
    )
    assert cfg.headers.get_list("X-Test") == ["a", "b"]
    with_header("X-Test", "c")(cfg)
    assert cfg.headers.get_list("X-Test") == ["c"]
    with_header_del("X-Test")(cfg)
    assert "X-Test" not in cfg.headers
    with_header_del("X-Missing")(cfg)
    assert "X-Missing" not in cfg.headers


def test_query_set_add_and_delete():
    cfg = new_request_config("GET", "volumes", None, with_query("a", "1"), with_query_add("a", "2"))
    assert cfg.query.get_list("a") == ["1", "2"]
    with_query("a", "3")(cfg)
    assert cfg.query.get_list("a") == ["3"]
    with_query_del("a")(cfg)
    assert "a" not in cfg.query


def test_query_reaches_request_url():
    seen = []
    cfg = new_request_config(
        "GET",
        "volumes",
        None,
        with_base_url("http://localhost:8080"),
        with_http_client(_client(seen)),
        with_query("name", "my-data-volume"),
    )
    cfg.execute()
    assert seen[0].url.params["name"] == "my-data-volume"


def test_json_set_on_existing_body():
    cfg = new_request_config("POST", "volumes", {"name": "my-data-volume"}, with_json_set("size_gb", 10))
    assert json.loads(cfg.body) == {"name": "my-data-volume", "size_gb": 10}


def test_json_set_creates_nested_containers():
    cfg = new_request_config("POST", "volumes", None, with_json_set("meta.tags.-1", "x"))
    assert json.loads(cfg.body) == {"meta": {"tags": ["x"]}}
    with_json_set("meta.tags.-1", "y")(cfg)
    assert json.loads(cfg.body)["meta"]["tags"] == ["x", "y"]


def test_json_set_escaped_dot():
    cfg = new_request_config("POST", "volumes", None, with_json_set("a\\.b", 1))
    assert json.loads(cfg.body) == {"a.b": 1}


def test_json_del_round_trip():
    body = {"name": "my-data-volume", "size_gb": 10}
    cfg = new_request_config("POST", "volumes", body, with_json_set("id", "vol-data-1"), with_json_del("id"))
    assert json.loads(cfg.body) == body


def test_json_set_rejects_stream_body():
    with pytest.raises(TypeError):
        new_request_config("POST", "volumes", io.BytesIO(b"{}"), with_json_set("a", 1))


def test_json_del_requires_bytes_body():
    with pytest.raises(TypeError):
        new_request_config("DELETE", "volumes/id", None, with_json_del("a"))


def test_request_body_bytes_and_reader():
    cfg = new_request_config("POST", "volumes", None, with_request_body("application/gzip", b"data"))
    assert cfg.body == b"data"
    assert cfg.headers["Content-Type"] == "application/gzip"

    stream = io.BytesIO(b"stream")
    with_request_body("application/octet-stream", stream)(cfg)
    assert cfg.body is stream
    assert cfg.headers["Content-Type"] == "application/octet-stream"


def test_request_body_rejects_other_types():
    with pytest.raises(TypeError):
        new_request_config("POST", "volumes", None, with_request_body("text/plain", 42))


def test_request_timeout_sets_header():
    cfg = new_request_config("GET", "volumes", None, with_request_timeout(5))
    assert cfg.request_timeout == 5
    assert cfg.headers["X-Stainless-Timeout"] == "5"


def test_environment_production_default_base_url():
    seen = []
    cfg = new_request_config(
        "GET",
        "resources",
        None,
        with_environment_production(),
        with_http_client(_client(seen)),
    )
    cfg.execute()
    assert cfg.default_base_url == httpx.URL("http://localhost:8080/")
    assert str(seen[0].url) == "http://localhost:8080/resources"


def test_api_key_sets_authorization():
    cfg = new_request_config("GET", "volumes", None, with_api_key("placeholder"))
    assert cfg.api_key == "placeholder"
    assert cfg.headers["authorization"] == "Bearer placeholder"


def test_response_into_receives_response():
    captured = []
    cfg = new_request_config(
        "GET",
        "volumes",
        None,
        with_base_url("http://localhost:8080"),
        with_http_client(_client([], body=b"[]")),
        with_response_into(captured.append),
    )
    assert cfg.execute() == []
    assert len(captured) == 1
    assert captured[0].status_code == 200


def test_debug_log_records_request_and_response(caplog):
    logger = logging.getLogger("hypeman.test")
    cfg = new_request_config(
        "POST",
        "volumes",
        {"name": "my-data-volume"},
        with_base_url("http://localhost:8080"),
        with_http_client(_client([], body=b'{"id":"vol-data-1"}')),
        with_debug_log(logger),
    )
    with caplog.at_level(logging.DEBUG, logger="hypeman.test"):
        result = cfg.execute()
    assert result == {"id": "vol-data-1"}
    text = caplog.text
    assert "Request Content" in text
    assert "my-data-volume" in text
    assert "Response Content" in text
    assert "vol-data-1" in text