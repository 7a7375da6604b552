import json
from http import HTTPStatus
from types import SimpleNamespace
from unittest import mock

import pytest

from roxy.controller import Controller, parse_listen
from roxy.servers import Server, Upstream


@pytest.fixture
def controller():
    server = Server("1.2.3.4:8388", remarks="hk")
    server.push_latency(120)
    upstream = Upstream([server])
    return Controller(SimpleNamespace(listen="127.0.0.1:9090"), upstream)


def test_parse_listen_v4():
    assert parse_listen("127.0.0.1:9090") == ("127.0.0.1", 9090)


def test_parse_listen_v6():
    assert parse_listen("[::1]:80") == ("::1", 80)


@pytest.mark.parametrize(
    "text", ["localhost:80", "1.2.3.4", "1.2.3.4:70000", "1.2.3.4:-1", ":80", "::1:80"]
)
def test_parse_listen_invalid(text):
    with pytest.raises(ValueError):
        parse_listen(text)


def test_controller_rejects_bad_listen():
    with pytest.raises(ValueError):
        Controller(SimpleNamespace(listen="nowhere"), Upstream([]))


def test_controller_listen(controller):
    assert controller.listen == ("127.0.0.1", 9090)


def test_upstream_stats(controller):
    status, content_type, body = controller.handle("GET", "/upstream")
    assert status == HTTPStatus.OK
    assert content_type == "application/json"
    data = json.loads(body)
    assert len(data) == 1
    assert data[0]["address"] == "1.2.3.4:8388"
    assert data[0]["remarks"] == "hk"
    assert [item["value"] for item in data[0]["latencies"]] == [120]


def test_query_string_is_ignored(controller):
    status, _, _ = controller.handle("GET", "/upstream?pretty=1")
    assert status == HTTPStatus.OK


def test_not_found(controller):
    assert controller.handle("GET", "/nothing") == (HTTPStatus.NOT_FOUND, None, b"Not Found")


def test_wrong_method_not_found(controller):
    status, _, body = controller.handle("POST", "/upstream")
    assert status == HTTPStatus.NOT_FOUND
    assert body == b"Not Found"


def test_stats_failure_is_internal_error(controller):
    with mock.patch("os.getpid", return_value=-1):
        status, content_type, body = controller.handle("GET", "/stats")
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert content_type == "text/plain"
    assert body