import socket

import httpx
import pytest

from sdo.health import check_health, check_tcp


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "code,body,ok",
    [
        (200, {"status": "healthy"}, True),
        (200, {"metadatabase": {"status": "healthy"}, "scheduler": {"status": "healthy"}}, True),
        (200, {"metadatabase": {"status": "healthy"}, "scheduler": {"status": "unhealthy"}}, False),
        (200, {"status": "starting"}, False),
        (503, {"status": "healthy"}, False),
    ],
)
def test_check_health_payloads(code, body, ok):
    res, msg, latency = check_health("http://svc/health", client=_client(lambda r: httpx.Response(code, json=body)))
    assert res is ok
    assert latency is not None


def test_plain_text_200_is_healthy():
    ok, msg, _ = check_health("http://svc/health", client=_client(lambda r: httpx.Response(200, text="OK")))
    assert ok
    assert msg == "Healthy"


def test_unhealthy_message_names_the_component():
    body = {"scheduler": {"status": "unhealthy"}}
    ok, msg, _ = check_health("http://svc/health", client=_client(lambda r: httpx.Response(200, json=body)))
    assert not ok
    assert "scheduler=unhealthy" in msg


def test_connection_error_is_no_response():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    ok, msg, _ = check_health("http://svc/health", client=_client(refuse))
    assert not ok
    assert msg == "No response"


def test_check_tcp_open_and_closed_port():
    srv = socket.socket()
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    port = srv.getsockname()[1]
    try:
        ok, _, _ = check_tcp(f"127.0.0.1:{port}", timeout_s=1)
        assert ok
    finally:
        srv.close()

    ok, msg, _ = check_tcp(f"127.0.0.1:{port}", timeout_s=1)
    assert not ok
    assert msg.startswith("No connection")
