import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest
import requests

from kubeletscrape.client import KubeletClient
from kubeletscrape.connector import (
    ConnectorConfig,
    DefaultConnector,
    KubeletConnectionError,
    StaticConnector,
)

HEALTHZ = "/healthz"
KUBELET_METRIC = "/kubelet-metric"
DELAYED_METRIC = "/kubelet-metric-delay"
FAILING_METRIC = "/failing"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeSession:
    def __init__(self, status_code=200):
        self.status_code = status_code
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(url)
        return FakeResponse(self.status_code)


class FailingConnector:
    def connect(self):
        raise RuntimeError("boom")


@pytest.fixture
def server():
    state = {"counts": {}, "delayed": False}
    lock = threading.Lock()

    class Handler(BaseHTTPRequestHandler):
        timeout = 1

        def do_GET(self):
            with lock:
                state["counts"][self.path] = state["counts"].get(self.path, 0) + 1
                delay = self.path == DELAYED_METRIC and not state["delayed"]
                if delay:
                    state["delayed"] = True
            if delay:
                threading.Event().wait(1.0)
            status = 500 if self.path == FAILING_METRIC else 200
            if self.path not in (HEALTHZ, KUBELET_METRIC, DELAYED_METRIC, FAILING_METRIC):
                status = 404
            try:
                self.send_response(status)
                self.send_header("Content-Length", "0")
                self.end_headers()
            except OSError:
                pass

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    yield httpd.server_address[1], state["counts"]
    httpd.shutdown()
    httpd.server_close()


def test_get_joins_endpoint_and_path():
    session = FakeSession()
    client = KubeletClient(StaticConnector(session, "http://kubelet.example:10255"))

    response = client.get("/pods")

    assert response.status_code == 200
    assert session.calls == ["http://kubelet.example:10255/pods"]


def test_get_joins_api_proxy_path():
    session = FakeSession()
    url = "https://api.example:6443/api/v1/nodes/test-node/proxy"
    client = KubeletClient(StaticConnector(session, url))

    client.get("/stats/summary")

    assert session.calls == ["https://api.example:6443/api/v1/nodes/test-node/proxy/stats/summary"]


def test_none_connector_is_rejected():
    with pytest.raises(ValueError, match="connector should not be nil"):
        KubeletClient(None)


def test_connector_failure_is_wrapped():
    with pytest.raises(KubeletConnectionError, match="connecting to kubelet using the connector"):
        KubeletClient(FailingConnector())


def test_custom_session_is_not_retried():
    session = FakeSession(status_code=500)
    client = KubeletClient(StaticConnector(session, "http://kubelet.example"), max_retries=3)

    assert client.get("/metrics").status_code == 500
    assert len(session.calls) == 1


def test_hits_kubelet_metric_through_default_connector(server, tmp_path):
    port, counts = server
    token_file = tmp_path / "token"
    token_file.write_text("token")
    config = ConnectorConfig(node_name="test-node", node_ip="127.0.0.1", scheme="http", timeout=5)
    connector = DefaultConnector(lambda name: port, config, f"http://127.0.0.1:{port}", str(token_file))

    client = KubeletClient(connector, max_retries=3)
    response = client.get(KUBELET_METRIC)

    assert response.status_code == 200
    assert client.endpoint == f"http://127.0.0.1:{port}"
    assert counts == {HEALTHZ: 1, KUBELET_METRIC: 1}


def test_timeout_then_retry_succeeds(server, tmp_path):
    port, counts = server
    token_file = tmp_path / "token"
    token_file.write_text("token")
    config = ConnectorConfig(
        node_name="test-node", node_ip="127.0.0.1", scheme="http", timeout=0.2
    )
    connector = DefaultConnector(lambda name: port, config, f"http://127.0.0.1:{port}", str(token_file))
    client = KubeletClient(connector, max_retries=2)

    with mock.patch("time.sleep") as sleep:
        response = client.get(DELAYED_METRIC)

    assert response.status_code == 200
    assert sum(counts.values()) == 3
    assert counts[DELAYED_METRIC] == 2
    assert sleep.call_args_list == [mock.call(1.0)]


def test_server_errors_are_retried_until_exhausted(server):
    port, counts = server
    client = KubeletClient(
        StaticConnector(requests.Session(), f"http://127.0.0.1:{port}"), max_retries=3
    )

    with mock.patch("time.sleep") as sleep:
        response = client.get(FAILING_METRIC)

    assert response.status_code == 500
    assert counts[FAILING_METRIC] == 3
    assert sleep.call_args_list == [mock.call(1.0), mock.call(2.0)]


def test_not_found_is_not_retried(server):
    port, counts = server
    client = KubeletClient(
        StaticConnector(requests.Session(), f"http://127.0.0.1:{port}"), max_retries=3
    )

    with mock.patch("time.sleep") as sleep:
        response = client.get("/not-existing")

    assert response.status_code == 404
    assert counts == {"/not-existing": 1}
    assert sleep.call_count == 0


def test_connection_error_raised_after_last_attempt():
    with requests.Session() as session:
        client = KubeletClient(StaticConnector(session, "http://127.0.0.1:1"), max_retries=2)
        with mock.patch("time.sleep") as sleep:
            with pytest.raises(requests.ConnectionError):
                client.get("/pods")

    assert sleep.call_args_list == [mock.call(1.0)]