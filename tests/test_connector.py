import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from kubeletscrape.connector import (
    ConnectorConfig,
    ConnParams,
    DefaultConnector,
    KubeletConnectionError,
    StaticConnector,
)

NODE_NAME = "test-node"
HEALTHZ = "/healthz"
API_PROXY = "/api/v1/nodes/test-node/proxy"
PROXY_HEALTHZ = API_PROXY + HEALTHZ


@pytest.fixture
def serve():
    servers = []

    def start(endpoints):
        seen = {}
        lock = threading.Lock()

        class Handler(BaseHTTPRequestHandler):
            timeout = 1

            def do_GET(self):
                with lock:
                    seen[self.path] = self.headers
                self.send_response(200 if self.path in endpoints else 404)
                self.send_header("Content-Length", "0")
                self.end_headers()

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server.server_address[1], seen

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "token"
    path.write_text("token\n")
    return str(path)


def make_connector(port, token_file, node_port=None, **overrides):
    def getter(name):
        if name != NODE_NAME or node_port is None:
            raise LookupError("node not found")
        return node_port

    config = ConnectorConfig(node_name=NODE_NAME, node_ip="127.0.0.1", timeout=5, **overrides)
    return DefaultConnector(getter, config, f"http://127.0.0.1:{port}", token_file)


def test_connects_locally_over_http(serve, token_file):
    port, seen = serve([HEALTHZ])
    params = make_connector(port, token_file, node_port=port, scheme="http").connect()

    assert params.url == f"http://127.0.0.1:{port}"
    assert HEALTHZ in seen
    assert PROXY_HEALTHZ not in seen


def test_detects_scheme_by_trying_https_then_http(serve, token_file):
    port, seen = serve([HEALTHZ])
    params = make_connector(port, token_file, node_port=port).connect()

    assert params.url == f"http://127.0.0.1:{port}"
    assert params.timeout == 5
    assert HEALTHZ in seen


def test_falls_back_to_api_proxy(serve, token_file):
    port, seen = serve([PROXY_HEALTHZ])
    params = make_connector(port, token_file, node_port=port, scheme="http").connect()

    assert params.url == f"http://127.0.0.1:{port}{API_PROXY}"
    assert HEALTHZ in seen
    assert seen[PROXY_HEALTHZ].get("Authorization") == "Bearer token"


def test_takes_scheme_from_config(serve, token_file):
    port, _ = serve([HEALTHZ])
    connector = make_connector(port, token_file, node_port=port, scheme="https")

    with pytest.raises(KubeletConnectionError, match="API proxy"):
        connector.connect()


def test_takes_port_from_config(serve, token_file):
    port, seen = serve([HEALTHZ])
    connector = make_connector(port, token_file, node_port=None, port=port, scheme="http")

    params = connector.connect()

    assert params.url == f"http://127.0.0.1:{port}"
    assert HEALTHZ in seen


def test_port_lookup_failure(serve, token_file):
    port, seen = serve([HEALTHZ])
    connector = make_connector(port, token_file, node_port=None)

    with pytest.raises(KubeletConnectionError, match="getting kubelet port"):
        connector.connect()
    assert seen == {}


def test_fails_when_nothing_answers(serve, token_file):
    port, seen = serve([])
    connector = make_connector(port, token_file, node_port=port)

    with pytest.raises(KubeletConnectionError, match="non-200 status code: 404"):
        connector.connect()

    assert HEALTHZ in seen
    assert PROXY_HEALTHZ in seen
    assert seen[HEALTHZ].get("Authorization") is None
    assert seen[PROXY_HEALTHZ].get("Authorization") == "Bearer token"


def test_missing_token_file(serve, tmp_path):
    port, _ = serve([HEALTHZ])
    connector = make_connector(port, str(tmp_path / "missing"), node_port=port, scheme="http")

    with pytest.raises(KubeletConnectionError, match="nodeIP"):
        connector.connect()


def test_invalid_api_server(serve, token_file):
    port, _ = serve([])
    config = ConnectorConfig(node_name=NODE_NAME, node_ip="127.0.0.1", port=port, scheme="http")
    connector = DefaultConnector(lambda name: port, config, "not a url", token_file)

    with pytest.raises(KubeletConnectionError, match="parsing kubernetes api url"):
        connector.connect()


def test_static_connector_returns_fixed_parameters():
    session = object()
    params = StaticConnector(session, "http://kubelet.example:10255").connect()

    assert params == ConnParams("http://kubelet.example:10255", session)
    assert params.session is session