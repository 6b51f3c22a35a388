"""Discovery of a reachable kubelet, locally or through the API server proxy."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests
from requests.auth import AuthBase

HEALTHZ_PATH = "/healthz"
DEFAULT_HTTP_KUBELET_PORT = 10255
DEFAULT_HTTPS_KUBELET_PORT = 10250

_API_PROXY_PATH = "/api/v1/nodes/{}/proxy/"
_HTTP = "http"
_HTTPS = "https"


class KubeletConnectionError(Exception):
    """No connection to the kubelet could be established."""


@dataclass
class ConnectorConfig:
    """Settings that decide where and how the kubelet is reached."""

    node_name: str
    node_ip: str
    port: int = 0
    scheme: str = ""
    timeout: float | None = None
    api_ca_file: str | None = None
    api_insecure: bool = False


@dataclass
class ConnParams:
    """Where the kubelet answers and the session that reaches it."""

    url: str
    session: Any
    timeout: float | None = None


class _BearerTokenAuth(AuthBase):
    """Adds a bearer token read from a file, re-reading it on every request."""

    def __init__(self, token_file: str) -> None:
        self._path = Path(token_file)
        self._token = self._read()

    def _read(self) -> str:
        return self._path.read_text().strip()

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        try:
            self._token = self._read()
        except OSError:
            pass
        if "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {self._token}"
        return request


def _join_path(*parts: str) -> str:
    """Join URL path segments and clean the result."""
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _with_path(url: str, path: str) -> str:
    return urlunsplit(urlsplit(url)._replace(path=path))


def _url_for(base_url: str, url_path: str) -> str:
    """``base_url`` with ``url_path`` appended to its path."""
    return _with_path(base_url, _join_path(urlsplit(base_url).path, url_path))


def _host_port(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _check_connection(params: ConnParams) -> None:
    url = _url_for(params.url, HEALTHZ_PATH)
    try:
        response = params.session.get(url, timeout=params.timeout)
    except requests.RequestException as err:
        raise KubeletConnectionError(f"connecting to {url!r}: {err}") from err
    try:
        if response.status_code != 200:
            raise KubeletConnectionError(
                f"calling {url} got non-200 status code: {response.status_code}"
            )
    finally:
        response.close()


class DefaultConnector:
    """Probes the kubelet on the node IP first and then through the API server proxy.

    The port is taken from the configuration or asked from ``node_port_getter``,
    which receives the node name. The scheme is taken from the configuration or
    inferred from the well-known kubelet ports; when it cannot be inferred both
    HTTPS and HTTP are tried.
    """

    def __init__(
        self,
        node_port_getter: Callable[[str], int],
        config: ConnectorConfig,
        api_server: str,
        token_file: str | None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.node_port_getter = node_port_getter
        self.config = config
        self.api_server = api_server
        self.token_file = token_file
        self.logger = logger or logging.getLogger(__name__)

    def connect(self) -> ConnParams:
        """Return the parameters of the first kubelet endpoint that answers."""
        try:
            port = self._port()
        except Exception as err:
            raise KubeletConnectionError(f"getting kubelet port: {err}") from err

        scheme = self._scheme_for(port)
        host_url = _host_port(self.config.node_ip, port)

        self.logger.info(
            "Trying to connect to kubelet locally with scheme=%r hostURL=%r", scheme, host_url
        )
        try:
            auth = self._auth()
        except OSError as err:
            raise KubeletConnectionError(
                f"creating tripper connecting to kubelet through nodeIP: {err}"
            ) from err

        try:
            params = self._check_local_connection(auth, scheme, host_url)
        except KubeletConnectionError as err:
            self.logger.info(
                "Kubelet not reachable locally with scheme=%r hostURL=%r: %s",
                scheme,
                host_url,
                err,
            )
        else:
            self.logger.info(
                "Connected to Kubelet through nodeIP with scheme=%r hostURL=%r", scheme, host_url
            )
            return params

        self.logger.info(
            "Trying to connect to kubelet through API proxy %r to node %r",
            self.api_server,
            self.config.node_name,
        )
        try:
            return self._check_connection_api_proxy(auth)
        except KubeletConnectionError as err:
            raise KubeletConnectionError(
                f"creating connection parameters for API proxy: {err}"
            ) from err

    def _auth(self) -> _BearerTokenAuth | None:
        return _BearerTokenAuth(self.token_file) if self.token_file else None

    def _port(self) -> int:
        if self.config.port:
            self.logger.debug("Setting Port %d as specified by user config", self.config.port)
            return self.config.port
        try:
            port = int(self.node_port_getter(self.config.node_name))
        except Exception as err:
            raise LookupError(f"getting node {self.config.node_name!r}: {err}") from err
        self.logger.debug("Setting Port %d as found in status condition", port)
        return port

    def _scheme_for(self, port: int) -> str:
        if self.config.scheme:
            self.logger.debug(
                "Setting Kubelet Endpoint Scheme %s as specified by user config",
                self.config.scheme,
            )
            return self.config.scheme
        if port == DEFAULT_HTTP_KUBELET_PORT:
            self.logger.debug("Setting Kubelet Endpoint Scheme http since kubeletPort is %d", port)
            return _HTTP
        if port == DEFAULT_HTTPS_KUBELET_PORT:
            self.logger.debug("Setting Kubelet Endpoint Scheme https since kubeletPort is %d", port)
            return _HTTPS
        self.logger.info(
            "Cannot automatically figure out scheme from non-standard port %d, "
            "please set kubelet.scheme in the config file.",
            port,
        )
        return ""

    def _check_local_connection(
        self, auth: _BearerTokenAuth | None, scheme: str, host_url: str
    ) -> ConnParams:
        self.logger.debug("connecting to kubelet directly with nodeIP")
        if scheme == _HTTP:
            probes = [lambda: self._check_http(host_url)]
        elif scheme == _HTTPS:
            probes = [lambda: self._check_https(host_url, auth)]
        else:
            self.logger.info(
                "Checking both HTTP and HTTPS since the scheme was not detected automatically, "
                "you can set set kubelet.scheme to avoid this behaviour"
            )
            probes = [
                lambda: self._check_https(host_url, auth),
                lambda: self._check_http(host_url),
            ]

        last_error: Exception | None = None
        for probe in probes:
            try:
                return probe()
            except KubeletConnectionError as err:
                last_error = err
        raise KubeletConnectionError(
            f"no connection succeeded through localhost: {last_error}"
        ) from last_error

    def _probe(self, params: ConnParams) -> ConnParams:
        try:
            _check_connection(params)
        except KubeletConnectionError as err:
            params.session.close()
            raise KubeletConnectionError(f"checking connection via API proxy: {err}") from err
        return params

    def _check_http(self, host_url: str) -> ConnParams:
        self.logger.debug("testing kubelet connection over plain http to %s", host_url)
        session = requests.Session()
        return self._probe(ConnParams(f"{_HTTP}://{host_url}", session, self.config.timeout))

    def _check_https(self, host_url: str, auth: _BearerTokenAuth | None) -> ConnParams:
        self.logger.debug("testing kubelet connection over https to %s", host_url)
        session = requests.Session()
        # The kubelet's serving certificate cannot be verified like the API server's.
        session.verify = False
        session.auth = auth
        return self._probe(ConnParams(f"{_HTTPS}://{host_url}", session, self.config.timeout))

    def _check_connection_api_proxy(self, auth: _BearerTokenAuth | None) -> ConnParams:
        api_url = urlsplit(self.api_server)
        if not api_url.scheme or not api_url.netloc:
            raise KubeletConnectionError(
                "parsing kubernetes api url from in cluster config: "
                f"invalid URL {self.api_server!r}"
            )
        session = requests.Session()
        session.auth = auth
        if self.config.api_insecure:
            session.verify = False
        elif self.config.api_ca_file:
            session.verify = self.config.api_ca_file

        proxy_path = _join_path(_API_PROXY_PATH.format(self.config.node_name))
        url = urlunsplit((api_url.scheme, api_url.netloc, proxy_path, "", ""))
        self.logger.debug(
            "Testing kubelet connection through API proxy: %s%s", api_url.netloc, proxy_path
        )
        return self._probe(ConnParams(url, session, self.config.timeout))


class StaticConnector:
    """A connector that hands out fixed parameters without probing anything."""

    def __init__(self, session: Any, url: str) -> None:
        self.session = session
        self.url = url

    def connect(self) -> ConnParams:
        """Return the fixed parameters."""
        return ConnParams(self.url, self.session)