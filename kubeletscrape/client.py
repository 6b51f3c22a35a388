"""HTTP client for the kubelet."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from kubeletscrape.connector import KubeletConnectionError, _url_for

_BACKOFF_STEP = 1.0


class KubeletClient:
    """Sends GET requests to a kubelet endpoint found by a connector.

    Plain :class:`requests.Session` objects are wrapped with retries on
    connection errors and 5xx answers, with a linear backoff between attempts.
    """

    def __init__(
        self,
        connector: Any,
        logger: logging.Logger | None = None,
        max_retries: int = 0,
    ) -> None:
        if connector is None:
            raise ValueError("connector should not be nil")
        self.logger = logger or logging.getLogger(__name__)
        self.max_retries = max_retries

        try:
            params = connector.connect()
        except Exception as err:
            raise KubeletConnectionError(
                f"connecting to kubelet using the connector: {err}"
            ) from err

        self.session = params.session
        self.endpoint = params.url
        self.timeout = params.timeout
        self._retrying = isinstance(self.session, requests.Session)
        if not self._retrying:
            self.logger.debug("running kubelet client without retries")

    def get(self, url_path: str) -> Any:
        """GET ``url_path`` below the kubelet endpoint and return the response."""
        url = _url_for(self.endpoint, url_path)
        self.logger.debug("Calling Kubelet endpoint: %s", url)
        if not self._retrying:
            return self.session.get(url, timeout=self.timeout)
        return self._get_with_retries(url)

    def _get_with_retries(self, url: str) -> requests.Response:
        attempts = max(1, self.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as err:
                if attempt == attempts:
                    raise
                self.logger.debug("getting data from kubelet: attempt %d: %s", attempt, err)
            else:
                if response.status_code < 500 or attempt == attempts:
                    return response
                self.logger.debug(
                    "getting data from kubelet: attempt %d: status %d",
                    attempt,
                    response.status_code,
                )
                response.close()
            time.sleep(attempt * _BACKOFF_STEP)
        raise AssertionError("unreachable")