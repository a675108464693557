"""Network access for the background agent."""

from __future__ import annotations

from typing import Optional, Protocol
from urllib.parse import urljoin

import requests
import structlog

from .cache import Request, Response
from .errors import NetworkError

logger = structlog.get_logger()


class Fetcher(Protocol):
    """Anything that can turn a Request into a Response over the network.

    Implementations raise NetworkError when no response could be obtained.
    An HTTP error status is still a response.
    """

    def fetch(self, request: Request) -> Response: ...


class HttpFetcher:
    """Fetcher backed by a requests.Session against a fixed origin."""

    def __init__(
        self,
        origin: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self._origin = origin.rstrip("/") + "/"
        self._session = session or requests.Session()
        self._timeout = timeout

    def absolute_url(self, url: str) -> str:
        return urljoin(self._origin, url)

    def fetch(self, request: Request) -> Response:
        target = self.absolute_url(request.url)
        try:
            resp = self._session.request(
                request.method,
                target,
                data=request.body,
                headers=dict(request.headers),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.debug("network_fetch_failed", url=target, error=str(e))
            raise NetworkError(request.url, e) from e

        return Response(
            status=resp.status_code,
            body=resp.content,
            headers=dict(resp.headers),
            url=request.url,
        )

    def close(self) -> None:
        self._session.close()
