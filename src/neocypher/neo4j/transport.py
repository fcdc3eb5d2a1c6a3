"""HTTP transport for the Neo4j REST API.

One call, one request: serialize the body to JSON, send it, parse the
response body as JSON. Status codes are reported, never interpreted here.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from ..config import Config
from ..errors import EncodeError, TransportError

logger = logging.getLogger(__name__)

# Sentinel so that a JSON ``null`` body can still be sent explicitly.
NO_BODY: Any = object()


@dataclass
class Response:
    """Status, headers and decoded JSON payload of one HTTP exchange."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    payload: Any = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class HttpTransport:
    """Thin wrapper around ``httpx.Client`` configured from ``Config``."""

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def _verify(self) -> Union[bool, str]:
        if self.config.neo4j_ca_cert_file:
            return self.config.neo4j_ca_cert_file
        return self.config.neo4j_verify_tls

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.service_root(),
                auth=self.config.credentials(),
                verify=self._verify(),
                timeout=self.config.neo4j_timeout,
                headers={
                    "Accept": "application/json; charset=UTF-8",
                    "User-Agent": self.config.neo4j_user_agent,
                },
                transport=self._transport,
            )
        return self._client

    def request(self, method: str, url: str, body: Any = NO_BODY) -> Response:
        """Send one request and return its status, headers and JSON payload.

        Raises:
            EncodeError: the request body is not strict JSON (NaN, infinities,
                unencodable objects).
            TransportError: the exchange failed or the response is not JSON.
        """
        content: Optional[bytes] = None
        headers: Dict[str, str] = {}
        if body is not NO_BODY:
            try:
                content = json.dumps(body, allow_nan=False).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise EncodeError(f"Cannot encode request body for {method} {url}: {e}") from e
            headers["Content-Type"] = "application/json"

        logger.debug("%s %s", method, url)
        try:
            resp = self.client.request(method, url, content=content, headers=headers)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise TransportError(f"{method} {url} failed: {e}") from e

        payload: Any = None
        if resp.content:
            try:
                payload = resp.json()
            except ValueError as e:
                raise TransportError(
                    f"Malformed JSON in response to {method} {url} (status {resp.status_code})"
                ) from e
        logger.debug("%s %s -> %s", method, url, resp.status_code)
        return Response(status=resp.status_code, headers=dict(resp.headers), payload=payload)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
