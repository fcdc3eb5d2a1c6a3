"""Neo4j REST connection, service root discovery and Cypher execution."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from ..config import Config
from ..errors import (
    InvalidDatabaseError,
    Neo4jError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from .batch import Batch
from .statement import (
    CypherQuery,
    StatementResponse,
    bind_results,
    decode_results,
    encode_statements,
    raise_for_results,
)
from .transaction import Transaction
from .transport import NO_BODY, HttpTransport, Response

logger = logging.getLogger(__name__)


class ServiceRoot(BaseModel):
    """Endpoints advertised by the server at the configured URL."""

    model_config = ConfigDict(extra="ignore")

    node: str
    transaction: str
    batch: str
    cypher: Optional[str] = None
    relationship_types: Optional[str] = None
    neo4j_version: str


class Neo4jClient:
    """Neo4j REST client executing Cypher statements, transactions and batches."""

    def __init__(
        self,
        config: Optional[Config] = None,
        transport: Optional[HttpTransport] = None,
    ) -> None:
        """Initialize the client; no request is made until first use."""
        self.config = config or Config()
        self.transport = transport or HttpTransport(self.config)
        self._service_root: Optional[ServiceRoot] = None

    def connect(self) -> None:
        """Discover the service root and the endpoints it advertises."""
        if self._service_root is not None:
            return
        url = self.config.service_root()
        try:
            response = self._request("GET", url, 200)
        except NotFoundError as e:
            logger.error("No Neo4j service root at %s", url)
            raise InvalidDatabaseError(e.status, e.payload, url) from e
        except TransportError as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

        try:
            self._service_root = ServiceRoot.model_validate(response.payload)
        except ValidationError as e:
            logger.error("Service root at %s is not a Neo4j database", url)
            raise InvalidDatabaseError(response.status, response.payload, url) from e
        logger.info(
            "Connected to Neo4j %s at %s", self._service_root.neo4j_version, url
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.transport.close()
        self._service_root = None

    @property
    def service_root(self) -> ServiceRoot:
        if self._service_root is None:
            self.connect()
        assert self._service_root is not None  # for type checkers
        return self._service_root

    def verify_connectivity(self) -> bool:
        """Verify the service root can be reached and looks like Neo4j."""
        try:
            self._service_root = None
            self.connect()
            return True
        except Neo4jError as e:
            logger.error("Neo4j connectivity check failed: %s", e, exc_info=True)
            return False

    def relative_uri(self, url: str) -> str:
        """``url`` relative to the service root, with a leading slash."""
        root = self.config.service_root()
        if url.startswith(root):
            url = url[len(root):]
        elif "://" in url:
            raise ValueError(f"{url!r} is not below the service root {root!r}")
        return "/" + url.lstrip("/")

    def _request(self, method: str, url: str, expected: int, body: Any = NO_BODY) -> Response:
        """Send one request and map an unexpected status to a protocol error."""
        response = self.transport.request(method, url, body)
        if response.status == expected:
            return response
        if response.status == 404:
            raise NotFoundError(response.status, response.payload, url)
        raise ProtocolError(response.status, response.payload, url)

    def cypher_batch(self, queries: Sequence[CypherQuery]) -> None:
        """Execute several statements in one round trip and decode each result.

        The statements run in a single transaction that the server commits
        immediately.

        Raises:
            QueryError: one or more statements failed. Queries that did run
                keep their decoded ``result``; siblings that failed to decode
                are in ``error.decode_errors``.
            DecodeError: no statement failed but a result did not decode.
                Every other query is still decoded.
        """
        if not queries:
            return
        url = self.service_root.transaction.rstrip("/") + "/commit"
        response = self._request("POST", url, 200, encode_statements(queries))
        parsed = StatementResponse.parse(response.payload, url, response.status)
        errors = bind_results(queries, parsed, url)
        raise_for_results(errors, decode_results(queries))

    def cypher(self, query: CypherQuery) -> List[Any]:
        """Execute one statement and return its decoded rows."""
        self.cypher_batch([query])
        assert query.result is not None
        return query.result

    def run(
        self,
        statement: str,
        parameters: Optional[Dict[str, Any]] = None,
        result_type: Any = None,
    ) -> List[Any]:
        """Build a ``CypherQuery`` from its parts and execute it."""
        return self.cypher(CypherQuery(statement, parameters, result_type))

    def begin(self, queries: Sequence[CypherQuery] = ()) -> Transaction:
        """Open a transaction, running ``queries`` as its first statements.

        Raises:
            QueryError: some initial statements failed; the still-open
                transaction is ``error.transaction``.
        """
        return Transaction(self).begin(queries)

    def new_batch(self) -> Batch:
        """Return a new, empty batch bound to this client."""
        return Batch(self)

    def __enter__(self) -> "Neo4jClient":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
