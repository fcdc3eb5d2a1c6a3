"""Transactions over the Neo4j transactional HTTP endpoint.

State diagram::

    NOT_STARTED → OPEN ⇄ OPEN (query)
                   ↓
        COMMITTED | ROLLED_BACK | EXPIRED | DEFUNCT

Every terminal state is final: any further operation raises
``TransactionClosedError``. The server-reported expiry is exposed as an
opaque string and never enforced client-side; expiry is only detected when
the server answers 404.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from ..errors import (
    NotFoundError,
    ProtocolError,
    QueryError,
    StatementError,
    TransactionClosedError,
    TransactionExpiredError,
    TransportError,
    UncommittableTransactionError,
)
from .statement import (
    CypherQuery,
    StatementResponse,
    bind_results,
    decode_results,
    encode_statements,
    raise_for_results,
)
from .transport import NO_BODY, Response

if TYPE_CHECKING:
    from .client import Neo4jClient

logger = logging.getLogger(__name__)


class TxState(Enum):
    NOT_STARTED = auto()
    OPEN = auto()
    COMMITTED = auto()
    ROLLED_BACK = auto()
    EXPIRED = auto()  # Server answered 404 for the transaction
    DEFUNCT = auto()  # Outcome unknown (transport error) or commit failed


VALID_TRANSITIONS = {
    TxState.NOT_STARTED: {TxState.OPEN, TxState.DEFUNCT},
    TxState.OPEN: {
        TxState.OPEN,
        TxState.COMMITTED,
        TxState.ROLLED_BACK,
        TxState.EXPIRED,
        TxState.DEFUNCT,
    },
    TxState.COMMITTED: set(),
    TxState.ROLLED_BACK: set(),
    TxState.EXPIRED: set(),
    TxState.DEFUNCT: set(),
}


class Transaction:
    """A server-side transaction driven through its continuation URLs.

    Usually obtained from ``Neo4jClient.begin``. Can be used as a context
    manager: an open transaction commits on clean exit and rolls back when
    the block raises. A clean exit after statement errors rolls back and
    raises ``UncommittableTransactionError``.
    """

    def __init__(self, client: "Neo4jClient") -> None:
        self.client = client
        self.location: Optional[str] = None
        self.commit_url: Optional[str] = None
        self.expires: Optional[str] = None
        self.errors: List[StatementError] = []
        self._state = TxState.NOT_STARTED

    def __repr__(self) -> str:
        return f"<Transaction {self._state.name} location={self.location!r}>"

    @property
    def state(self) -> TxState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == TxState.OPEN

    def _transition_to(self, new_state: TxState) -> None:
        if new_state not in VALID_TRANSITIONS[self._state]:
            raise TransactionClosedError(
                f"Invalid transaction state transition: {self._state.name} → {new_state.name}"
            )
        self._state = new_state

    def _require(self, state: TxState, action: str) -> None:
        if self._state != state:
            raise TransactionClosedError(
                f"Cannot {action} a transaction in state {self._state.name}"
            )

    def _call(self, method: str, url: str, expected: int, body: Any = NO_BODY) -> Response:
        """Run one network step, updating state on transport and 404 failures."""
        try:
            return self.client._request(method, url, expected, body)
        except TransportError:
            self._state = TxState.DEFUNCT
            raise
        except NotFoundError as e:
            if self._state == TxState.OPEN:
                self._state = TxState.EXPIRED
                logger.warning("Transaction %s expired or is unknown to the server", self.location)
                raise TransactionExpiredError(e.status, e.payload, e.url) from e
            raise

    def _absorb(self, queries: Sequence[CypherQuery], response: Response, url: str) -> None:
        parsed = StatementResponse.parse(response.payload, url, response.status)
        if parsed.commit:
            self.commit_url = parsed.commit
        if parsed.transaction is not None and parsed.transaction.expires:
            self.expires = parsed.transaction.expires
        errors = bind_results(queries, parsed, url)
        self.errors.extend(errors)
        raise_for_results(errors, decode_results(queries), transaction=self)

    def begin(self, queries: Sequence[CypherQuery] = ()) -> "Transaction":
        """Open the transaction, optionally running a first batch of statements.

        Raises:
            QueryError: some statements failed. The transaction is still open
                and available as ``error.transaction``.
        """
        self._require(TxState.NOT_STARTED, "begin")
        url = self.client.service_root.transaction
        body = encode_statements(queries)
        response = self._call("POST", url, 201, body)
        location = response.header("Location")
        if not location:
            self._state = TxState.DEFUNCT
            raise ProtocolError(response.status, {"message": "Transaction has no Location"}, url)
        self.location = location
        self._transition_to(TxState.OPEN)
        logger.info("Began transaction %s", self.location)
        self._absorb(queries, response, url)
        return self

    def query(self, queries: Sequence[CypherQuery]) -> None:
        """Run more statements inside the open transaction.

        Errors accumulate on ``errors``; the transaction is not aborted, but a
        transaction with errors cannot be committed.

        Raises:
            QueryError: some statements failed.
            TransactionExpiredError: the server no longer knows the transaction.
        """
        self._require(TxState.OPEN, "query")
        assert self.location is not None
        response = self._call("POST", self.location, 200, encode_statements(queries))
        self._absorb(queries, response, self.location)

    def commit(self) -> None:
        """Commit the transaction.

        Raises:
            UncommittableTransactionError: statement errors have accumulated;
                no request is sent.
            QueryError: the server refused the commit; the transaction is
                DEFUNCT afterwards.
        """
        self._require(TxState.OPEN, "commit")
        if self.errors:
            raise UncommittableTransactionError(self.errors)
        url = self.commit_url or f"{self.location}/commit"
        response = StatementResponse.parse(
            self._call("POST", url, 200, {"statements": []}).payload, url
        )
        if response.errors:
            self._state = TxState.DEFUNCT
            raise QueryError(list(response.errors), transaction=self)
        self._transition_to(TxState.COMMITTED)
        logger.info("Committed transaction %s", self.location)

    def rollback(self) -> None:
        """Roll the transaction back."""
        self._require(TxState.OPEN, "roll back")
        assert self.location is not None
        self._call("DELETE", self.location, 200)
        self._transition_to(TxState.ROLLED_BACK)
        logger.info("Rolled back transaction %s", self.location)

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._state != TxState.OPEN:
            return
        if exc_type is None and not self.errors:
            self.commit()
            return
        try:
            self.rollback()
        except Exception as e:
            # Keep the exception raised inside the block.
            logger.warning("Rollback of %s failed: %s", self.location, e)
        if exc_type is None:
            # Statement errors were caught inside the block.
            raise UncommittableTransactionError(self.errors)
