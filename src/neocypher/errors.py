"""Exceptions raised by the Neo4j REST client.

Four tiers are kept apart on purpose:

- ``TransportError``: the HTTP exchange itself failed, nothing in the
  response can be trusted.
- ``ProtocolError``: the exchange completed with an unexpected status code.
- ``QueryError``: the exchange succeeded but individual statements failed
  on the server.
- ``DecodeError`` / ``EncodeError``: purely client-side problems turning
  values into or out of the wire format.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from .neo4j.transaction import Transaction


class StatementError(BaseModel):
    """A failure attributed to one statement of a multi-statement request."""

    model_config = ConfigDict(extra="ignore")

    code: Union[int, str, None] = None
    status: Optional[str] = None
    message: str = ""
    # Zero-based position of the failing statement in its request, or None
    # when the server reported the error against the whole transaction.
    statement_index: Optional[int] = None

    def __str__(self) -> str:
        where = (
            f"statement {self.statement_index}"
            if self.statement_index is not None
            else "transaction"
        )
        label = self.status or self.code
        return f"{where}: {label}: {self.message}" if label else f"{where}: {self.message}"


class Neo4jError(Exception):
    """Base class for every error raised by this package."""


class TransportError(Neo4jError):
    """The HTTP exchange failed (connection, TLS, timeout, malformed body)."""


class ProtocolError(Neo4jError):
    """The server answered with a status code the operation did not expect."""

    def __init__(self, status: int, payload: Any = None, url: Optional[str] = None) -> None:
        self.status = status
        self.payload = payload
        self.url = url
        super().__init__(self._describe())

    @property
    def messages(self) -> List[str]:
        """Diagnostic messages extracted from the server payload, if any."""
        payload = self.payload
        if not isinstance(payload, dict):
            return []
        found: List[str] = []
        if payload.get("message"):
            found.append(str(payload["message"]))
        for err in payload.get("errors") or []:
            if isinstance(err, dict) and err.get("message"):
                found.append(str(err["message"]))
        return found

    def _describe(self) -> str:
        text = f"Unexpected status {self.status}"
        if self.url:
            text += f" from {self.url}"
        if self.messages:
            text += ": " + "; ".join(self.messages)
        return text


class NotFoundError(ProtocolError):
    """The server answered 404 for the requested resource."""


class TransactionExpiredError(NotFoundError):
    """The server no longer knows the transaction (expired or already closed)."""


class InvalidDatabaseError(ProtocolError):
    """Service root discovery failed, check the configured URL."""


class QueryError(Neo4jError):
    """One or more statements failed server-side.

    The HTTP exchange itself succeeded; results of sibling statements that
    did run stay available on their ``CypherQuery`` objects. Sibling results
    that could not be decoded are listed in ``decode_errors``.
    """

    def __init__(
        self,
        errors: List[StatementError],
        transaction: Optional["Transaction"] = None,
        decode_errors: Optional[List["DecodeError"]] = None,
    ) -> None:
        self.errors = list(errors)
        self.transaction = transaction
        self.decode_errors = list(decode_errors or [])
        summary = "; ".join(str(e) for e in self.errors) or "unknown statement error"
        super().__init__(f"{len(self.errors)} statement error(s): {summary}")

    @property
    def statement_indexes(self) -> List[int]:
        return sorted({e.statement_index for e in self.errors if e.statement_index is not None})


class EncodeError(Neo4jError, TypeError):
    """A statement or request body could not be encoded for the wire."""


class DecodeError(Neo4jError):
    """A tabular result could not be decoded into the requested type."""


class ResultTypeError(DecodeError, TypeError):
    """The requested result type is not a supported decode target."""


class TransactionClosedError(Neo4jError):
    """The transaction was already committed, rolled back, expired or broken."""


class UncommittableTransactionError(Neo4jError):
    """Commit refused because the transaction accumulated statement errors."""

    def __init__(self, errors: List[StatementError]) -> None:
        self.errors = list(errors)
        super().__init__(
            f"Refusing to commit a transaction with {len(self.errors)} statement error(s); "
            "roll it back instead"
        )


class BatchExecutedError(Neo4jError):
    """The batch was already executed and cannot be modified or run again."""


class BatchNotExecutedError(Neo4jError):
    """A batch job result was requested before the batch was executed."""


class BatchJobError(Neo4jError):
    """The server reported a failure for one job of an executed batch."""

    def __init__(self, job_id: int, status: Optional[int], payload: Any = None) -> None:
        self.job_id = job_id
        self.status = status
        self.payload = payload
        message = ""
        if isinstance(payload, dict):
            message = str(payload.get("message") or payload.get("exception") or "")
        text = f"Batch job {job_id} failed with status {status}"
        super().__init__(f"{text}: {message}" if message else text)
