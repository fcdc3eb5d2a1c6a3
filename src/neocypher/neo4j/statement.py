"""Cypher statements: encoding for the wire and binding of returned results.

A ``CypherQuery`` is the unit submitted to the transactional endpoint. It
is encoded as::

    {"statement": "<text>", "parameters": {...}}

and the server answers, per statement and in submission order::

    {"columns": [...], "data": [{"row": [...]}, ...]}

``bind_results``, ``decode_results`` and ``raise_for_results`` map such a
response back onto the originating query objects, attributing statement
errors and decoding rows.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import DecodeError, EncodeError, ProtocolError, QueryError, StatementError
from .decoder import decode, register_result_type

logger = logging.getLogger(__name__)

_QUOTES = ("'", '"', "`")


def normalize_statement(statement: str) -> str:
    """Collapse whitespace runs to single spaces, outside literals and comments.

    Best effort: the scanner knows Cypher's quoting rules (single and double
    quoted strings with backslash escapes, backtick identifiers, ``//`` and
    ``/* */`` comments) but does not parse the query. A line comment keeps
    its terminating newline so that it cannot swallow the following clause.
    """
    out: List[str] = []
    i = 0
    n = len(statement)
    pending_space = False

    def emit(text: str) -> None:
        nonlocal pending_space
        if pending_space and out:
            out.append(" ")
        pending_space = False
        out.append(text)

    while i < n:
        ch = statement[i]
        if ch.isspace():
            pending_space = True
            i += 1
        elif ch in _QUOTES:
            j = i + 1
            while j < n and statement[j] != ch:
                if statement[j] == "\\" and ch != "`":
                    j += 1
                j += 1
            emit(statement[i : j + 1])
            i = j + 1
        elif statement.startswith("//", i):
            j = statement.find("\n", i)
            if j == -1:
                emit(statement[i:])
                i = n
            else:
                emit(statement[i : j + 1])
                # The newline itself terminates the comment; no extra space.
                i = j + 1
                while i < n and statement[i].isspace():
                    i += 1
        elif statement.startswith("/*", i):
            j = statement.find("*/", i + 2)
            j = n if j == -1 else j + 2
            emit(statement[i:j])
            i = j
        else:
            emit(ch)
            i += 1
    return "".join(out)


class CypherQuery:
    """A statement with optional parameters and an optional result type.

    Args:
        statement: Cypher text; whitespace is normalized before sending.
        parameters: JSON-encodable parameter map. ``None`` omits the
            ``parameters`` field entirely, ``{}`` sends an empty object.
        result_type: Row type the result is decoded into. A pydantic model
            (fields matched by alias against column names), ``dict`` or a
            scalar type for single-column results. Defaults to ``dict``.

    After execution ``columns`` and ``rows`` hold the raw tabular result,
    ``result`` the decoded rows and ``errors`` any statement errors.
    """

    def __init__(
        self,
        statement: str,
        parameters: Optional[Dict[str, Any]] = None,
        result_type: Any = None,
    ) -> None:
        if not isinstance(statement, str) or not statement.strip():
            raise EncodeError("Cypher statement must be a non-empty string")
        self.statement = statement
        self.parameters = parameters
        self.result_type = result_type if result_type is not None else dict
        register_result_type(self.result_type)
        self.columns: List[str] = []
        self.rows: List[List[Any]] = []
        self.result: Optional[List[Any]] = None
        self.errors: List[StatementError] = []
        self._has_result = False

    def __repr__(self) -> str:
        return f"CypherQuery({normalize_statement(self.statement)!r})"

    @property
    def executed(self) -> bool:
        return self.result is not None

    def to_wire(self) -> Dict[str, Any]:
        """Encode as the wire statement object.

        Raises:
            EncodeError: parameters are not a mapping or not JSON-encodable
                (including NaN, infinities and non-string map keys).
        """
        wire: Dict[str, Any] = {"statement": normalize_statement(self.statement)}
        if self.parameters is not None:
            if not isinstance(self.parameters, dict):
                raise EncodeError(
                    f"Parameters must be a mapping, got {type(self.parameters).__name__}"
                )
            _check_keys(self.parameters, "parameters")
            try:
                json.dumps(self.parameters, allow_nan=False)
            except (TypeError, ValueError) as e:
                raise EncodeError(f"Parameters are not JSON-encodable: {e}") from e
            wire["parameters"] = self.parameters
        return wire

    def unmarshal(self, result_type: Any = None) -> List[Any]:
        """Decode the raw rows into ``result_type`` (default: this query's)."""
        return decode(self.columns, self.rows, result_type or self.result_type)

    def _reset(self) -> None:
        self.columns = []
        self.rows = []
        self.result = None
        self.errors = []
        self._has_result = False


def _check_keys(value: Any, path: str) -> None:
    """Reject map keys that JSON encoding would silently turn into strings."""
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodeError(f"{path} has non-string key {key!r}")
            _check_keys(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_keys(item, f"{path}[{i}]")


def encode_statements(queries: Sequence[CypherQuery]) -> Dict[str, Any]:
    """Wrap encoded statements in the ``{"statements": [...]}`` envelope."""
    return {"statements": [q.to_wire() for q in queries]}


class ResultSet(BaseModel):
    """One statement's tabular result as returned by the server."""

    model_config = ConfigDict(extra="ignore")

    columns: List[str] = Field(default_factory=list)
    data: List[Any] = Field(default_factory=list)
    errors: List[StatementError] = Field(default_factory=list)

    @field_validator("data")
    @classmethod
    def _rows(cls, value: List[Any]) -> List[Any]:
        rows = []
        for entry in value:
            # Transactional shape {"row": [...], "meta": [...]} or legacy [...]
            if isinstance(entry, dict):
                if "row" not in entry:
                    raise ValueError("result entry has no 'row' member")
                entry = entry["row"]
            if not isinstance(entry, list):
                raise ValueError(f"result row must be a list, got {type(entry).__name__}")
            rows.append(entry)
        return rows


class TransactionInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    expires: Optional[str] = None


class StatementResponse(BaseModel):
    """Body of a transactional endpoint response."""

    model_config = ConfigDict(extra="ignore")

    commit: Optional[str] = None
    results: List[ResultSet] = Field(default_factory=list)
    transaction: Optional[TransactionInfo] = None
    errors: List[StatementError] = Field(default_factory=list)

    @classmethod
    def parse(cls, payload: Any, url: Optional[str] = None, status: int = 200) -> "StatementResponse":
        if payload is None:
            return cls()
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ProtocolError(status, payload, url) from e


def bind_results(
    queries: Sequence[CypherQuery],
    response: StatementResponse,
    url: Optional[str] = None,
) -> List[StatementError]:
    """Populate ``queries`` from ``response`` and return its statement errors.

    The response is validated before any query is touched, so a malformed
    response leaves every query unpopulated. Errors nested in a result are
    attributed to that statement; top-level errors are attributed to the
    first statement without a result (the server stops there), or to the
    transaction when every statement has a result.

    Raises:
        ProtocolError: more results than statements, or missing results
            without any error explaining them.
    """
    results = response.results
    if len(results) > len(queries) or (
        len(results) < len(queries) and not response.errors and not any(r.errors for r in results)
    ):
        raise ProtocolError(
            200,
            {"message": f"Result count {len(results)} does not match query count {len(queries)}"},
            url,
        )

    errors: List[StatementError] = []
    for index, res in enumerate(results):
        for err in res.errors:
            errors.append(err.model_copy(update={"statement_index": index}))
    first_missing = len(results) if len(results) < len(queries) else None
    for err in response.errors:
        errors.append(err.model_copy(update={"statement_index": first_missing}))

    for query in queries:
        query._reset()
    for err in errors:
        if err.statement_index is not None:
            queries[err.statement_index].errors.append(err)
        logger.warning("Statement error: %s", err)

    for query, res in zip(queries, results):
        query.columns = list(res.columns)
        query.rows = res.data
        query._has_result = not res.errors
    return errors


def decode_results(queries: Sequence[CypherQuery]) -> List[DecodeError]:
    """Decode the raw rows bound by ``bind_results`` onto each query.

    Every query is attempted; one that does not fit its result type keeps
    ``result`` unset and its ``DecodeError`` is returned, so siblings still
    decode.
    """
    failures: List[DecodeError] = []
    for query in queries:
        if not query._has_result:
            continue
        try:
            query.result = query.unmarshal()
        except DecodeError as e:
            logger.warning("Could not decode result of %r: %s", query, e)
            failures.append(e)
    return failures


def raise_for_results(
    errors: List[StatementError],
    decode_errors: List[DecodeError],
    transaction: Any = None,
) -> None:
    """Raise for a bound and decoded response.

    Statement errors win over decode failures so that a server-side failure
    is never reported as a client-side one.

    Raises:
        QueryError: the server reported statement errors; decode failures of
            sibling statements ride along in ``decode_errors``.
        DecodeError: only decoding failed (the first failure).
    """
    if errors:
        raise QueryError(errors, transaction=transaction, decode_errors=decode_errors)
    if decode_errors:
        raise decode_errors[0]
