"""Batched REST operations sent to the server in a single request.

A ``Batch`` is an ordered queue of independent jobs, not a transaction.
Each job gets an integer id equal to its queue position. Jobs may target
the still-unknown result of an earlier job with a forward reference
(``{id}``), which the server resolves while executing the batch.

The request body is::

    [{"id": 0, "method": "POST", "to": "/node", "body": {...}}, ...]

and the response carries one ``{"id", "location", "body"}`` entry per
job, in no guaranteed order.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import (
    BatchExecutedError,
    BatchJobError,
    BatchNotExecutedError,
    Neo4jError,
    ProtocolError,
    QueryError,
    StatementError,
)
from .entity import Node, Relationship
from .statement import (
    CypherQuery,
    StatementResponse,
    bind_results,
    decode_results,
    encode_statements,
)

if TYPE_CHECKING:
    from .client import Neo4jClient

logger = logging.getLogger(__name__)


class BatchResponseItem(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    location: Optional[str] = None
    body: Any = None
    status: Optional[int] = None
    from_uri: Optional[str] = Field(None, alias="from")


@dataclass
class BatchResult:
    """Outcome of one job, attached to the job after execution."""

    id: int
    location: Optional[str] = None
    body: Any = None
    status: Optional[int] = None
    # BatchJobError for a failed job, QueryError for a statement job whose
    # statement failed inside an otherwise successful job.
    error: Optional[Neo4jError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchJob:
    """One queued operation; ``result`` is filled in when the batch runs."""

    def __init__(self, id: int, method: str, to: str, body: Any = None) -> None:
        self.id = id
        self.method = method.upper()
        self.to = to
        self.body = body
        self.result: Optional[BatchResult] = None
        self.query: Optional[CypherQuery] = None

    def __repr__(self) -> str:
        return f"<BatchJob {self.id} {self.method} {self.to}>"

    @property
    def identity(self) -> str:
        """Forward reference to this job's eventual result."""
        return reference(self.id)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"id": self.id, "method": self.method, "to": self.to}
        if self.body is not None:
            wire["body"] = self.body
        return wire

    def require_result(self) -> BatchResult:
        if self.result is None:
            raise BatchNotExecutedError(f"Batch job {self.id} has not been executed")
        if self.result.error is not None:
            raise self.result.error
        return self.result


def reference(job_id: int) -> str:
    """Format a forward reference to the job with ``job_id``."""
    return "{%d}" % job_id


class BatchNode:
    """A node that will be created when its batch is executed."""

    def __init__(self, job: BatchJob) -> None:
        self.job = job

    @property
    def id(self) -> int:
        return self.job.id

    @property
    def identity(self) -> str:
        return self.job.identity

    def node(self) -> Node:
        """The created node.

        Raises:
            BatchNotExecutedError: the batch has not run yet.
            BatchJobError: the server failed this job.
            ProtocolError: the job succeeded but returned neither a node
                body nor a location.
        """
        result = self.job.require_result()
        if isinstance(result.body, dict):
            return Node.model_validate(result.body)
        if result.location:
            return Node(self_uri=result.location)
        raise _missing_entity(self.job, "node")


class BatchRelationship:
    """A relationship that will be created when its batch is executed."""

    def __init__(self, job: BatchJob) -> None:
        self.job = job

    @property
    def id(self) -> int:
        return self.job.id

    @property
    def identity(self) -> str:
        return self.job.identity

    def relationship(self) -> Relationship:
        result = self.job.require_result()
        if not isinstance(result.body, dict):
            raise _missing_entity(self.job, "relationship")
        return Relationship.model_validate(result.body)


def _missing_entity(job: BatchJob, kind: str) -> ProtocolError:
    result = job.result
    assert result is not None
    return ProtocolError(
        result.status or 200,
        {"message": f"Batch job {job.id} returned no {kind}", "body": result.body},
    )


Target = Union[int, str, BatchJob, BatchNode, BatchRelationship, Node, Relationship]


class Batch:
    """An ordered, thread-safe queue of jobs executed in one round trip.

    Enqueueing from several threads is safe; ids are dense, start at 0 and
    never change once assigned. ``execute`` holds the queue lock for the
    whole network call, so producers block until it finishes (and are then
    rejected, since an executed batch is closed). Large concurrent batches
    are therefore serialized on that lock.
    """

    def __init__(self, client: "Neo4jClient") -> None:
        self.client = client
        self._lock = threading.Lock()
        self._jobs: List[BatchJob] = []
        self._executed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    @property
    def executed(self) -> bool:
        return self._executed

    @property
    def jobs(self) -> List[BatchJob]:
        with self._lock:
            return list(self._jobs)

    def job(self, job_id: int) -> BatchJob:
        with self._lock:
            return self._jobs[job_id]

    def _enqueue(self, method: str, to: str, body: Any = None) -> BatchJob:
        with self._lock:
            if self._executed:
                raise BatchExecutedError("Cannot add jobs to a batch that was already executed")
            job = BatchJob(len(self._jobs), method, to, body)
            self._jobs.append(job)
            return job

    def add(self, method: str, to: str, body: Any = None) -> int:
        """Queue a raw REST operation and return its job id."""
        return self._enqueue(method, to, body).id

    def get(self, to: Target) -> int:
        return self.add("GET", self.reference(to))

    def put(self, to: Target, body: Any = None) -> int:
        return self.add("PUT", self.reference(to), body)

    def post(self, to: Target, body: Any = None) -> int:
        return self.add("POST", self.reference(to), body)

    def delete(self, to: Target) -> int:
        return self.add("DELETE", self.reference(to))

    def reference(self, target: Target) -> str:
        """Express ``target`` as a batch ``to`` value.

        Jobs of this batch become forward references, existing entities
        become URIs relative to the service root, strings pass through.
        Nothing is resolved locally.
        """
        if isinstance(target, (BatchNode, BatchRelationship)):
            target = target.job
        if isinstance(target, BatchJob):
            with self._lock:
                owned = target.id < len(self._jobs) and self._jobs[target.id] is target
            if not owned:
                raise ValueError(f"{target!r} does not belong to this batch")
            return target.identity
        if isinstance(target, bool):
            raise TypeError("Batch target cannot be a bool")
        if isinstance(target, int):
            with self._lock:
                known = 0 <= target < len(self._jobs)
            if not known:
                raise ValueError(f"No job {target} in this batch")
            return reference(target)
        if isinstance(target, (Node, Relationship)):
            return self.client.relative_uri(target.self_uri)
        if isinstance(target, str):
            return target
        raise TypeError(f"Unsupported batch target: {target!r}")

    def create_node(self, properties: Optional[Dict[str, Any]] = None) -> BatchNode:
        to = self.client.relative_uri(self.client.service_root.node)
        return BatchNode(self._enqueue("POST", to, dict(properties or {})))

    def relate(
        self,
        start: Target,
        rel_type: str,
        end: Target,
        properties: Optional[Dict[str, Any]] = None,
    ) -> BatchRelationship:
        """Create a relationship of ``rel_type`` from ``start`` to ``end``."""
        body: Dict[str, Any] = {"to": self.reference(end), "type": rel_type}
        if properties:
            body["data"] = dict(properties)
        to = self.reference(start).rstrip("/") + "/relationships"
        return BatchRelationship(self._enqueue("POST", to, body))

    def set_property(self, target: Target, key: str, value: Any) -> int:
        to = f"{self.reference(target).rstrip('/')}/properties/{quote(key, safe='')}"
        return self.add("PUT", to, value)

    def cypher(self, query: CypherQuery) -> int:
        """Queue a statement; its rows are decoded onto ``query`` after execution.

        Entities returned by a statement cannot be referenced by other jobs.
        """
        to = self.client.relative_uri(self.client.service_root.transaction).rstrip("/") + "/commit"
        body = encode_statements([query])
        job = self._enqueue("POST", to, body)
        job.query = query
        return job.id

    def execute(self) -> Dict[int, BatchResult]:
        """Send every queued job in one request and attach the results.

        Returns a mapping of job id to ``BatchResult``. An empty batch returns
        ``{}`` without a request. A batch runs at most once: a second call
        raises ``BatchExecutedError``, whether or not the first succeeded.

        Raises:
            TransportError, ProtocolError: the request failed as a whole; no
                job receives a result.
            DecodeError: a statement job's rows do not fit its result type
                (every job result is attached and every other statement job
                decoded first).

        A statement job whose statement failed is not a batch failure: its
        ``BatchResult.error`` holds a ``QueryError`` and ``ok`` is false.
        """
        with self._lock:
            if self._executed:
                raise BatchExecutedError("Batch was already executed")
            self._executed = True
            jobs = list(self._jobs)
            if not jobs:
                logger.debug("Skipping execution of an empty batch")
                return {}

            url = self.client.service_root.batch
            logger.info("Executing batch with %d job(s)", len(jobs))
            for job in jobs:
                logger.debug(">>> {%d} %s %s %s", job.id, job.method, job.to, job.body)
            response = self.client._request("POST", url, 200, [job.to_wire() for job in jobs])
            results = self._demultiplex(jobs, response.payload, url, response.status)

        queries = [job.query for job in jobs if job.query is not None and job.result.ok]
        failures = decode_results(queries)
        if failures:
            raise failures[0]
        return results

    def _demultiplex(
        self, jobs: List[BatchJob], payload: Any, url: str, status: int
    ) -> Dict[int, BatchResult]:
        """Match response entries to jobs by id; all-or-nothing on malformed input."""
        if not isinstance(payload, list):
            raise ProtocolError(status, payload, url)
        try:
            items = [BatchResponseItem.model_validate(entry) for entry in payload]
        except ValidationError as e:
            raise ProtocolError(status, payload, url) from e

        by_id: Dict[int, BatchResponseItem] = {}
        for item in items:
            if item.id in by_id or not 0 <= item.id < len(jobs):
                raise ProtocolError(
                    status, {"message": f"Unexpected batch response id {item.id}"}, url
                )
            by_id[item.id] = item
        missing = [job.id for job in jobs if job.id not in by_id]
        if missing:
            raise ProtocolError(
                status, {"message": f"No batch response for job(s) {missing}"}, url
            )

        # Statement bodies are bound before any job result is attached, so a
        # malformed one leaves every job without a result.
        statement_errors: Dict[int, List[StatementError]] = {}
        for job in jobs:
            item = by_id[job.id]
            if job.query is not None and not _failed(item):
                parsed = StatementResponse.parse(item.body, url, status)
                statement_errors[job.id] = bind_results([job.query], parsed, url)

        results: Dict[int, BatchResult] = {}
        for job in jobs:
            item = by_id[job.id]
            logger.debug("<<< {%d} %s %s %s", item.id, item.status, item.location, item.body)
            error: Optional[Neo4jError] = None
            if _failed(item):
                error = BatchJobError(item.id, item.status, item.body)
                logger.warning("%s", error)
            elif statement_errors.get(job.id):
                error = QueryError(statement_errors[job.id])
            job.result = BatchResult(
                id=item.id,
                location=item.location,
                body=item.body,
                status=item.status,
                error=error,
            )
            results[job.id] = job.result
        return results


def _failed(item: BatchResponseItem) -> bool:
    return item.status is not None and item.status >= 400
