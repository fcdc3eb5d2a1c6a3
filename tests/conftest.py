"""Shared fixtures: an in-process fake Neo4j REST server behind httpx.MockTransport."""

import json
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from neocypher.config import Config
from neocypher.neo4j import HttpTransport, Neo4jClient

ROOT = "http://neo4j.test:7474/db/data/"
TX = ROOT + "transaction"
BATCH = ROOT + "batch"

SERVICE_ROOT = {
    "node": ROOT + "node",
    "relationship_types": ROOT + "relationship/types",
    "batch": BATCH,
    "cypher": ROOT + "cypher",
    "transaction": TX,
    "neo4j_version": "2.0.0",
}

Handler = Callable[[httpx.Request], httpx.Response]
Reply = Union[Handler, Exception, Tuple[int, Any], Tuple[int, Any, Dict[str, str]]]


def rows(columns: List[str], *data: List[Any], errors: Optional[list] = None) -> Dict[str, Any]:
    """One statement result in the transactional shape."""
    result: Dict[str, Any] = {"columns": columns, "data": [{"row": r} for r in data]}
    if errors:
        result["errors"] = errors
    return result


def tx_body(*results: Dict[str, Any], errors: Optional[list] = None, tx_id: int = 7) -> Dict[str, Any]:
    return {
        "commit": f"{TX}/{tx_id}/commit",
        "results": list(results),
        "transaction": {"expires": "Sun, 18 Oct 2026 10:00:00 +0000"},
        "errors": errors or [],
    }


class FakeNeo4j:
    """Scripted responses keyed by (method, url); records every request."""

    def __init__(self) -> None:
        self.replies: Dict[Tuple[str, str], Deque[Reply]] = defaultdict(deque)
        self.requests: List[httpx.Request] = []
        self.service_root: Any = SERVICE_ROOT

    def on(self, method: str, url: str, *replies: Reply) -> "FakeNeo4j":
        self.replies[(method, url)].extend(replies)
        return self

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and str(r.url) == url]

    def bodies(self, method: str, url: str) -> List[Any]:
        return [json.loads(r.content) if r.content else None for r in self.calls(method, url)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url))
        queue = self.replies.get(key)
        if not queue:
            if key == ("GET", ROOT):
                return httpx.Response(200, json=self.service_root)
            return httpx.Response(404, json={"message": f"No route for {key}"})
        reply = queue.popleft()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        status, payload, *rest = reply
        headers = rest[0] if rest else {}
        if payload is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=payload, headers=headers)


@pytest.fixture
def server() -> FakeNeo4j:
    return FakeNeo4j()


@pytest.fixture
def config() -> Config:
    return Config(_env_file=None, NEO4J_URL=ROOT, NEO4J_USERNAME="neo4j", NEO4J_PASSWORD="secret")


@pytest.fixture
def client(server: FakeNeo4j, config: Config):
    c = Neo4jClient(config, HttpTransport(config, transport=httpx.MockTransport(server)))
    yield c
    c.close()
