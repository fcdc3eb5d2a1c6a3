"""Tests for batch queueing, execution and response demultiplexing."""

from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from conftest import BATCH, ROOT, rows, tx_body
from neocypher.errors import (
    BatchExecutedError,
    BatchJobError,
    BatchNotExecutedError,
    EncodeError,
    ProtocolError,
    QueryError,
    TransportError,
)
from neocypher.neo4j import CypherQuery, Node, reference


def node_body(node_id, **data):
    return {"self": f"{ROOT}node/{node_id}", "data": data, "metadata": {"id": node_id, "labels": []}}


class TestEnqueue:
    def test_ids_are_dense_and_follow_enqueue_order(self, client):
        batch = client.new_batch()
        ids = [batch.add("POST", "/node", {"i": i}) for i in range(5)]
        assert ids == [0, 1, 2, 3, 4]
        assert [job.id for job in batch.jobs] == ids
        assert len(batch) == 5

    def test_wire_format(self, client):
        batch = client.new_batch()
        batch.add("post", "/node", {"name": "Kirk"})
        batch.delete("/node/3")
        assert [job.to_wire() for job in batch.jobs] == [
            {"id": 0, "method": "POST", "to": "/node", "body": {"name": "Kirk"}},
            {"id": 1, "method": "DELETE", "to": "/node/3"},
        ]

    def test_concurrent_enqueue_yields_every_id_once(self, client):
        batch = client.new_batch()
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda i: batch.add("POST", "/node", {"i": i}), range(200)))
        assert sorted(ids) == list(range(200))
        for position, job in enumerate(batch.jobs):
            assert job.id == position
            assert ids[job.body["i"]] == job.id

    def test_forward_references_are_formatted_not_resolved(self, client, server):
        batch = client.new_batch()
        kirk = batch.create_node({"name": "Kirk"})
        mccoy = batch.create_node({"name": "McCoy"})
        rel = batch.relate(kirk, "COMMANDS", mccoy, {"since": 2265})
        batch.set_property(mccoy, "rank", "Lt Cmdr")

        wire = [job.to_wire() for job in batch.jobs]
        assert wire[0] == {"id": 0, "method": "POST", "to": "/node", "body": {"name": "Kirk"}}
        assert wire[2] == {
            "id": 2,
            "method": "POST",
            "to": "{0}/relationships",
            "body": {"to": "{1}", "type": "COMMANDS", "data": {"since": 2265}},
        }
        assert wire[3] == {"id": 3, "method": "PUT", "to": "{1}/properties/rank", "body": "Lt Cmdr"}
        assert rel.identity == reference(2) == "{2}"
        # Only service root discovery so far, nothing was resolved remotely.
        assert [r.method for r in server.requests] == ["GET"]

    def test_existing_entities_become_relative_uris(self, client):
        batch = client.new_batch()
        spock = Node.model_validate(node_body(12, name="Spock"))
        new = batch.create_node()
        batch.relate(new, "KNOWS", spock)
        assert batch.jobs[1].body["to"] == "/node/12"
        batch.get(spock)
        assert batch.jobs[2].to == "/node/12"

    def test_reference_to_unknown_job_rejected(self, client):
        batch = client.new_batch()
        with pytest.raises(ValueError):
            batch.reference(0)
        other = client.new_batch().create_node()
        with pytest.raises(ValueError):
            batch.reference(other)


class TestExecute:
    def test_empty_batch_needs_no_request(self, client, server):
        assert client.new_batch().execute() == {}
        assert server.calls("POST", BATCH) == []

    def test_results_matched_by_id_not_position(self, client, server):
        batch = client.new_batch()
        nodes = [batch.create_node({"n": i}) for i in range(3)]
        server.on(
            "POST",
            BATCH,
            (
                200,
                [
                    {"id": 2, "location": f"{ROOT}node/32", "body": node_body(32, n=2)},
                    {"id": 0, "location": f"{ROOT}node/30", "body": node_body(30, n=0)},
                    {"id": 1, "location": f"{ROOT}node/31", "body": node_body(31, n=1)},
                ],
            ),
        )

        results = batch.execute()

        assert sorted(results) == [0, 1, 2]
        for i, bn in enumerate(nodes):
            assert results[i].location == f"{ROOT}node/{30 + i}"
            node = bn.node()
            assert node.id == 30 + i
            assert node.data == {"n": i}
        [sent] = server.bodies("POST", BATCH)
        assert [job["id"] for job in sent] == [0, 1, 2]

    def test_node_from_location_only(self, client, server):
        batch = client.new_batch()
        bn = batch.create_node()
        server.on("POST", BATCH, (200, [{"id": 0, "location": f"{ROOT}node/9"}]))
        batch.execute()
        assert bn.node().id == 9

    def test_result_before_execution(self, client):
        bn = client.new_batch().create_node()
        with pytest.raises(BatchNotExecutedError):
            bn.node()

    def test_second_execution_rejected(self, client, server):
        batch = client.new_batch()
        batch.create_node()
        server.on("POST", BATCH, (200, [{"id": 0, "body": node_body(1)}]))
        batch.execute()

        with pytest.raises(BatchExecutedError):
            batch.execute()
        with pytest.raises(BatchExecutedError):
            batch.create_node()
        assert len(server.calls("POST", BATCH)) == 1

    def test_protocol_failure_gives_no_job_a_result(self, client, server):
        batch = client.new_batch()
        nodes = [batch.create_node() for _ in range(2)]
        server.on("POST", BATCH, (500, {"message": "boom", "exception": "BatchOperationFailedException"}))

        with pytest.raises(ProtocolError) as exc_info:
            batch.execute()

        assert exc_info.value.messages == ["boom"]
        for bn in nodes:
            assert bn.job.result is None
            with pytest.raises(BatchNotExecutedError):
                bn.node()
        with pytest.raises(BatchExecutedError):
            batch.execute()

    def test_transport_failure_gives_no_job_a_result(self, client, server):
        batch = client.new_batch()
        bn = batch.create_node()
        server.on("POST", BATCH, httpx.ReadTimeout("timed out"))

        with pytest.raises(TransportError):
            batch.execute()

        assert bn.job.result is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"not": "a list"},
            [{"id": 0}, {"id": 0}],
            [{"id": 0}, {"id": 5}],
            [{"id": 0}],
            [{"id": "zero"}, {"id": 1}],
        ],
    )
    def test_malformed_response_is_all_or_nothing(self, client, server, payload):
        batch = client.new_batch()
        batch.create_node()
        batch.create_node()
        server.on("POST", BATCH, (200, payload))

        with pytest.raises(ProtocolError):
            batch.execute()

        assert all(job.result is None for job in batch.jobs)

    def test_job_failure_does_not_fail_the_batch(self, client, server):
        batch = client.new_batch()
        ok = batch.create_node()
        missing = batch.delete("/node/999")
        server.on(
            "POST",
            BATCH,
            (
                200,
                [
                    {"id": 0, "status": 201, "body": node_body(5)},
                    {"id": 1, "status": 404, "body": {"message": "Node 999 not found"}},
                ],
            ),
        )

        results = batch.execute()

        assert results[0].ok
        assert ok.node().id == 5
        assert not results[missing].ok
        assert isinstance(results[missing].error, BatchJobError)
        assert results[missing].error.status == 404
        with pytest.raises(BatchJobError):
            batch.job(missing).require_result()

    def test_statement_job_is_decoded_onto_its_query(self, client, server):
        batch = client.new_batch()
        batch.create_node({"name": "Kirk"})
        query = CypherQuery("MATCH (n) RETURN n.name AS name")
        job_id = batch.cypher(query)
        assert batch.job(job_id).to == "/transaction/commit"
        assert batch.job(job_id).body == {"statements": [{"statement": "MATCH (n) RETURN n.name AS name"}]}
        server.on(
            "POST",
            BATCH,
            (
                200,
                [
                    {"id": 1, "body": tx_body(rows(["name"], ["Kirk"]))},
                    {"id": 0, "body": node_body(1, name="Kirk")},
                ],
            ),
        )

        batch.execute()

        assert query.result == [{"name": "Kirk"}]

    def test_failed_statement_job_is_not_reported_ok(self, client, server):
        batch = client.new_batch()
        ok = batch.create_node()
        query = CypherQuery("foobar")
        job_id = batch.cypher(query)
        error = {"code": "Neo.ClientError.Statement.InvalidSyntax", "status": "Bad", "message": "boom"}
        server.on(
            "POST",
            BATCH,
            (
                200,
                [
                    {"id": 0, "status": 201, "body": node_body(5)},
                    {"id": 1, "status": 200, "body": tx_body(rows([], errors=[error]))},
                ],
            ),
        )

        results = batch.execute()

        assert results[0].ok and ok.node().id == 5
        assert not results[job_id].ok
        assert isinstance(results[job_id].error, QueryError)
        assert results[job_id].error.statement_indexes == [0]
        assert [e.message for e in query.errors] == ["boom"]
        assert query.result is None
        with pytest.raises(QueryError):
            batch.job(job_id).require_result()

    def test_job_without_entity_is_a_protocol_error(self, client, server):
        batch = client.new_batch()
        bn = batch.create_node()
        server.on("POST", BATCH, (200, [{"id": 0, "status": 201}]))
        batch.execute()

        with pytest.raises(ProtocolError) as exc_info:
            bn.node()

        assert not isinstance(exc_info.value, BatchNotExecutedError)
        assert exc_info.value.status == 201

    def test_non_finite_body_is_not_sent(self, client, server):
        batch = client.new_batch()
        bn = batch.create_node()
        batch.set_property(bn, "score", float("nan"))

        with pytest.raises(EncodeError):
            batch.execute()

        assert server.calls("POST", BATCH) == []
