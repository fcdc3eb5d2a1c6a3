"""Simple CLI for poking at a Neo4j server through the REST client.

Usage examples (from project root):

    neocypher ping

    neocypher cypher "MATCH (n:Person) WHERE n.name = $name RETURN n.name" \
        --param name=Kirk

    # Run inside an explicit transaction and roll it back afterwards
    neocypher cypher "CREATE (n:Person {name: $name}) RETURN n" \
        --param name=Spock --tx --rollback

    neocypher create-nodes --props '{"name": "Kirk"}' --props '{"name": "McCoy"}'

The CLI uses:
- .env configuration (NEO4J_URL, NEO4J_USERNAME, NEO4J_PASSWORD, LOG_LEVEL)
- Neo4jClient for the connection
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .config import Config
from .errors import Neo4jError, QueryError
from .neo4j import CypherQuery, Neo4jClient


def _parse_param(value: str) -> tuple[str, Any]:
    """Parse ``key=value``; the value is read as JSON when possible."""
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f'parameters must look like key=value, got "{value}"')
    try:
        return key, json.loads(raw)
    except ValueError:
        return key, raw


def _parse_props(value: str) -> Dict[str, Any]:
    try:
        props = json.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"--props must be a JSON object: {e}") from e
    if not isinstance(props, dict):
        raise argparse.ArgumentTypeError("--props must be a JSON object")
    return props


def _print(serializable: Dict[str, Any]) -> None:
    print(json.dumps(serializable, indent=2, sort_keys=True, default=str))


def _cmd_ping(args: argparse.Namespace, config: Config) -> int:
    """Discover the service root and print the server version and endpoints."""

    client = Neo4jClient(config=config)

    with client:
        root = client.service_root

    _print(root.model_dump())
    return 0


def _cmd_cypher(args: argparse.Namespace, config: Config) -> int:
    """Run one statement, optionally inside an explicit transaction."""

    params: Optional[Dict[str, Any]] = dict(args.param) if args.param else None
    query = CypherQuery(args.statement, params)
    client = Neo4jClient(config=config)

    with client:
        try:
            if args.tx:
                tx = client.begin([query])
                if args.rollback:
                    tx.rollback()
                else:
                    tx.commit()
            else:
                client.cypher(query)
        except QueryError as e:
            if e.transaction is not None and e.transaction.is_open:
                e.transaction.rollback()
            _print({"errors": [err.model_dump() for err in e.errors]})
            return 1

    records: List[Any] = query.result or []
    _print({"columns": query.columns, "count": len(records), "results": records})
    return 0


def _cmd_create_nodes(args: argparse.Namespace, config: Config) -> int:
    """Create one node per --props in a single batch request."""

    client = Neo4jClient(config=config)

    with client:
        batch = client.new_batch()
        pending = [batch.create_node(props) for props in args.props]
        batch.execute()
        nodes = [bn.node() for bn in pending]

    _print(
        {
            "count": len(nodes),
            "results": [{"id": n.id, "self": n.self_uri, "data": n.data} for n in nodes],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neocypher",
        description="CLI for the Neo4j REST client",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ping command
    p_ping = subparsers.add_parser("ping", help="Discover the service root")
    p_ping.set_defaults(func=_cmd_ping)

    # cypher command
    p_cypher = subparsers.add_parser("cypher", help="Execute a Cypher statement")
    p_cypher.add_argument("statement", type=str, help="Cypher statement text")
    p_cypher.add_argument(
        "--param",
        type=_parse_param,
        action="append",
        default=[],
        help="Statement parameter as key=value (value parsed as JSON if possible)",
    )
    p_cypher.add_argument(
        "--tx",
        action="store_true",
        help="Run inside an explicit transaction instead of a single commit request",
    )
    p_cypher.add_argument(
        "--rollback",
        action="store_true",
        help="With --tx, roll the transaction back instead of committing",
    )
    p_cypher.set_defaults(func=_cmd_cypher)

    # create-nodes command
    p_create = subparsers.add_parser(
        "create-nodes",
        help="Create nodes in one batch request",
    )
    p_create.add_argument(
        "--props",
        type=_parse_props,
        action="append",
        required=True,
        help="JSON object of node properties; repeat for more nodes",
    )
    p_create.set_defaults(func=_cmd_create_nodes)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = Config()
    logging.basicConfig(level=config.log_level.upper())

    try:
        return args.func(args, config)
    except Neo4jError as e:
        logging.getLogger(__name__).error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
