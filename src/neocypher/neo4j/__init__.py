"""
Neo4j REST client, statement encoding, result decoding, transactions
and batches.

This package should contain ONLY Neo4j-specific logic:
- HTTP transport and service root discovery
- Cypher statement encoding and tabular result decoding
- Transaction and batch coordination

Configuration, errors and the command line live one level up.
"""

from .batch import Batch, BatchJob, BatchNode, BatchRelationship, BatchResult, reference
from .client import Neo4jClient, ServiceRoot
from .decoder import decode, register_result_type
from .entity import Node, Relationship
from .statement import CypherQuery, normalize_statement
from .transaction import Transaction, TxState
from .transport import HttpTransport, Response

__all__ = [
    "Neo4jClient",
    "ServiceRoot",
    "HttpTransport",
    "Response",
    "CypherQuery",
    "normalize_statement",
    "decode",
    "register_result_type",
    "Transaction",
    "TxState",
    "Batch",
    "BatchJob",
    "BatchNode",
    "BatchRelationship",
    "BatchResult",
    "reference",
    "Node",
    "Relationship",
]
