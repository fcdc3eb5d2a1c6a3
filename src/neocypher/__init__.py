"""Client for the Neo4j REST API: Cypher statements, transactions and batches."""

from .config import Config
from .errors import (
    BatchExecutedError,
    BatchJobError,
    BatchNotExecutedError,
    DecodeError,
    EncodeError,
    InvalidDatabaseError,
    Neo4jError,
    NotFoundError,
    ProtocolError,
    QueryError,
    ResultTypeError,
    StatementError,
    TransactionClosedError,
    TransactionExpiredError,
    TransportError,
    UncommittableTransactionError,
)
from .neo4j import (
    Batch,
    BatchNode,
    BatchRelationship,
    CypherQuery,
    Neo4jClient,
    Node,
    Relationship,
    Transaction,
    TxState,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "Neo4jClient",
    "CypherQuery",
    "Transaction",
    "TxState",
    "Batch",
    "BatchNode",
    "BatchRelationship",
    "Node",
    "Relationship",
    "StatementError",
    "Neo4jError",
    "TransportError",
    "ProtocolError",
    "NotFoundError",
    "TransactionExpiredError",
    "InvalidDatabaseError",
    "QueryError",
    "EncodeError",
    "DecodeError",
    "ResultTypeError",
    "TransactionClosedError",
    "UncommittableTransactionError",
    "BatchExecutedError",
    "BatchNotExecutedError",
    "BatchJobError",
]
