"""REST representations of nodes and relationships.

Only the shape is modelled here; entity CRUD lives outside this package.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _id_from_uri(uri: str) -> int:
    """Trailing integer of an entity URI, e.g. ``.../node/42`` -> 42."""
    tail = uri.rstrip("/").rsplit("/", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        raise ValueError(f"Not an entity URI: {uri!r}") from None


class EntityMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    labels: List[str] = Field(default_factory=list)
    type: Optional[str] = None


class Node(BaseModel):
    """A node as returned by the REST API (``self``, ``data``, ``metadata``)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    self_uri: str = Field(alias="self")
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[EntityMetadata] = None

    @property
    def id(self) -> int:
        if self.metadata is not None and self.metadata.id is not None:
            return self.metadata.id
        return _id_from_uri(self.self_uri)

    @property
    def labels(self) -> List[str]:
        return list(self.metadata.labels) if self.metadata is not None else []


class Relationship(BaseModel):
    """A relationship as returned by the REST API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    self_uri: str = Field(alias="self")
    type: str
    start: str
    end: str
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[EntityMetadata] = None

    @property
    def id(self) -> int:
        if self.metadata is not None and self.metadata.id is not None:
            return self.metadata.id
        return _id_from_uri(self.self_uri)

    @property
    def start_id(self) -> int:
        return _id_from_uri(self.start)

    @property
    def end_id(self) -> int:
        return _id_from_uri(self.end)
