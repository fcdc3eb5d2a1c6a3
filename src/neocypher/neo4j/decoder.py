"""Decoding of tabular Cypher results into typed rows.

Column names are server-determined strings such as ``"a.name"`` or
``"type(r)"``, so rows are matched to fields by name rather than by
position: each row becomes a ``{column: cell}`` mapping, is serialized to
JSON and validated into the target type. Pydantic models declare the
column a field reads with an alias::

    class Command(BaseModel):
        captain: str = Field(alias="a.name")
        rel: str = Field(alias="type(r)")
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, FrozenSet, List, Sequence, Tuple

from pydantic import AliasChoices, AliasPath, BaseModel, TypeAdapter, ValidationError

from ..errors import DecodeError, ResultTypeError

SCALAR_TYPES = (str, int, float, bool, list)


def _is_model(result_type: Any) -> bool:
    return isinstance(result_type, type) and issubclass(result_type, BaseModel)


def _field_columns(
    model: type, name: str, info: Any, populate_by_name: bool
) -> Tuple[List[str], List[str]]:
    """Columns a field reads, split into exclusive tags and shared path roots.

    A plain alias (or the field name) must be unique across the model. An
    ``AliasPath`` only names the column it starts from, which several fields
    may read into.
    """
    tags: List[str] = []
    roots: List[str] = []
    va = info.validation_alias
    choices = va.choices if isinstance(va, AliasChoices) else [va]
    for choice in choices:
        if isinstance(choice, str):
            tags.append(choice)
        elif isinstance(choice, AliasPath):
            root = choice.path[0] if choice.path else None
            if not isinstance(root, str):
                raise ResultTypeError(
                    f"{model.__name__}.{name}: alias path must start at a column name"
                )
            roots.append(root)
    if not tags and not roots:
        tags.append(info.alias or name)
    if populate_by_name and name not in tags:
        tags.append(name)
    return tags, roots


@lru_cache(maxsize=None)
def _model_keys(model: type) -> FrozenSet[str]:
    """Column names a model accepts; raises on duplicate name tags."""
    owners: Dict[str, str] = {}
    keys = set()
    config = model.model_config
    populate_by_name = bool(config.get("populate_by_name") or config.get("validate_by_name"))
    for name, info in model.model_fields.items():
        tags, roots = _field_columns(model, name, info, populate_by_name)
        for tag in tags:
            if tag in owners and owners[tag] != name:
                raise ResultTypeError(
                    f"{model.__name__}: fields {owners[tag]!r} and {name!r} "
                    f"both read column {tag!r}"
                )
            owners[tag] = name
        keys.update(tags)
        keys.update(roots)
    return frozenset(keys)


@lru_cache(maxsize=None)
def _adapter(result_type: Any) -> TypeAdapter:
    return TypeAdapter(result_type)


def register_result_type(result_type: Any) -> None:
    """Validate ``result_type`` as a decode target.

    Raises:
        ResultTypeError: unsupported type, or a model whose fields share a
            name tag.
    """
    if _is_model(result_type):
        _model_keys(result_type)
    elif result_type is dict or result_type in SCALAR_TYPES:
        return
    else:
        raise ResultTypeError(
            f"Cannot decode rows into {result_type!r}: expected a pydantic model, "
            f"dict, or one of {', '.join(t.__name__ for t in SCALAR_TYPES)}"
        )


def decode(columns: Sequence[str], rows: Sequence[Sequence[Any]], result_type: Any = dict) -> List[Any]:
    """Decode ``rows`` (aligned with ``columns``) into a list of ``result_type``.

    Columns without a matching field are ignored. A row whose length differs
    from the column count is an error, as is a scalar target for a result
    with more than one column. Empty results always decode to ``[]``.

    Raises:
        ResultTypeError: ``result_type`` is not a supported target.
        DecodeError: a row is malformed or does not validate.
    """
    register_result_type(result_type)
    columns = list(columns)
    if not rows:
        return []

    scalar = result_type in SCALAR_TYPES
    if scalar and len(columns) != 1:
        raise ResultTypeError(
            f"Cannot decode {len(columns)} columns {columns} into scalar "
            f"{result_type.__name__}; use a model or dict"
        )

    keys = _model_keys(result_type) if _is_model(result_type) else None
    adapter = _adapter(result_type)
    decoded: List[Any] = []
    for row_num, row in enumerate(rows):
        if len(row) != len(columns):
            raise DecodeError(
                f"Row {row_num} has {len(row)} cells but the result has "
                f"{len(columns)} columns"
            )
        if scalar:
            value = row[0]
        else:
            value = {
                name: cell
                for name, cell in zip(columns, row)
                if keys is None or name in keys
            }
        try:
            # Round trip through JSON so validation sees exactly what a
            # JSON-typed server value looks like.
            decoded.append(adapter.validate_json(json.dumps(value)))
        except ValidationError as e:
            raise DecodeError(f"Row {row_num} does not fit {_type_name(result_type)}: {e}") from e
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Row {row_num} is not JSON-encodable: {e}") from e
    return decoded


def _type_name(result_type: Any) -> str:
    return getattr(result_type, "__name__", repr(result_type))
