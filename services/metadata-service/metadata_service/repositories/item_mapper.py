"""
Entity <-> DynamoDB item mapping.

The mapper is driven by the dataclass type hints of each entity, so a new
field needs no mapping code. It is pure: no client, no I/O.

Layout rules:
- attribute names are camelCase (``created_by`` -> ``createdBy``)
- UUIDs are strings, datetimes are ISO-8601 strings with microseconds,
  enums are their canonical value
- configuration payloads are nested ``M``/``L`` structures
- ``None`` top-level fields are omitted so secondary indexes stay sparse;
  ``None`` inside a payload is stored as ``NULL``
"""

import dataclasses
import typing
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Type, TypeVar, Union
from uuid import UUID

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from ..domain.entities import Entity
from ..domain.exceptions import ValidationError

E = TypeVar("E", bound=Entity)

MAX_ITEM_BYTES = 400 * 1024

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def to_dynamo_payload(value: Any) -> Any:
    """Convert a free-form payload into values TypeSerializer accepts."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {str(k): to_dynamo_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo_payload(v) for v in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    return value


def from_dynamo_payload(value: Any) -> Any:
    """Undo ``to_dynamo_payload``: Decimals become int or float again."""
    if isinstance(value, Decimal):
        if value == value.to_integral_value() and value.as_tuple().exponent >= 0:
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: from_dynamo_payload(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo_payload(v) for v in value]
    if isinstance(value, set):
        return {from_dynamo_payload(v) for v in value}
    return value


def _unwrap_optional(hint: Any) -> Any:
    if typing.get_origin(hint) is Union:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


@dataclasses.dataclass(frozen=True)
class FieldSpec:
    name: str
    attribute: str
    hint: Any
    required: bool


class ItemMapper(Generic[E]):
    """Bidirectional mapper for one entity class."""

    def __init__(self, entity_cls: Type[E]):
        self.entity_cls = entity_cls
        self.entity_name = entity_cls.__name__
        hints = typing.get_type_hints(entity_cls)
        self.fields: List[FieldSpec] = []
        for f in dataclasses.fields(entity_cls):
            required = (
                f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING
            )
            self.fields.append(
                FieldSpec(f.name, to_camel(f.name), _unwrap_optional(hints[f.name]), required)
            )
        self._by_name = {spec.name: spec for spec in self.fields}

    def attribute(self, field_name: str) -> str:
        return self._by_name[field_name].attribute

    def to_item(self, entity: E) -> Dict[str, Dict[str, Any]]:
        """Map an entity to a low-level DynamoDB attribute map."""
        item = {}
        for spec in self.fields:
            value = getattr(entity, spec.name)
            if value is None:
                continue
            item[spec.attribute] = _serializer.serialize(self._to_python(spec, value))
        return item

    def from_item(self, item: Dict[str, Dict[str, Any]]) -> E:
        """Map a low-level DynamoDB attribute map back to an entity."""
        kwargs = {}
        for spec in self.fields:
            raw = item.get(spec.attribute)
            if raw is None:
                if spec.required:
                    raise ValidationError(self.entity_name, spec.name, "missing attribute")
                continue
            value = _deserializer.deserialize(raw)
            kwargs[spec.name] = self._from_python(spec, value)
        return self.entity_cls(**kwargs)

    def serialize_value(self, field_name: str, value: Any) -> Dict[str, Any]:
        """Attribute value for ``field_name``, used in key conditions and filters."""
        spec = self._by_name[field_name]
        return _serializer.serialize(self._to_python(spec, value))

    def key(self, entity_id: UUID) -> Dict[str, Dict[str, str]]:
        return {"id": {"S": str(entity_id)}}

    def _to_python(self, spec: FieldSpec, value: Any) -> Any:
        hint = spec.hint
        if hint is UUID:
            return str(value)
        if hint is datetime:
            return format_timestamp(value)
        if isinstance(hint, type) and issubclass(hint, Enum):
            return hint(value).value
        if hint in (bool, str):
            return value
        if hint is int:
            return int(value)
        if typing.get_origin(hint) in (list, List) and typing.get_args(hint) == (UUID,):
            return [str(v) for v in value]
        return to_dynamo_payload(value)

    def _from_python(self, spec: FieldSpec, value: Any) -> Any:
        hint = spec.hint
        try:
            if hint is UUID:
                return UUID(value)
            if hint is datetime:
                return datetime.fromisoformat(value)
            if isinstance(hint, type) and issubclass(hint, Enum):
                return hint(value)
            if hint is bool:
                if not isinstance(value, bool):
                    raise ValueError(f"expected boolean, got {type(value).__name__}")
                return value
            if hint is str:
                if not isinstance(value, str):
                    raise ValueError(f"expected string, got {type(value).__name__}")
                return value
            if hint is int:
                return int(value)
            if typing.get_origin(hint) in (list, List) and typing.get_args(hint) == (UUID,):
                return [UUID(v) for v in value]
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(self.entity_name, spec.name, str(e)) from e
        return from_dynamo_payload(value)


def attribute_value_size(value: Dict[str, Any]) -> int:
    """Approximate stored size of one attribute value, following DynamoDB's sizing rules."""
    (kind, inner), = value.items()
    if kind == "S":
        return len(inner.encode("utf-8"))
    if kind == "N":
        return len(str(inner).lstrip("-").replace(".", "")) // 2 + 2
    if kind == "B":
        return len(inner)
    if kind in ("BOOL", "NULL"):
        return 1
    if kind == "M":
        return 3 + sum(
            len(k.encode("utf-8")) + 1 + attribute_value_size(v) for k, v in inner.items()
        )
    if kind == "L":
        return 3 + sum(1 + attribute_value_size(v) for v in inner)
    if kind in ("SS", "NS", "BS"):
        return sum(len(str(v).encode("utf-8")) for v in inner)
    return 0


def item_size(item: Dict[str, Dict[str, Any]]) -> int:
    return sum(len(name.encode("utf-8")) + attribute_value_size(v) for name, v in item.items())
