from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union, get_args, get_origin

from pydantic import BaseModel

CENT = Decimal("0.01")


def to_money(value: Union[Decimal, str, int, float]) -> Decimal:
    """Coerce a value to a two-place decimal amount."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class DBSerializableModel(BaseModel):
    """
    Base Pydantic model that knows how to:
    - Serialize itself for DB persistence
    - Provide a backend-agnostic DB schema description derived from fields

    The actual SQL/NoSQL DDL is produced offline by the schema generator
    using this description; this class is not meant to hit the database
    at runtime for schema work.
    """

    # Logical collection / table name; subclasses should override
    collection_name: ClassVar[str]

    # Optional explicit primary key field; defaults to "id" if present
    primary_key: ClassVar[Optional[str]] = "id"

    # Fields with a unique constraint, used by the schema generator and
    # the Mongo index bootstrap.
    unique_fields: ClassVar[tuple[str, ...]] = ()

    def serialize_for_db(self) -> Dict[str, Any]:
        """
        Convert to a dict suitable for DB persistence.

        This is the single place to control how models are stored;
        DB adapters can still post-process this if needed.
        """
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def db_schema(cls) -> Dict[str, Any]:
        """
        Return a backend-agnostic schema description derived from model fields.

        The schema generator runs this once (e.g. from a CLI) to produce:
        - SQL DDL for relational databases
        - JSON/metadata for NoSQL collections and indexes
        """
        fields: Mapping[str, Any] = cls.model_fields

        properties: Dict[str, Any] = {}
        required: list[str] = []

        for name, field in fields.items():
            field_type = cls._map_type(field.annotation)
            default = field.default if field.default is not None else None
            if isinstance(default, Enum):
                default = default.value

            properties[name] = {
                "type": field_type,
                "nullable": cls._is_optional(field.annotation),
                "default": None if field.default_factory else default,
                "description": field.description,
            }

            if field.is_required() or not cls._is_optional(field.annotation):
                if name != cls.primary_key:
                    required.append(name)

        return {
            "collection_name": cls.collection_name,
            "primary_key": cls.primary_key,
            "unique": list(cls.unique_fields),
            "properties": properties,
            "required": required,
        }

    @staticmethod
    def _is_optional(annotation: Any) -> bool:
        return get_origin(annotation) is Union and type(None) in get_args(annotation)

    @classmethod
    def _map_type(cls, annotation: Any) -> str:
        """
        Map a Python / Pydantic type annotation to a generic logical type.
        The schema generator will translate these to dialect-specific types.
        """
        if cls._is_optional(annotation):
            inner = [a for a in get_args(annotation) if a is not type(None)]
            return cls._map_type(inner[0])

        origin: Any = get_origin(annotation)
        if origin in (list, tuple, set):
            return "array"
        if origin is dict:
            return "object"

        if annotation in (int,):
            return "integer"
        if annotation in (float,):
            return "number"
        if annotation in (Decimal,):
            return "decimal"
        if annotation in (bool,):
            return "boolean"
        if annotation in (str,):
            return "string"
        if isinstance(annotation, type) and issubclass(annotation, Enum):
            return "string"

        # Fallback for datetime, UUID, etc.; generator can refine using metadata
        name = getattr(annotation, "__name__", "object")
        return name.lower()
