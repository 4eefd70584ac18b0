"""Tagged-union JSON value.

Planner payloads arrive as loosely-typed JSON.  Instead of probing arbitrary
objects, every decoded document is converted into a ``JsonValue`` whose
``kind`` says exactly which variant it holds.  Accessors such as
``as_str()`` return ``None`` when the variant does not match, so mapping code
can be strict about shape without try/except around every field.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, NamedTuple


class JsonKind(Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


class JsonValue(NamedTuple):
    kind: JsonKind
    value: Any = None

    # ---- construction --------------------------------------------------------

    @classmethod
    def null(cls) -> JsonValue:
        return cls(JsonKind.NULL)

    @classmethod
    def from_python(cls, obj: Any) -> JsonValue:
        """Convert the output of ``json.loads`` (or ``requests.Response.json``).

        Raises:
            TypeError: for values JSON cannot represent.
        """
        if obj is None:
            return cls(JsonKind.NULL)
        # bool before int: bool is an int subclass
        if isinstance(obj, bool):
            return cls(JsonKind.BOOL, obj)
        if isinstance(obj, (int, float)):
            return cls(JsonKind.NUMBER, obj)
        if isinstance(obj, str):
            return cls(JsonKind.STRING, obj)
        if isinstance(obj, (list, tuple)):
            return cls(JsonKind.ARRAY, tuple(cls.from_python(v) for v in obj))
        if isinstance(obj, dict):
            return cls(JsonKind.OBJECT, {str(k): cls.from_python(v) for k, v in obj.items()})
        raise TypeError(f"Not a JSON value: {type(obj).__name__}")

    def to_python(self) -> Any:
        if self.kind == JsonKind.ARRAY:
            return [v.to_python() for v in self.value]
        if self.kind == JsonKind.OBJECT:
            return {k: v.to_python() for k, v in self.value.items()}
        return self.value

    # ---- accessors -----------------------------------------------------------

    @property
    def is_null(self) -> bool:
        return self.kind == JsonKind.NULL

    def as_str(self) -> str | None:
        return self.value if self.kind == JsonKind.STRING else None

    def as_int(self) -> int | None:
        """Return an integer for whole numbers and integer strings.

        Fractional, infinite and NaN numbers give ``None``.
        """
        if self.kind == JsonKind.NUMBER:
            if isinstance(self.value, int):
                return self.value
            if math.isfinite(self.value) and self.value.is_integer():
                return int(self.value)
            return None
        if self.kind == JsonKind.STRING:
            try:
                return int(self.value.strip())
            except ValueError:
                return None
        return None

    def as_bool(self) -> bool | None:
        return self.value if self.kind == JsonKind.BOOL else None

    def as_list(self) -> tuple[JsonValue, ...] | None:
        return self.value if self.kind == JsonKind.ARRAY else None

    def as_dict(self) -> dict[str, JsonValue] | None:
        return self.value if self.kind == JsonKind.OBJECT else None

    def get(self, key: str) -> JsonValue:
        """Object member lookup; missing members (or non-objects) give JSON null."""
        if self.kind != JsonKind.OBJECT:
            return JsonValue.null()
        return self.value.get(key, JsonValue.null())
