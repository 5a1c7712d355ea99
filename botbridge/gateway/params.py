"""Parameter resolution across JSON body, form body and query string."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def loads_strict(data: str | bytes) -> Any:
    """``json.loads`` that rejects ``NaN``, ``Infinity`` and ``-Infinity``."""
    return json.loads(data, parse_constant=_reject_constant)


class ParamKind(str, Enum):
    MISSING = "missing"
    STRING = "string"
    SCALAR = "scalar"  # number, bool or null from a JSON body
    JSON = "json"  # object or array


@dataclass(frozen=True)
class Param:
    """A resolved parameter value.

    Form and query values are untyped strings; they only become ``JSON``
    when they look like an array or object and parse as one.
    """

    kind: ParamKind
    value: Any = None

    @classmethod
    def from_json(cls, value: Any) -> Param:
        if isinstance(value, str):
            return cls(ParamKind.STRING, value)
        if isinstance(value, (dict, list)):
            return cls(ParamKind.JSON, value)
        return cls(ParamKind.SCALAR, value)

    @classmethod
    def from_text(cls, text: str) -> Param:
        if text.startswith(("[", "{")):
            try:
                return cls(ParamKind.JSON, loads_strict(text))
            except ValueError:
                pass
        return cls(ParamKind.STRING, text)

    def exists(self) -> bool:
        return self.kind is not ParamKind.MISSING

    def get(self, name: str) -> Param:
        """Look up a field of a JSON object value."""
        if self.kind is ParamKind.JSON and isinstance(self.value, dict) and name in self.value:
            return Param.from_json(self.value[name])
        return MISSING

    @property
    def string(self) -> str:
        return self.value if self.kind is ParamKind.STRING else ""

    def integer(self, default: int = 0) -> int:
        value = self.value
        if self.kind is ParamKind.STRING:
            try:
                value = float(value)
            except ValueError:
                return default
        elif self.kind is not ParamKind.SCALAR or not isinstance(value, (int, float)):
            return default
        if isinstance(value, float) and not math.isfinite(value):
            return default
        return int(value)

    def boolean(self, default: bool = False) -> bool:
        if self.kind is ParamKind.SCALAR and isinstance(self.value, bool):
            return self.value
        if self.kind is ParamKind.STRING:
            return self.value.lower() in ("1", "true", "yes")
        return default


MISSING = Param(ParamKind.MISSING)


def _first(values: dict[str, list[str]] | None, name: str) -> str:
    if not values:
        return ""
    found = values.get(name)
    return found[0] if found else ""


@dataclass(frozen=True)
class RequestContext:
    """Read-only view over the three parameter sources of one request."""

    json_body: Any = None
    form: dict[str, list[str]] | None = None
    query: dict[str, list[str]] | None = None

    def get(self, name: str) -> Param:
        """Resolve ``name``: JSON body field, then form value, then query value."""
        if isinstance(self.json_body, dict) and name in self.json_body:
            return Param.from_json(self.json_body[name])
        form_value = _first(self.form, name)
        if form_value:
            return Param.from_text(form_value)
        query_value = _first(self.query, name)
        if query_value:
            return Param.from_text(query_value)
        return MISSING
