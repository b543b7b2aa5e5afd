"""
A dict wrapper for loosely-typed JSON documents returned by web APIs.
"""

import json
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from mxhttp.exceptions import DecodeError

M = TypeVar("M", bound=BaseModel)


class JSONDict(dict):
    """
    Typed accessors over a decoded JSON object.

    Getters never raise on a missing key or a type mismatch; they return the
    supplied default instead, which keeps field extraction from third-party
    payloads terse.
    """

    def get_dict(self, key: str) -> "JSONDict":
        value = self.get(key)
        return JSONDict(value) if isinstance(value, dict) else JSONDict()

    def get_string(self, key: str, default: str = "") -> str:
        value = self.get(key)
        return value if isinstance(value, str) else default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        return value if isinstance(value, bool) else default

    def get_number(self, key: str, default: float = 0) -> float:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        return value

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get_number(key, default)
        return int(value)

    def get_list(self, key: str) -> List[Any]:
        value = self.get(key)
        return value if isinstance(value, list) else []

    def get_dict_list(self, key: str) -> List["JSONDict"]:
        return [JSONDict(v) for v in self.get_list(key) if isinstance(v, dict)]

    def get_string_list(self, key: str) -> List[str]:
        return [v for v in self.get_list(key) if isinstance(v, str)]

    def get_path(self, *keys: str, default: Optional[Any] = None) -> Any:
        """Walks nested objects, e.g. ``get_path("data", "album", "name")``."""
        node: Any = self
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def decode(self, model: Type[M]) -> M:
        """Validates the document into a pydantic model."""
        try:
            return model.model_validate(dict(self))
        except ValidationError as e:
            raise DecodeError(
                f"document does not match {model.__name__}", op="JSONDict.decode"
            ) from e

    def __str__(self) -> str:
        return json.dumps(self, indent="\t", ensure_ascii=False)
