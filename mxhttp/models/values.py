"""
Value containers for query parameters, form fields, headers, cookies and
multipart files.

Values accept heterogeneous scalars and normalize them to their string wire
representation only when decoded, so callers may keep ints and bools around
until the request is materialized.
"""

import json
import os
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import IO, Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import quote_plus

from mxhttp.exceptions import BuildError


def to_string(value: Any) -> str:
    """Converts a scalar to its wire representation."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return to_string(value.value)
    if isinstance(value, float):
        # Integral floats render without a fraction
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class Values(dict):
    """
    Maps a string key to a scalar or a list of scalars.

    Used for request query parameters, form data and headers. Encoding is
    deterministic: keys are sorted so the same values always produce the same
    wire output.
    """

    def get(self, key: str) -> List[str]:  # type: ignore[override]
        """Returns the normalized values stored under key, or an empty list."""
        if key not in self:
            return []
        value = self[key]
        if isinstance(value, (list, tuple, set, frozenset)):
            return [to_string(v) for v in value]
        return [to_string(value)]

    def first(self, key: str, default: str = "") -> str:
        values = self.get(key)
        return values[0] if values else default

    def has(self, key: str) -> bool:
        return key in self

    def set(self, key: str, value: Any) -> None:
        """Sets key to value, replacing any existing values."""
        self[key] = value

    def set_default(self, key: str, value: Any) -> None:
        """Sets key to value only if key is absent."""
        if key not in self:
            self[key] = value

    def delete(self, key: str) -> None:
        self.pop(key, None)

    def update(self, other: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> None:  # type: ignore[override]
        """Merges other into self, replacing existing values."""
        if other:
            for key, value in other.items():
                self.set(key, value)
        for key, value in kwargs.items():
            self.set(key, value)

    def merge(self, other: Optional[Mapping[str, Any]]) -> None:
        """Merges other into self, keeping existing values."""
        if other:
            for key, value in other.items():
                self.set_default(key, value)

    def clone(self) -> "Values":
        return type(self)(self)

    def decode(self) -> Dict[str, List[str]]:
        """Returns the string-valued representation of all keys."""
        return {key: self.get(key) for key in self}

    def items_sorted(self) -> Iterable[tuple]:
        """Yields (key, value) string pairs sorted by key."""
        for key in sorted(self):
            for value in self.get(key):
                yield key, value

    def encode(self, escape: bool = True) -> str:
        """
        Encodes the values into URL form, sorted by key.

        Args:
            escape: Percent-encode keys and values (spaces become '+').
        """
        parts = []
        for key, value in self.items_sorted():
            if escape:
                key, value = quote_plus(key), quote_plus(value)
            parts.append(f"{key}={value}")
        return "&".join(parts)

    def marshal(self) -> str:
        """Returns the JSON encoding of the raw values."""
        return json.dumps(self, default=to_string, ensure_ascii=False, separators=(",", ":"))


# Aliases that document intent at call sites
Params = Values
Form = Values


def canonical_header_key(key: str) -> str:
    """``content-type`` -> ``Content-Type``."""
    return "-".join(part.capitalize() for part in key.strip().split("-"))


class Headers(Values):
    """Values whose keys are canonicalized, so header lookups ignore case."""

    def __init__(self, other: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        super().__init__()
        self.update(other, **kwargs)

    def __setitem__(self, key: str, value: Any) -> None:
        super().__setitem__(canonical_header_key(key), value)

    def __getitem__(self, key: str) -> Any:
        return super().__getitem__(canonical_header_key(key))

    def __delitem__(self, key: str) -> None:
        super().__delitem__(canonical_header_key(key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(canonical_header_key(key))

    def pop(self, key: str, *default: Any) -> Any:  # type: ignore[override]
        return super().pop(canonical_header_key(key), *default)


class Cookies(dict):
    """Maps cookie names to their string values."""

    def has(self, key: str) -> bool:
        return key in self

    def set(self, key: str, value: Any) -> None:
        self[key] = to_string(value)

    def set_default(self, key: str, value: Any) -> None:
        if key not in self:
            self.set(key, value)

    def delete(self, key: str) -> None:
        self.pop(key, None)

    def update(self, other: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> None:  # type: ignore[override]
        if other:
            for key, value in other.items():
                self.set(key, value)
        for key, value in kwargs.items():
            self.set(key, value)

    def merge(self, other: Optional[Mapping[str, Any]]) -> None:
        if other:
            for key, value in other.items():
                self.set_default(key, value)

    def clone(self) -> "Cookies":
        return Cookies(self)


FileSource = Union[str, os.PathLike, bytes, IO[bytes]]


class File:
    """
    A file part of a multipart payload.

    The body may be a filesystem path (read lazily by the multipart producer),
    raw bytes, or an open binary file object.
    """

    DEFAULT_FILENAME = "file"

    def __init__(
        self,
        body: FileSource,
        filename: Optional[str] = None,
        mime: Optional[str] = None,
    ):
        self.body = body
        self.mime = mime
        if filename is None and isinstance(body, (str, os.PathLike)):
            filename = Path(body).name
        self.filename = filename or self.DEFAULT_FILENAME

    @classmethod
    def open(cls, path: Union[str, os.PathLike], mime: Optional[str] = None) -> "File":
        """Returns a File for the named path, failing fast if it does not exist."""
        p = Path(path)
        if not p.is_file():
            raise BuildError(f"no such file: '{p}'", op="File.open")
        return cls(p, filename=p.name, mime=mime)

    @property
    def is_path(self) -> bool:
        return isinstance(self.body, (str, os.PathLike))

    def with_filename(self, filename: str) -> "File":
        self.filename = filename
        return self

    def with_mime(self, mime: str) -> "File":
        self.mime = mime
        return self

    def __repr__(self) -> str:
        return f"File(filename={self.filename!r}, mime={self.mime!r})"


class Files(dict):
    """Maps a form field name to a File."""

    def set(self, key: str, value: File) -> None:
        self[key] = value

    def delete(self, key: str) -> None:
        self.pop(key, None)
