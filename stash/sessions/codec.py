"""
Attribute Codecs
=================

Convert session attribute values to and from the text stored in the
attribute map column.
"""

from __future__ import annotations

import base64
import binascii
import json
import pickle
from abc import ABC, abstractmethod
from typing import Any

from stash.errors import CodecError, ValidationError


class AttributeCodec(ABC):
    """Encodes attribute values for storage."""

    name: str = ""

    @abstractmethod
    def encode(self, value: Any) -> str:
        """Encode a value. Raises CodecError if it cannot be represented."""

    @abstractmethod
    def decode(self, data: str | None) -> Any:
        """Decode stored text. ``None`` decodes to ``None``."""


class PickleCodec(AttributeCodec):
    """Pickle + base64. Handles any picklable value.

    Only decode rows written by a trusted STASH instance: unpickling
    runs arbitrary constructors.
    """

    name = "pickle"

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    def encode(self, value: Any) -> str:
        try:
            raw = pickle.dumps(value, protocol=self.protocol)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise CodecError(f"Cannot encode {type(value).__name__}: {e}") from e
        return base64.b64encode(raw).decode("ascii")

    def decode(self, data: str | None) -> Any:
        if data is None:
            return None
        try:
            raw = base64.b64decode(data.encode("ascii"), validate=True)
            return pickle.loads(raw)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise CodecError(f"Malformed attribute encoding: {e}") from e
        except Exception as e:  # noqa: BLE001 - corrupt frames raise OverflowError, MemoryError, ...
            raise CodecError(f"Cannot decode attribute value: {type(e).__name__}: {e}") from e


class JsonCodec(AttributeCodec):
    """Plain JSON text.

    Only values that come back unchanged are accepted: tuples, non-string
    dict keys and NaN are rejected with CodecError at encode time.
    """

    name = "json"

    def encode(self, value: Any) -> str:
        try:
            text = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CodecError(f"Cannot encode {type(value).__name__}: {e}") from e
        if not _same(json.loads(text), value):
            raise CodecError(
                f"{type(value).__name__} value does not survive a JSON round trip: {value!r:.80}"
            )
        return text

    def decode(self, data: str | None) -> Any:
        if data is None:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            raise CodecError(f"Malformed JSON attribute: {e}") from e


def _same(decoded: Any, value: Any) -> bool:
    """Equality that also tells lists from tuples and 1 from True."""
    if type(decoded) is not type(value):
        return False
    if isinstance(value, dict):
        return decoded.keys() == value.keys() and all(_same(decoded[k], value[k]) for k in value)
    if isinstance(value, list):
        return len(decoded) == len(value) and all(map(_same, decoded, value))
    return decoded == value


_CODECS: dict[str, type[AttributeCodec]] = {
    PickleCodec.name: PickleCodec,
    JsonCodec.name: JsonCodec,
}


def get_codec(name: str) -> AttributeCodec:
    """Return a codec instance by its configuration name."""
    try:
        return _CODECS[name]()
    except KeyError:
        raise ValidationError(
            f"Unknown codec {name!r} (expected one of: {', '.join(sorted(_CODECS))})"
        ) from None
