from __future__ import annotations

import json
import logging
import plistlib
from dataclasses import MISSING, dataclass, field
from dataclasses import fields as dataclass_fields
from typing import Any, Optional, TypeVar, Union, get_args, get_origin, get_type_hints
from xml.parsers.expat import ExpatError

from .exceptions import DecodeError, ServerError

log = logging.getLogger(__name__)

T = TypeVar("T")

_PLAIN_TYPES = (str, int, bool, bytes, dict, list)


def _keyed_fields(cls):
    hints = get_type_hints(cls)
    return [
        (f, hints[f.name])
        for f in dataclass_fields(cls)
        if f.metadata is not None and "key" in f.metadata
    ]


def _has_default(f) -> bool:
    return f.default is not MISSING or f.default_factory is not MISSING


def _decode_value(cls, wire_key: str, field_type, value):
    if hasattr(field_type, "from_dict"):
        return field_type.from_dict(value)

    base_type = get_origin(field_type) or field_type
    if base_type not in _PLAIN_TYPES:
        raise TypeError(
            f"Unsupported field type: {repr(field_type)} for key '{wire_key}' in {cls.__name__}"
        )
    # bool is a subclass of int, but a flag is never a valid count
    if not isinstance(value, base_type) or (
        base_type is int and isinstance(value, bool)
    ):
        raise DecodeError(
            f"Key '{wire_key}' in {cls.__name__} should be {base_type.__name__}, got {type(value).__name__}"
        )
    return value


def _add_mapping_methods(cls):
    def from_dict(cls, mapping: Any):
        if not isinstance(mapping, dict):
            raise DecodeError(
                f"Expected a dictionary for {cls.__name__}, got {type(mapping).__name__}"
            )
        field_values = {}
        keyed_fields = _keyed_fields(cls)
        for current_field, current_field_type in keyed_fields:
            wire_key = current_field.metadata["key"]

            optional = get_origin(current_field_type) is Union and type(
                None
            ) in get_args(current_field_type)
            if optional:
                current_field_type = get_args(current_field_type)[0]

            if mapping.get(wire_key) is None:
                if _has_default(current_field):
                    continue
                if optional:
                    field_values[current_field.name] = None
                    continue
                raise DecodeError(f"Key '{wire_key}' not found in {cls.__name__}")

            field_values[current_field.name] = _decode_value(
                cls, wire_key, current_field_type, mapping[wire_key]
            )

        known_keys = {f.metadata["key"] for f, _ in keyed_fields}
        for extra in mapping.keys() - known_keys:
            log.debug(f"Ignoring unexpected key '{extra}' for {cls.__name__}")
        return cls(**field_values)

    def to_dict(self) -> dict:
        mapping = {}
        for f, _ in _keyed_fields(type(self)):
            value = getattr(self, f.name)
            if value is None:
                continue
            if hasattr(value, "to_dict"):
                value = value.to_dict()
            mapping[f.metadata["key"]] = value
        return mapping

    setattr(cls, "from_dict", classmethod(from_dict))
    setattr(cls, "to_dict", to_dict)
    return cls


def json_record(cls: T) -> T:
    """
    Add from_json/to_json (and from_dict/to_dict) methods to a dataclass

    Only fields declared with `key` take part in encoding and decoding
    """
    _add_mapping_methods(cls)

    def from_json(cls, data: Union[str, bytes]):
        try:
            mapping = json.loads(data)
        except ValueError as e:  # JSONDecodeError and UnicodeDecodeError
            raise DecodeError(f"Invalid JSON for {cls.__name__}: {e}") from e
        return cls.from_dict(mapping)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    setattr(cls, "from_json", classmethod(from_json))
    setattr(cls, "to_json", to_json)
    return cls


def plist_record(envelope: Optional[str] = None, status: bool = False):
    """
    Add a from_plist method to a dataclass

    :param envelope: key of the dictionary holding the record's fields, e.g. "Response"
    :param status: check the envelope's Status and raise ServerError unless its code is 0
    """

    def decorator(cls: T) -> T:
        _add_mapping_methods(cls)

        def from_plist(cls, data: bytes):
            try:
                document = plistlib.loads(data)
            except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
                raise DecodeError(
                    f"Malformed property list for {cls.__name__}: {e}"
                ) from e

            if envelope is not None:
                if not isinstance(document, dict) or not isinstance(
                    document.get(envelope), dict
                ):
                    raise DecodeError(
                        f"Property list for {cls.__name__} has no '{envelope}' dictionary"
                    )
                document = document[envelope]

            if status:
                if not isinstance(document, dict) or "Status" not in document:
                    raise DecodeError(f"Property list for {cls.__name__} has no Status")
                response_status = ResponseStatus.from_dict(document["Status"])
                if response_status.code != 0:
                    raise ServerError(
                        response_status.message,
                        response_status.description,
                        response_status.code,
                    )

            return cls.from_dict(document)

        setattr(cls, "from_plist", classmethod(from_plist))
        return cls

    return decorator


def key(name: str, **kwargs: Any):
    """A dataclass field stored under `name` on the wire, other arguments go to field()"""
    return field(metadata={"key": name}, **kwargs)


def encode_plist_request(fields: Optional[dict] = None) -> bytes:
    return plistlib.dumps(
        {"Header": {}, "Request": fields or {}}, fmt=plistlib.FMT_XML
    )


@_add_mapping_methods
@dataclass
class ResponseStatus:
    code: int = key("ec")
    message: str = key("em", default="")
    description: str = key("ed", default="")
