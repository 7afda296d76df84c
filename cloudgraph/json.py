import json
from datetime import date, datetime, timezone
from enum import Enum
from ipaddress import IPv4Network, IPv6Network, ip_network
from typing import Any, Callable, List, Optional, Type, TypeVar, Union

import attrs
import cattrs
from cattrs import override
from cattrs.gen import make_dict_unstructure_fn
from dateutil.parser import isoparse

from cloudgraph.logger import log
from cloudgraph.types import JsonElement

AnyT = TypeVar("AnyT")

# the global converter instance
__converter = cattrs.Converter()

# ignore all private attributes
__converter.register_unstructure_hook_factory(
    attrs.has,
    lambda cls: make_dict_unstructure_fn(
        cls,
        __converter,
        _cattrs_omit_if_default=False,
        **{a.name: override(omit=True) for a in attrs.fields(cls) if a.name.startswith("_")},
    ),
)


def utc_str(dt: datetime) -> str:
    if dt.tzinfo is not None and dt.tzinfo.utcoffset(dt) is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def register_json(
    cls: Type[AnyT],
    to_json_fn: Optional[Callable[[AnyT], JsonElement]] = None,
    from_json_fn: Optional[Callable[[Any], AnyT]] = None,
) -> None:
    """
    Register a json marshaller/unmarshaller for the given class.
    :param cls: the class to register
    :param to_json_fn: the function to convert the class to json
    :param from_json_fn: the function to convert json to the class
    """
    if from_json_fn is not None:
        __converter.register_structure_hook(cls, lambda obj, _: from_json_fn(obj))  # type: ignore
    if to_json_fn is not None:
        __converter.register_unstructure_hook(cls, to_json_fn)


# Register some default types not covered in cattrs
register_json(datetime, utc_str, isoparse)
register_json(date, lambda obj: obj.isoformat(), date.fromisoformat)
register_json(IPv4Network, str, ip_network)
register_json(IPv6Network, str, ip_network)
__converter.register_unstructure_hook(Enum, lambda e: e.name)


def to_json(node: Any, strip_nulls: bool = False) -> JsonElement:
    """
    Unstructure the given node into plain json: attrs classes become dicts,
    datetimes ISO strings and networks CIDR strings.
    """

    def walk(js: JsonElement) -> JsonElement:
        if isinstance(js, dict):
            return {k: walk(v) for k, v in js.items() if v is not None}
        elif isinstance(js, list):
            return [walk(e) for e in js]
        else:
            return js

    unstructured: JsonElement = __converter.unstructure(node)
    return walk(unstructured) if strip_nulls else unstructured


def from_json(js: JsonElement, clazz: Type[AnyT]) -> AnyT:
    """
    Loads a json object into a python object.
    :param js: the json object to load.
    :param clazz: the type of the python object.
    :return: the loaded python object.
    """
    try:
        return __converter.structure(js, clazz)
    except Exception as e:
        log.debug(f"Can not deserialize json into class {clazz.__name__}: {js}. Error: {e}")
        raise


def value_in_path(element: JsonElement, path_or_name: Union[List[str], str]) -> Optional[Any]:
    """
    Access a value in a json object by a defined path.
    {"a": {"b": {"c": 1}}} -> value_in_path({"a": {"b": {"c": 1}}}, ["a", "b", "c"]) -> 1
    The path can be defined as a list of strings or as a string with dots as separator.
    """
    path = path_or_name if isinstance(path_or_name, list) else path_or_name.split(".")
    at = len(path)

    def at_idx(current: JsonElement, idx: int) -> Optional[Any]:
        if at == idx:
            return current
        elif current is None or not isinstance(current, dict) or path[idx] not in current:
            return None
        else:
            return at_idx(current[path[idx]], idx + 1)

    return at_idx(element, 0)


def values_in_path(element: JsonElement, path_or_name: Union[List[str], str]) -> List[Any]:
    """
    Like value_in_path, but lists on the way are flattened: every element is followed.
    {"a": [{"b": 1}, {"b": 2}]} -> values_in_path(..., "a.b") -> [1, 2]
    None values are not part of the result.
    """
    path = path_or_name if isinstance(path_or_name, list) else path_or_name.split(".")

    def collect(current: JsonElement, idx: int) -> List[Any]:
        if current is None:
            return []
        elif isinstance(current, list):
            return [v for elem in current for v in collect(elem, idx)]
        elif idx == len(path):
            return [current]
        elif isinstance(current, dict):
            return collect(current.get(path[idx]), idx + 1)
        else:
            return []

    return collect(element, 0)


def compact_json(document: str) -> str:
    """
    Remove insignificant whitespace from a json document.
    Everything else, including string escapes and number literals, is kept as is.
    """
    json.loads(document)  # raises on invalid json
    result: List[str] = []
    in_string = False
    escaped = False
    for char in document:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in " \t\n\r":
            continue
        result.append(char)
    return "".join(result)
