from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, List, Pattern

from attrs import define, evolve, field

from cloudgraph.resource import Resource


class Matcher(ABC):
    @abstractmethod
    def match(self, resource: Resource) -> bool:
        pass

    def __call__(self, resource: Resource) -> bool:
        return self.match(resource)


def _as_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _tags_of(resource: Resource) -> List[str]:
    tags = resource.properties.get("Tags")
    if isinstance(tags, list) and all(isinstance(t, str) for t in tags):
        return tags
    return []


@define(frozen=True)
class And(Matcher):
    matchers: List[Matcher] = field(factory=list)

    def __init__(self, *matchers: Matcher) -> None:
        self.__attrs_init__(list(matchers))  # type: ignore

    def match(self, resource: Resource) -> bool:
        # an empty conjunction never matches
        return len(self.matchers) > 0 and all(m.match(resource) for m in self.matchers)


@define(frozen=True)
class Or(Matcher):
    matchers: List[Matcher] = field(factory=list)

    def __init__(self, *matchers: Matcher) -> None:
        self.__attrs_init__(list(matchers))  # type: ignore

    def match(self, resource: Resource) -> bool:
        return any(m.match(resource) for m in self.matchers)


@define(frozen=True)
class Property(Matcher):
    name: str
    value: Any
    on_string: bool = False
    case_insensitive: bool = False
    substring: bool = False

    def match_string(self) -> Property:
        return evolve(self, on_string=True)

    def ignore_case(self) -> Property:
        return evolve(self, case_insensitive=True)

    def contains(self) -> Property:
        return evolve(self, substring=True)

    def match(self, resource: Resource) -> bool:
        actual, found = resource.property(self.name)
        if not found:
            return False
        expected = self.value
        if self.on_string:
            actual, expected = _as_string(actual), _as_string(expected)
        if self.case_insensitive:
            actual = actual.lower() if isinstance(actual, str) else actual
            expected = expected.lower() if isinstance(expected, str) else expected
        if self.substring and isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return bool(actual == expected)


@define(frozen=True)
class Tag(Matcher):
    """Matches a "key=value" entry in the Tags property. A `*` in key or value is a wildcard."""

    key: str
    value: str
    pattern: Pattern[str] = field(init=False)

    def __attrs_post_init__(self) -> None:
        quoted = "^" + re.escape(f"{self.key}={self.value}") + "$"
        object.__setattr__(self, "pattern", re.compile(quoted.replace(r"\*", ".*")))

    def match(self, resource: Resource) -> bool:
        return any(self.pattern.match(tag) for tag in _tags_of(resource))


@define(frozen=True)
class TagKey(Matcher):
    key: str

    def match(self, resource: Resource) -> bool:
        return any(tag.split("=")[0] == self.key for tag in _tags_of(resource))


@define(frozen=True)
class TagValue(Matcher):
    value: str

    def match(self, resource: Resource) -> bool:
        for tag in _tags_of(resource):
            _, sep, value = tag.partition("=")
            if sep and value == self.value:
                return True
        return False
