from __future__ import annotations

from abc import ABC
from typing import Any, Callable, Optional, Union


class Bender(ABC):
    """
    A bender reads one value from a json source.
    Benders compose with `>>`: the right side only runs, if the left side yields a value.
    A bender that yields None leaves the property unset.
    """

    def __call__(self, source: Any) -> Any:
        return self.execute(source)

    def execute(self, source: Any) -> Any:
        return source

    def __rshift__(self, other: Bender) -> Bender:
        return Compose(self, other)


class S(Bender):
    """
    Selects the value under the given path of keys and list indexes.
    A missing element on the path yields the default.
    """

    def __init__(self, *path: Union[str, int], default: Optional[Any] = None):
        if not path:
            raise ValueError("No path given")
        self._path = path
        self._default = default

    def execute(self, source: Any) -> Any:
        for key in self._path:
            if isinstance(source, dict) and isinstance(key, str) and key in source:
                source = source[key]
            elif isinstance(source, list) and isinstance(key, int) and -len(source) <= key < len(source):
                source = source[key]
            else:
                return self._default
        return source

    def __repr__(self) -> str:
        return "S(" + ".".join(str(p) for p in self._path) + ")"


class F(Bender):
    """
    Calls the function with the selected value.
    Extra positional and named arguments are passed after the value:

    ```
    S("Tags") >> F(extract_tag, "Name")  # -> extract_tag(tags, "Name")
    ```
    """

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any):
        self._func = func
        self._args = args
        self._kwargs = kwargs

    def execute(self, source: Any) -> Any:
        return self._func(source, *self._args, **self._kwargs)

    def __repr__(self) -> str:
        return f"F({getattr(self._func, '__name__', self._func)})"


class Compose(Bender):
    def __init__(self, first: Bender, second: Bender):
        self._first = first
        self._second = second

    def execute(self, source: Any) -> Any:
        value = self._first(source)
        return None if value is None else self._second(value)

    def __repr__(self) -> str:
        return f"{self._first!r} >> {self._second!r}"
