from typing import Any, Dict, Mapping, Sequence, Tuple, Union

# mypy does not support recursive type definitions
# See discussion here: https://github.com/python/typing/issues/182
Json = Dict[str, Any]
JsonElement = Union[str, int, float, bool, None, Mapping[str, Any], Sequence[Any]]

# a node in the graph is addressed by resource type and resource id
NodeKey = Tuple[str, str]
Triple = Tuple[str, str, Any]
