from __future__ import annotations

from typing import Iterator, List, Optional


class CloudGraphError(Exception):
    pass


class UnknownResourceTypeError(CloudGraphError):
    pass


class ResourceNotFound(CloudGraphError):
    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"resource {resource_type}[{resource_id}] not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class TagNotFound(CloudGraphError):
    """
    Raised by tag extractors when the requested tag key is absent.
    The converter treats it as "no value" and skips the property.
    """


class UnknownDtoError(CloudGraphError):
    pass


class PropertyConversionError(CloudGraphError):
    def __init__(self, resource_type: str, prop: str, cause: Exception) -> None:
        super().__init__(f"type [{resource_type}]: prop '{prop}': {cause}")
        self.resource_type = resource_type
        self.prop = prop
        self.cause = cause


class PaginationError(CloudGraphError):
    def __init__(self, service: str, action: str, cause: Exception) -> None:
        super().__init__(f"{service} {action}: {cause}")
        self.service = service
        self.action = action
        self.cause = cause


class FetchAccessDenied(CloudGraphError):
    def __init__(self, message: str = "access denied to cloud resource") -> None:
        super().__init__(message)


class TypeCastError(CloudGraphError):
    pass


class FetchCancelled(CloudGraphError):
    def __init__(self, message: str = "fetch cancelled") -> None:
        super().__init__(message)


class FetchErrors(CloudGraphError):
    """
    Composite error that collects all errors of a fetch run.
    Nested composites are flattened, so iterating always yields the leaf errors.
    """

    def __init__(self, errors: Optional[List[Exception]] = None) -> None:
        super().__init__()
        self._errors: List[Exception] = []
        for err in errors or []:
            self.add(err)

    def add(self, err: Optional[Exception]) -> None:
        if err is None:
            return
        if isinstance(err, FetchErrors):
            self._errors.extend(err._errors)
        else:
            self._errors.append(err)

    def any(self) -> bool:
        return len(self._errors) > 0

    def has(self, kind: type) -> bool:
        return any(isinstance(e, kind) for e in self._errors)

    def or_none(self) -> Optional[FetchErrors]:
        return self if self.any() else None

    def __iter__(self) -> Iterator[Exception]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    def __str__(self) -> str:
        return "\n".join(str(e) for e in self._errors)

    def __repr__(self) -> str:
        return f"FetchErrors({self._errors!r})"


class ParentCycleError(CloudGraphError):
    pass


class AmbiguousResourceError(CloudGraphError):
    pass
