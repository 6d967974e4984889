"""Result types, the Checker capability, and the health error taxonomy."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .context import CheckContext

DEADLINE_EXCEEDED = "deadline exceeded"


# ── Errors ───────────────────────────────────────────────────────────────────


class CheckError(Exception):
    """Raised by a checker to report failure, optionally with diagnostics."""

    def __init__(self, message: str, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class DeadlineExceeded(Exception):
    """Marker stored on a result whose checker missed the shared timeout."""

    def __init__(self) -> None:
        super().__init__(DEADLINE_EXCEEDED)


class ComponentNotFound(LookupError):
    """Raised when a single-component query names an unregistered component."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Component not found: {name}")


# ── Checker capability ───────────────────────────────────────────────────────


@runtime_checkable
class Checker(Protocol):
    """Anything that can probe one component.

    ``check`` may be a plain function (run on a worker thread) or a coroutine
    function (run as a task). Return a details mapping (or None) on success;
    raise on failure, ``CheckError`` to attach details.
    """

    def check(self, ctx: CheckContext) -> Any: ...


# ── Models ───────────────────────────────────────────────────────────────────


class Status(str, Enum):
    DOWN = "down"
    UP = "up"


def _freeze(details: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(details or {}))


@dataclass(frozen=True)
class ComponentResult:
    """Outcome of one component check."""

    name: str
    status: Status
    error_message: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)
    error: BaseException | None = field(default=None, compare=False, repr=False)
    duration_ms: float = field(default=0.0, compare=False)

    def __post_init__(self) -> None:
        if self.status == Status.UP and self.error_message is not None:
            raise ValueError(f"{self.name}: error_message must be unset when status is up")
        if self.status == Status.DOWN and not self.error_message:
            raise ValueError(f"{self.name}: error_message is required when status is down")
        object.__setattr__(self, "details", _freeze(self.details))

    @classmethod
    def up(cls, name: str, details: Mapping[str, Any] | None = None, duration_ms: float = 0.0) -> ComponentResult:
        return cls(name=name, status=Status.UP, details=details or {}, duration_ms=duration_ms)

    @classmethod
    def down(
        cls,
        name: str,
        error: BaseException,
        details: Mapping[str, Any] | None = None,
        duration_ms: float = 0.0,
    ) -> ComponentResult:
        return cls(
            name=name,
            status=Status.DOWN,
            error_message=str(error) or type(error).__name__,
            details=details or {},
            error=error,
            duration_ms=duration_ms,
        )

    @classmethod
    def deadline_exceeded(cls, name: str, duration_ms: float = 0.0) -> ComponentResult:
        return cls.down(name, DeadlineExceeded(), duration_ms=duration_ms)

    @property
    def ok(self) -> bool:
        return self.status == Status.UP

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, DeadlineExceeded)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "details": dict(self.details),
            "duration_ms": round(self.duration_ms, 1),
        }
        if self.error_message is not None:
            d["error"] = self.error_message
        return d


@dataclass(frozen=True)
class Result:
    """Aggregate outcome of an all-components query."""

    status: Status
    components: Mapping[str, ComponentResult]

    def __post_init__(self) -> None:
        object.__setattr__(self, "components", MappingProxyType(dict(self.components)))

    @classmethod
    def from_components(cls, results: list[ComponentResult]) -> Result:
        """Key results by name and derive the aggregate status."""
        components = {r.name: r for r in results}
        if len(components) != len(results):
            raise ValueError("duplicate component names in results")
        down = any(r.status == Status.DOWN for r in results)
        return cls(status=Status.DOWN if down else Status.UP, components=components)

    @property
    def ok(self) -> bool:
        return self.status == Status.UP

    def failing(self) -> list[str]:
        return sorted(n for n, r in self.components.items() if not r.ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "components": {n: r.to_dict() for n, r in sorted(self.components.items())},
        }
