"""Health subsystem: checker registry, evaluation engine, built-in checkers."""

from .checkers import DnsChecker, HttpChecker, TcpChecker, TlsChecker
from .context import CheckContext
from .engine import HealthEngine, evaluate
from .manifest import ComponentDef, ManifestError, build_checker, load_manifest, populate_registry
from .models import (
    DEADLINE_EXCEEDED,
    Checker,
    CheckError,
    ComponentNotFound,
    ComponentResult,
    DeadlineExceeded,
    Result,
    Status,
)
from .registry import CheckerRegistry, func_checker

__all__ = [
    "DEADLINE_EXCEEDED",
    "CheckContext",
    "CheckError",
    "Checker",
    "CheckerRegistry",
    "ComponentDef",
    "ComponentNotFound",
    "ComponentResult",
    "DeadlineExceeded",
    "DnsChecker",
    "HealthEngine",
    "HttpChecker",
    "ManifestError",
    "Result",
    "Status",
    "TcpChecker",
    "TlsChecker",
    "build_checker",
    "evaluate",
    "func_checker",
    "load_manifest",
    "populate_registry",
]
