"""Component manifest: loads components.yaml into typed definitions.

The manifest only populates the checker registry at startup; the engine
never reads it.

    components:
      - name: api
        type: http
        url: https://api.example.com/health
      - name: db
        type: tcp
        hostname: db.internal
        port: 5432
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .checkers import DnsChecker, HttpChecker, TcpChecker, TlsChecker
from .models import Checker
from .registry import CheckerRegistry

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """Raised when the manifest or one of its entries cannot be used."""


@dataclass
class ComponentDef:
    """Definition of a single component from the manifest."""

    name: str
    type: str  # http | tls | dns | tcp
    url: str = ""
    hostname: str = ""
    port: int = 0  # 0 = checker default
    method: str = "GET"
    expected_status: int = 200
    warn_days_before: int = 14  # for TLS checks


# ── Loading ──────────────────────────────────────────────────────────────────


def load_manifest(path: Path | str) -> list[ComponentDef]:
    """Parse the manifest. A missing file is an empty manifest."""
    path = Path(path)
    if not path.exists():
        logger.warning("Component manifest not found: %s", path)
        return []

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"Failed to parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ManifestError(f"{path}: expected a mapping with a 'components' list")

    defs = []
    for entry in raw.get("components") or []:
        try:
            defs.append(_parse_component(entry))
        except (ManifestError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed component entry: %s", e)

    logger.info("Loaded %d components from %s", len(defs), path)
    return defs


def _parse_component(raw: Any) -> ComponentDef:
    if not isinstance(raw, dict):
        raise ManifestError(f"entry must be a mapping, got {type(raw).__name__}")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ManifestError("component 'name' is required")

    return ComponentDef(
        name=name,
        type=str(raw.get("type", "http")).lower(),
        url=raw.get("url", ""),
        hostname=raw.get("hostname", ""),
        port=int(raw.get("port", 0)),
        method=raw.get("method", "GET"),
        expected_status=int(raw.get("expected_status", 200)),
        warn_days_before=int(raw.get("warn_days_before", 14)),
    )


# ── Building ─────────────────────────────────────────────────────────────────


CHECKER_TYPES: dict[str, Callable[[ComponentDef], Checker]] = {
    "http": lambda d: HttpChecker(d.url, d.method, d.expected_status),
    "tls": lambda d: TlsChecker(d.hostname, d.port or 443, d.warn_days_before),
    "dns": lambda d: DnsChecker(d.hostname),
    "tcp": lambda d: TcpChecker(d.hostname, d.port or 443),
}


def build_checker(defn: ComponentDef) -> Checker:
    """Instantiate the checker for a definition."""
    factory = CHECKER_TYPES.get(defn.type)
    if factory is None:
        raise ManifestError(f"{defn.name}: unknown check type '{defn.type}'")
    try:
        return factory(defn)
    except ValueError as e:
        raise ManifestError(f"{defn.name}: {e}") from e


def populate_registry(registry: CheckerRegistry, defs: list[ComponentDef]) -> int:
    """Register a checker per definition; returns how many were registered."""
    count = 0
    for d in defs:
        try:
            registry.register(d.name, build_checker(d))
        except (ManifestError, ValueError) as e:
            logger.warning("Skipping component '%s': %s", d.name, e)
            continue
        count += 1
    return count
