"""Engine identity and selector-alias resolution."""

from __future__ import annotations

from enum import Enum

from dualdb.errors import InvalidConfigError


class EngineKind(str, Enum):
    """The two supported engines."""

    EMBEDDED = "sqlite"
    CLIENT_SERVER = "postgresql"


ENGINE_ALIASES: dict[str, EngineKind] = {
    "sqlite": EngineKind.EMBEDDED,
    "sqlite3": EngineKind.EMBEDDED,
    "pg": EngineKind.CLIENT_SERVER,
    "postgres": EngineKind.CLIENT_SERVER,
    "postgresql": EngineKind.CLIENT_SERVER,
}

DEFAULT_ENGINE = EngineKind.EMBEDDED


def resolve_engine(selector: str | EngineKind | None) -> EngineKind:
    """Map a configured selector to an ``EngineKind``.

    Matching is case-insensitive and ignores surrounding whitespace. An empty
    selector falls back to the embedded engine.

    Usage:
        resolve_engine("PG")        # EngineKind.CLIENT_SERVER
        resolve_engine("sqlite3")   # EngineKind.EMBEDDED
    """
    if isinstance(selector, EngineKind):
        return selector
    name = (selector or "").strip().lower()
    if not name:
        return DEFAULT_ENGINE
    try:
        return ENGINE_ALIASES[name]
    except KeyError:
        supported = ", ".join(sorted(ENGINE_ALIASES))
        raise InvalidConfigError(
            "client",
            selector,
            f"Unsupported database client: {selector!r}. Supported: {supported}",
        ) from None


__all__ = [
    "EngineKind",
    "ENGINE_ALIASES",
    "DEFAULT_ENGINE",
    "resolve_engine",
]
