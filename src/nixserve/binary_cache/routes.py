"""Ordered route table for the binary cache protocol."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence


class Operation(str, enum.Enum):
    CACHE_INFO = "cache_info"
    NARINFO = "narinfo"
    NAR = "nar"
    NAR_DEPRECATED = "nar_deprecated"
    REALISATION = "realisation"


@dataclass(frozen=True)
class Route:
    pattern: Pattern[str]
    arity: int
    operation: Operation

    @classmethod
    def compile(cls, pattern: str, operation: Operation) -> "Route":
        compiled = re.compile(pattern)
        return cls(compiled, compiled.groups, operation)


@dataclass(frozen=True)
class RouteMatch:
    operation: Operation
    captures: tuple[str, ...]


def build_route_table() -> tuple[Route, ...]:
    """Protocol routes in priority order; the first full match wins."""
    return (
        Route.compile(r"/nix-cache-info", Operation.CACHE_INFO),
        Route.compile(r"/([0-9a-z]+)\.narinfo", Operation.NARINFO),
        Route.compile(r"/nar/([0-9a-z]+)-([0-9a-z]+)\.nar", Operation.NAR),
        # Pre-hash URL form, still requested by old clients.
        Route.compile(r"/nar/([0-9a-z]+)\.nar", Operation.NAR_DEPRECATED),
        Route.compile(r"/realisations/(.*)\.doi", Operation.REALISATION),
    )


class RouteDispatcher:
    """Resolves ``(method, path)`` to a protocol operation and its captures."""

    allowed_methods = frozenset({"GET"})

    def __init__(self, routes: Optional[Sequence[Route]] = None) -> None:
        self._routes = tuple(routes) if routes is not None else build_route_table()

    @property
    def routes(self) -> tuple[Route, ...]:
        return self._routes

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        if method.upper() not in self.allowed_methods:
            return None
        for route in self._routes:
            found = route.pattern.fullmatch(path)
            if found is not None:
                return RouteMatch(route.operation, found.groups())
        return None
