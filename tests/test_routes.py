from __future__ import annotations

import pytest

from nixserve.binary_cache.routes import Operation, Route, RouteDispatcher, build_route_table


@pytest.fixture
def dispatcher() -> RouteDispatcher:
    return RouteDispatcher()


@pytest.mark.parametrize(
    ("path", "operation", "captures"),
    [
        ("/nix-cache-info", Operation.CACHE_INFO, ()),
        ("/0abc9.narinfo", Operation.NARINFO, ("0abc9",)),
        ("/nar/abc-0def.nar", Operation.NAR, ("abc", "0def")),
        ("/nar/abc.nar", Operation.NAR_DEPRECATED, ("abc",)),
        ("/realisations/sha256:00ff!out.doi", Operation.REALISATION, ("sha256:00ff!out",)),
        ("/realisations/a/b.doi.doi", Operation.REALISATION, ("a/b.doi",)),
        ("/realisations/.doi", Operation.REALISATION, ("",)),
    ],
)
def test_route_table_matches(dispatcher, path, operation, captures) -> None:
    match = dispatcher.match("GET", path)

    assert match is not None
    assert match.operation is operation
    assert match.captures == captures


@pytest.mark.parametrize(
    "path",
    [
        "/nix-cache-info.narinfo",
        "/.narinfo",
        "/Abc.narinfo",
        "/abc.narinfo/",
        "/nar/abc-.nar",
        "/nar/a-b-c.nar",
        "/nar/abc.nar.xz",
        "/realisations/abc",
        "//abc.narinfo",
    ],
)
def test_route_table_rejects(dispatcher, path) -> None:
    assert dispatcher.match("GET", path) is None


def test_only_get_is_routed(dispatcher) -> None:
    assert dispatcher.match("get", "/nix-cache-info") is not None
    for method in ("HEAD", "POST", "PUT", "DELETE", "OPTIONS"):
        assert dispatcher.match(method, "/nix-cache-info") is None


def test_route_table_order_and_arity() -> None:
    routes = build_route_table()

    assert [route.operation for route in routes] == [
        Operation.CACHE_INFO,
        Operation.NARINFO,
        Operation.NAR,
        Operation.NAR_DEPRECATED,
        Operation.REALISATION,
    ]
    assert [route.arity for route in routes] == [0, 1, 2, 1, 1]


def test_first_matching_route_wins() -> None:
    loose = Route.compile(r"/nar/(.*)\.nar", Operation.NAR_DEPRECATED)
    strict = Route.compile(r"/nar/([0-9a-z]+)-([0-9a-z]+)\.nar", Operation.NAR)

    assert RouteDispatcher([loose, strict]).match("GET", "/nar/abc-def.nar").operation is Operation.NAR_DEPRECATED
    assert RouteDispatcher([strict, loose]).match("GET", "/nar/abc-def.nar").operation is Operation.NAR
