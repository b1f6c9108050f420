"""Command-line entrypoint running the binary cache under uvicorn."""

from __future__ import annotations

import argparse
import sys
from typing import Any

import structlog
import uvicorn

from ..common.networking import ListenAddress, ListenAddressError, bind_socket, bound_address
from ..common.settings import BinaryCacheSettings
from .app import create_app
from .signing import SigningKeyError


LOGGER = structlog.get_logger("nixserve.binary_cache.main")


def listen_address(value: str) -> str:
    try:
        ListenAddress.parse(value)
    except ListenAddressError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    return value


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="nixserve", description="Serve a Nix store as an HTTP binary cache")
    parser.add_argument(
        "--listen",
        type=listen_address,
        help="Host:port to listen to (default from NIX_SERVE_LISTEN, else [::]:5000)",
    )
    parser.add_argument("--log-level", help="Log level (default from NIX_SERVE_LOG_LEVEL, else INFO)")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> BinaryCacheSettings:
    overrides: dict[str, Any] = {}
    if args.listen:
        overrides["listen"] = args.listen
    if args.log_level:
        overrides["log_level"] = args.log_level
    return BinaryCacheSettings(**overrides)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = load_settings(args)
    try:
        address = ListenAddress.parse(settings.listen)
    except ListenAddressError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    try:
        app = create_app(settings)
    except SigningKeyError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    sock = bind_socket(address)
    LOGGER.info("Listen to %s", str(bound_address(sock, address)))
    config = uvicorn.Config(
        app,
        log_config=None,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
    server = uvicorn.Server(config)
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
