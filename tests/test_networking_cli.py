from __future__ import annotations

import socket

import pytest

from nixserve.binary_cache import main as cli
from nixserve.common.networking import ListenAddress, ListenAddressError, bind_socket, bound_address, format_host


@pytest.mark.parametrize(
    ("value", "host", "port"),
    [
        ("[::]:5000", "::", 5000),
        ("127.0.0.1:8080", "127.0.0.1", 8080),
        ("localhost:0", "localhost", 0),
        (":5000", "", 5000),
        ("[::1]:65535", "::1", 65535),
        ("::1:80", "::1", 80),
    ],
)
def test_parse_listen_address(value, host, port) -> None:
    assert ListenAddress.parse(value) == ListenAddress(host, port)


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("localhost", "Invalid listen address. Expected: host:port"),
        ("localhost:http", "Invalid port number"),
        ("localhost:", "Invalid port number"),
        ("localhost:65536", "Invalid port number"),
        ("localhost:-1", "Invalid port number"),
    ],
)
def test_parse_listen_address_errors(value, message) -> None:
    with pytest.raises(ListenAddressError, match=message):
        ListenAddress.parse(value)


def test_listen_address_formatting() -> None:
    assert str(ListenAddress("::", 5000)) == "[::]:5000"
    assert str(ListenAddress("127.0.0.1", 80)) == "127.0.0.1:80"
    assert format_host("example.org") == "example.org"


def test_bind_socket_reports_chosen_port() -> None:
    requested = ListenAddress("127.0.0.1", 0)
    sock = bind_socket(requested)
    try:
        actual = bound_address(sock, requested)
        assert actual.host == "127.0.0.1"
        assert actual.port > 0
        with socket.create_connection(("127.0.0.1", actual.port), timeout=5):
            pass
    finally:
        sock.close()


def test_parse_args_rejects_bad_listen(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.parse_args(["--listen", "nowhere"])

    assert excinfo.value.code == 2
    assert "Invalid listen address" in capsys.readouterr().err


def test_cli_overrides_environment(monkeypatch) -> None:
    monkeypatch.setenv("NIX_SERVE_LISTEN", "127.0.0.1:9000")
    monkeypatch.setenv("NIX_SERVE_LOG_LEVEL", "WARNING")

    from_env = cli.load_settings(cli.parse_args([]))
    from_args = cli.load_settings(cli.parse_args(["--listen", "[::1]:7000", "--log-level", "DEBUG"]))

    assert (from_env.listen, from_env.log_level) == ("127.0.0.1:9000", "WARNING")
    assert (from_args.listen, from_args.log_level) == ("[::1]:7000", "DEBUG")


def test_main_rejects_bad_listen_from_environment(monkeypatch, capsys) -> None:
    monkeypatch.setenv("NIX_SERVE_LISTEN", "no-port")

    assert cli.main([]) == 2
    assert "Invalid listen address" in capsys.readouterr().err


def test_main_fails_on_unreadable_key(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setenv("NIX_SERVE_LISTEN", "127.0.0.1:0")
    monkeypatch.setenv("NIX_SECRET_KEY_FILE", str(tmp_path / "absent.sec"))

    assert cli.main([]) == 1
    assert "absent.sec" in capsys.readouterr().err
