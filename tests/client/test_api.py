"""Tests for the exodus-gw HTTP client."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from exodus_rsync.client.api import GatewayClient, load_client_context
from exodus_rsync.client.types import (
    CancelScope,
    ClientInitError,
    OperationCancelled,
    TransportError,
)
from exodus_rsync.core.config import Environment, load_config


@pytest.fixture
def env(write_config: Callable[..., Path]) -> Environment:
    env = load_config(str(write_config())).environment_for_dest("exodus:/x")
    assert env is not None
    return env


def make_gateway(env: Environment, scope: CancelScope | None = None) -> GatewayClient:
    return GatewayClient(
        env, scope, http_client=httpx.Client(base_url=env.gw_url)
    )


class TestLoadClientContext:
    """Tests for load_client_context()."""

    def test_loads_valid_pair(self, cert_pair: tuple[Path, Path]) -> None:
        """Should load a matching cert/key pair."""
        cert, key = cert_pair

        context = load_client_context(str(cert), str(key))

        assert context is not None

    def test_missing_files(self, tmp_path: Path) -> None:
        """Should raise ClientInitError for missing files."""
        with pytest.raises(ClientInitError, match="can't load cert/key"):
            load_client_context(str(tmp_path / "c.pem"), str(tmp_path / "k.pem"))

    def test_garbage_files(self, tmp_path: Path) -> None:
        """Should raise ClientInitError for files which aren't PEM."""
        cert = tmp_path / "c.pem"
        key = tmp_path / "k.pem"
        cert.write_text("not a cert")
        key.write_text("not a key")

        with pytest.raises(ClientInitError):
            load_client_context(str(cert), str(key))

    def test_unset_paths(self) -> None:
        """Should refuse empty cert/key settings."""
        with pytest.raises(ClientInitError, match="gwcert and gwkey must be set"):
            load_client_context("", "")


class TestGatewayClient:
    """Tests for GatewayClient.request_json()."""

    def test_construct_with_bad_cert_fails(self, env: Environment) -> None:
        """Construction without usable credentials should fail immediately."""
        with pytest.raises(ClientInitError):
            GatewayClient(env)

    def test_construct_with_cert(
        self, write_config: Callable[..., Path], cert_pair: tuple[Path, Path]
    ) -> None:
        """Should construct with a valid cert/key pair."""
        cert, key = cert_pair
        path = write_config(
            f"gwurl: https://gw.example.com\ngwcert: {cert}\ngwkey: {key}\n"
            "environments:\n- prefix: exodus\n"
        )
        env = load_config(str(path)).environments[0]

        with GatewayClient(env) as client:
            assert client.env is env

    def test_request_json(self, env: Environment, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send JSON and decode the JSON response."""
        httpx_mock.add_response(
            method="PUT",
            url="https://gw.example.com/test/publish/1",
            json={"ok": True},
        )

        with make_gateway(env) as client:
            result = client.request_json("PUT", "/test/publish/1", json=[{"a": 1}])

        assert result == {"ok": True}
        request = httpx_mock.get_request()
        assert json.loads(request.content) == [{"a": 1}]
        assert request.headers["content-type"] == "application/json"

    def test_error_status(self, env: Environment, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Non-2xx responses should raise TransportError with details."""
        httpx_mock.add_response(
            method="POST",
            url="https://gw.example.com/test/publish",
            status_code=403,
            text="forbidden for this cert",
        )

        with make_gateway(env) as client, pytest.raises(TransportError) as exc_info:
            client.request_json("POST", "/test/publish")

        message = str(exc_info.value)
        assert "403" in message
        assert "forbidden for this cert" in message

    def test_connection_error(self, env: Environment, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Connectivity failures should raise TransportError."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with make_gateway(env) as client, pytest.raises(TransportError, match="connection refused"):
            client.request_json("POST", "/test/publish")

    def test_invalid_json(self, env: Environment, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A response which isn't JSON should raise TransportError."""
        httpx_mock.add_response(text="<html>oops</html>")

        with make_gateway(env) as client, pytest.raises(TransportError):
            client.request_json("GET", "/task/1")

    def test_cancelled_scope(self, env: Environment) -> None:
        """No request should be sent once the scope is cancelled."""
        scope = CancelScope()
        scope.cancel()

        with make_gateway(env, scope) as client, pytest.raises(OperationCancelled):
            client.request_json("GET", "/task/1")
