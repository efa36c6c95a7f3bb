"""HTTP client for the exodus-gw API.

This module provides:
- load_client_context: Load the client cert/key pair for mutual TLS
- GatewayClient: JSON requests against one environment's exodus-gw
"""

from __future__ import annotations

import logging
import ssl
from typing import TYPE_CHECKING, Any

import httpx

from exodus_rsync.client.types import CancelScope, ClientInitError, TransportError

if TYPE_CHECKING:
    from exodus_rsync.core.config import Environment

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds


def load_client_context(cert: str, key: str) -> ssl.SSLContext:
    """Create an SSL context presenting the given client certificate.

    Args:
        cert: Path to the PEM client certificate.
        key: Path to the PEM private key.

    Returns:
        SSL context for mutual TLS.

    Raises:
        ClientInitError: If the pair can't be loaded.
    """
    if not cert or not key:
        raise ClientInitError("can't load cert/key: gwcert and gwkey must be set")

    context = ssl.create_default_context()
    try:
        context.load_cert_chain(certfile=cert, keyfile=key)
    except (OSError, ssl.SSLError) as e:
        raise ClientInitError(f"can't load cert/key ({cert}, {key}): {e}") from e
    return context


class GatewayClient:
    """HTTP client for one environment's exodus-gw."""

    def __init__(
        self,
        env: Environment,
        scope: CancelScope | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            env: Environment the client is scoped to.
            scope: Cancellation scope observed by every request.
            http_client: Preconfigured httpx client; built from env if None.

        Raises:
            ClientInitError: If the client cert/key can't be loaded.
        """
        self._env = env
        self._scope = scope or CancelScope()
        if http_client is None:
            http_client = httpx.Client(
                base_url=env.gw_url,
                verify=load_client_context(env.gw_cert, env.gw_key),
                timeout=DEFAULT_TIMEOUT,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        self._client = http_client

    @property
    def env(self) -> Environment:
        return self._env

    @property
    def scope(self) -> CancelScope:
        return self._scope

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> GatewayClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _timeout(self) -> float:
        remaining = self._scope.remaining()
        if remaining is None:
            return DEFAULT_TIMEOUT
        return min(remaining, DEFAULT_TIMEOUT)

    def request_json(self, method: str, path: str, json: Any = None) -> Any:
        """Send a request and decode the JSON response.

        Args:
            method: HTTP method.
            path: Path relative to the gateway URL.
            json: Optional request body.

        Returns:
            Decoded response body.

        Raises:
            TransportError: On connectivity failure, non-2xx status or a
                response which is not JSON.
            OperationCancelled: If the run was cancelled.
        """
        self._scope.check()

        try:
            response = self._client.request(
                method, path, json=json, timeout=self._timeout()
            )
        except httpx.TimeoutException as e:
            # The scope deadline shortens request timeouts
            self._scope.check()
            raise TransportError(f"{method} {path}: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path}: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"{method} {response.url}: "
                f"{response.status_code} {response.reason_phrase} {response.text}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {response.url}: {e}") from e
