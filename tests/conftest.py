"""Shared fixtures for exodus-rsync tests."""

from __future__ import annotations

import datetime
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from exodus_rsync.client.publish import Publish
from exodus_rsync.client.types import (
    CancelScope,
    ItemInput,
    PublishError,
    TransportError,
    UploadError,
)

CONFIG_TEMPLATE = """\
gwurl: https://gw.example.com/
gwcert: /certs/client.crt
gwkey: /certs/client.key
gwpollinterval: 1

environments:
- prefix: exodus
  gwenv: test
"""


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[str], Path]:
    """Write a config file and return its path."""

    def _write(content: str = CONFIG_TEMPLATE, name: str = "exodus-rsync.conf") -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def cert_pair(tmp_path: Path) -> tuple[Path, Path]:
    """Create a throwaway self-signed client certificate and key."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import NameOID

    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "exodus-rsync-test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )

    cert_path = tmp_path / "client.crt"
    key_path = tmp_path / "client.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


def _wait(seconds: float, scope: CancelScope | None) -> None:
    """Sleep for seconds, stopping early if scope is cancelled."""
    deadline = time.monotonic() + seconds
    while time.monotonic() < deadline:
        if scope is None:
            time.sleep(0.01)
        else:
            scope.sleep(0.01)


class MockBlobStore:
    """In-memory blob store recording every call.

    Delays are per key and observe the scope passed with each call, the way
    a real request or file read does.
    """

    def __init__(
        self,
        present: set[str] | None = None,
        fail_exists_on: int | None = None,
        fail_upload: bool = False,
        fail_exists_keys: set[str] | None = None,
        exists_delay: dict[str, float] | None = None,
        upload_delay: dict[str, float] | None = None,
    ) -> None:
        self.blobs: set[str] = set(present or ())
        self.fail_exists_on = fail_exists_on
        self.fail_upload = fail_upload
        self.fail_exists_keys = set(fail_exists_keys or ())
        self.exists_delay = dict(exists_delay or {})
        self.upload_delay = dict(upload_delay or {})
        self.exists_calls: list[str] = []
        self.upload_calls: list[tuple[str, str]] = []
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    def exists(self, key: str, scope: CancelScope | None = None) -> bool:
        with self._lock:
            self.exists_calls.append(key)
            self.threads.add(threading.current_thread().name)
            call_number = len(self.exists_calls)
        _wait(self.exists_delay.get(key, 0), scope)
        if self.fail_exists_on is not None and call_number == self.fail_exists_on:
            raise TransportError(f"checking for presence of {key}: 403 Forbidden")
        if key in self.fail_exists_keys:
            raise TransportError(f"checking for presence of {key}: 403 Forbidden")
        return key in self.blobs

    def upload(self, key: str, src_path: str, scope: CancelScope | None = None) -> str:
        with self._lock:
            self.upload_calls.append((key, src_path))
        if self.fail_upload:
            raise UploadError(f"upload (s3) {src_path}: 500")
        _wait(self.upload_delay.get(key, 0), scope)
        self.blobs.add(key)
        return f"https://gw.example.com/upload/test/{key}"


class MockPublisher:
    """Publish manager recording every call."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[str] = []
        self.items: list[ItemInput] = []
        self.closed = False

    def create(self) -> Publish:
        self.calls.append("create")
        if self.fail_on == "create":
            raise PublishError("creating publish: 500")
        return Publish(id="publish-1")

    def add_items(self, publish: Publish, items: Sequence[ItemInput]) -> int:
        self.calls.append("add_items")
        if self.fail_on == "add_items":
            raise PublishError("adding items: 400", publish.id)
        self.items.extend(items)
        return len(items)

    def commit(self, publish: Publish) -> None:
        self.calls.append("commit")
        if self.fail_on == "commit":
            raise PublishError("committing publish: 500", publish.id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_store() -> type[MockBlobStore]:
    """Factory for in-memory blob stores."""
    return MockBlobStore


@pytest.fixture
def make_publisher() -> type[MockPublisher]:
    """Factory for recording publish managers."""
    return MockPublisher
