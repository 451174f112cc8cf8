"""
Shared fixtures for pyreload tests.
"""

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from fastapi import FastAPI

from pyreload.config import get_settings


@dataclass
class TlsMaterial:
    """Self-signed key material for TLS tests."""

    key_pem: bytes
    cert_pem: bytes
    p12: bytes
    p12_passphrase: str


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate tests from PYRELOAD_* variables and the settings cache."""
    monkeypatch.delenv("PYRELOAD_PORT", raising=False)
    monkeypatch.delenv("PYRELOAD_VERBOSE", raising=False)
    monkeypatch.delenv("PYRELOAD_CONFIG_PATH", raising=False)
    monkeypatch.delenv("PYRELOAD_ROUTE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def free_port() -> int:
    """A TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def host_app() -> FastAPI:
    """Host application the client script route is registered on."""
    return FastAPI()


@pytest.fixture(scope="session")
def tls_material() -> TlsMaterial:
    """Self-signed certificate for localhost / 127.0.0.1."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    p12 = pkcs12.serialize_key_and_certificates(
        b"pyreload-test",
        key,
        cert,
        None,
        serialization.BestAvailableEncryption(b"secret"),
    )
    return TlsMaterial(key_pem=key_pem, cert_pem=cert_pem, p12=p12, p12_passphrase="secret")


async def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll predicate on the event loop until it is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable:
    """Async helper that polls a predicate until it holds."""
    return _wait_until
