"""
TLS credential resolution.

Turns an HttpsOptions credential source into key material bytes and builds
the server SSLContext used by the standalone listener.
"""

import logging
import re
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from pyreload.config import (
    CertAndKeyCredentials,
    ConfigurationError,
    HttpsOptions,
    P12Credentials,
)

logger = logging.getLogger(__name__)

# A string that ends in a short extension is taken to be a file path
_FILE_EXTENSION_RE = re.compile(r"\.\w{3}$")


@dataclass(frozen=True)
class ResolvedCredentials:
    """Concrete key material for a TLS listener."""

    pfx: bytes | None = None
    key: bytes | None = None
    cert: bytes | None = None
    passphrase: str | None = None


def is_cert_string(value: str | bytes) -> bool:
    """
    Return True if value looks like inline PEM text rather than a path.

    PEM text is expected to end with a line terminator; file paths never do.
    """
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value[-1:] in ("\n", "\r")


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def _read_pem(value: str | bytes | Path) -> bytes:
    if isinstance(value, Path):
        return value.read_bytes()
    if is_cert_string(value):
        return _to_bytes(value)
    return Path(value.decode() if isinstance(value, bytes) else value).read_bytes()


def _resolve_p12(p12: P12Credentials) -> ResolvedCredentials:
    source = p12.p12_path
    if isinstance(source, Path) or (isinstance(source, str) and _FILE_EXTENSION_RE.search(source)):
        pfx = Path(source).read_bytes()
    else:
        pfx = _to_bytes(source)

    return ResolvedCredentials(pfx=pfx, passphrase=p12.passphrase or None)


def _resolve_cert_and_key(cert_and_key: CertAndKeyCredentials) -> ResolvedCredentials:
    key = _read_pem(cert_and_key.key) if cert_and_key.key else None
    cert = _read_pem(cert_and_key.cert) if cert_and_key.cert else None
    return ResolvedCredentials(key=key, cert=cert)


def resolve_credentials(https: HttpsOptions | Any) -> ResolvedCredentials:
    """
    Resolve a credential source into bytes.

    Args:
        https: HttpsOptions with either a p12 or a cert_and_key branch

    Returns:
        ResolvedCredentials with pfx (+ passphrase) or key/cert set

    Raises:
        ConfigurationError: If neither branch is supplied
        OSError: If a referenced file cannot be read
    """
    p12 = getattr(https, "p12", None)
    cert_and_key = getattr(https, "cert_and_key", None)

    if p12 is not None:
        return _resolve_p12(p12)
    if cert_and_key is not None:
        return _resolve_cert_and_key(cert_and_key)

    raise ConfigurationError(
        "Could not initialize reload HTTPS setup. "
        "Make sure to define a `p12` or `certAndKey` in the HTTPS options"
    )


def _pkcs12_to_pem(pfx: bytes, passphrase: str | None) -> tuple[bytes, bytes]:
    """Convert a PKCS12 bundle into (key_pem, cert_chain_pem)."""
    password = passphrase.encode("utf-8") if passphrase else None
    private_key, certificate, additional = pkcs12.load_key_and_certificates(pfx, password)

    if private_key is None or certificate is None:
        raise ConfigurationError("PKCS12 bundle must contain a private key and a certificate")

    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    chain = [certificate, *(additional or [])]
    cert_pem = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in chain)
    return key_pem, cert_pem


def create_ssl_context(credentials: ResolvedCredentials) -> ssl.SSLContext:
    """
    Build a server-side SSLContext from resolved credentials.

    The ssl module only loads key material from files, so the PEM data is
    written to a private temporary directory for the duration of the load.
    """
    passphrase = credentials.passphrase
    if credentials.pfx is not None:
        key_pem, cert_pem = _pkcs12_to_pem(credentials.pfx, passphrase)
        passphrase = None
    else:
        key_pem, cert_pem = credentials.key, credentials.cert

    if not cert_pem:
        raise ConfigurationError("HTTPS options did not provide a certificate")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    with tempfile.TemporaryDirectory(prefix="pyreload-") as tmp:
        cert_file = Path(tmp) / "cert.pem"
        cert_file.write_bytes(cert_pem)
        key_file = None
        if key_pem:
            key_file = Path(tmp) / "key.pem"
            key_file.write_bytes(key_pem)
        context.load_cert_chain(
            certfile=str(cert_file),
            keyfile=str(key_file) if key_file else None,
            password=passphrase,
        )

    logger.debug("Loaded TLS credentials for reload listener")
    return context
