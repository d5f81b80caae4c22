"""Pytest configuration and shared fixtures for tremote tests."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("cli", "marks tests as CLI tests"),
        ("security", "marks tests as security tests"),
        ("observability", "marks tests as observability tests"),
        ("protocols", "marks tests as protocol tests"),
        ("connection", "marks tests as connection probe tests"),
        ("config", "marks tests as configuration tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_tremote_paths(monkeypatch, tmp_path):
    """Keep trust and credential files out of the user's home directory."""
    monkeypatch.setenv("TREMOTE_TRUST_STORE_PATH", str(tmp_path / "trust.json"))
    monkeypatch.setenv("TREMOTE_CREDENTIALS_PATH", str(tmp_path / "credentials.json"))
    monkeypatch.delenv("TREMOTE_LOG_FILE", raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


def _make_certificate(
    common_name: str = "nas.local",
    organization: str | None = "Home Lab",
) -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    name = x509.Name(attributes)
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.DER)


@pytest.fixture
def make_certificate():
    """Factory producing self-signed DER certificates."""
    return _make_certificate


@pytest.fixture
def certificate_der() -> bytes:
    """A self-signed certificate for ``nas.local``."""
    return _make_certificate()


@pytest.fixture
def secure_identity():
    from tremote.security.trust_models import ServerIdentity

    return ServerIdentity("nas.local", 9091, True)


@pytest.fixture
def audit_sink():
    from tremote.observability.audit import RecordingAuditSink

    return RecordingAuditSink()


@pytest.fixture
def audit(audit_sink):
    """Audit logger recording into ``audit_sink``."""
    from tremote.observability.audit import AuditLogger

    return AuditLogger(sink=audit_sink)
