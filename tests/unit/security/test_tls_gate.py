"""Tests for SSL context building and the per-transport TLS gate."""

from __future__ import annotations

import ssl

import aiohttp
import pytest

from tremote.models import TrustConfig
from tremote.security.ssl_context import SSLContextBuilder, TLSGate
from tremote.security.trust_evaluator import TrustBasis, TrustEvaluator
from tremote.security.trust_models import CertificateInfo, ServerIdentity, TrustDecision
from tremote.security.trust_store import InMemoryTrustStore
from tremote.utils.exceptions import TrustRejectedError

pytestmark = [pytest.mark.unit, pytest.mark.security]


class FakeInspector:
    def __init__(self, der: bytes):
        self.der = der
        self.calls = 0

    async def inspect(self, identity: ServerIdentity) -> bytes:
        self.calls += 1
        return self.der


async def _system_accepts(identity, der) -> bool:
    return True


async def _system_rejects(identity, der) -> bool:
    return False


async def _accept(challenge) -> TrustDecision:
    return TrustDecision.ACCEPTED


class TestSSLContextBuilder:
    def test_verifying_context(self):
        context = SSLContextBuilder().create_verifying_context()

        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_inspection_context_accepts_anything(self):
        context = SSLContextBuilder(TrustConfig(ssl_protocol_version="TLSv1.3")).create_inspection_context()

        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False
        assert context.minimum_version == ssl.TLSVersion.TLSv1_3

    def test_invalid_protocol_version(self):
        builder = SSLContextBuilder(TrustConfig(ssl_protocol_version="SSLv3"))
        with pytest.raises(ValueError):
            builder.create_verifying_context()

    def test_missing_ca_path(self, tmp_path):
        builder = SSLContextBuilder(TrustConfig(ssl_ca_certificates=str(tmp_path / "none.pem")))
        with pytest.raises(ValueError):
            builder.create_verifying_context()


class TestTLSGate:
    @pytest.mark.asyncio
    async def test_plain_http_needs_no_evaluation(self, audit):
        identity = ServerIdentity("nas.local", 9091, False)
        inspector = FakeInspector(b"unused")
        gate = TLSGate(identity, TrustEvaluator(InMemoryTrustStore(), audit=audit), inspector)

        assert await gate.ssl_for_request() is True
        assert inspector.calls == 0

    @pytest.mark.asyncio
    async def test_user_accepted_certificate_is_pinned_and_cached(
        self, audit, secure_identity, certificate_der
    ):
        store = InMemoryTrustStore()
        inspector = FakeInspector(certificate_der)
        gate = TLSGate(
            secure_identity,
            TrustEvaluator(store, _system_rejects, audit=audit),
            inspector,
            decision_handler=_accept,
        )

        first = await gate.ssl_for_request()
        second = await gate.ssl_for_request()

        assert isinstance(first, aiohttp.Fingerprint)
        assert first is second
        assert inspector.calls == 1
        assert gate.result.basis is TrustBasis.USER
        assert store.lookup(secure_identity).matches(
            CertificateInfo.from_der(certificate_der).fingerprint
        )

    @pytest.mark.asyncio
    async def test_invalidate_forces_reevaluation(self, audit, secure_identity, certificate_der):
        store = InMemoryTrustStore()
        store.store(secure_identity, CertificateInfo.from_der(certificate_der))
        inspector = FakeInspector(certificate_der)
        gate = TLSGate(secure_identity, TrustEvaluator(store, audit=audit), inspector)

        await gate.ssl_for_request()
        gate.invalidate()
        assert gate.result is None
        await gate.ssl_for_request()

        assert inspector.calls == 2
        assert gate.result.basis is TrustBasis.STORED

    @pytest.mark.asyncio
    async def test_system_trust_uses_verifying_context(self, audit, secure_identity, certificate_der):
        gate = TLSGate(
            secure_identity,
            TrustEvaluator(InMemoryTrustStore(), _system_accepts, audit=audit),
            FakeInspector(certificate_der),
        )

        ssl_arg = await gate.ssl_for_request()

        assert isinstance(ssl_arg, ssl.SSLContext)
        assert ssl_arg.verify_mode == ssl.CERT_REQUIRED

    @pytest.mark.asyncio
    async def test_pinned_server_ignores_system_trust(self, audit, secure_identity, certificate_der):
        gate = TLSGate(
            secure_identity,
            TrustEvaluator(InMemoryTrustStore(), _system_accepts, audit=audit),
            FakeInspector(certificate_der),
            pin_certificate=True,
        )

        with pytest.raises(TrustRejectedError):
            await gate.ssl_for_request()
        assert gate.result is None
