"""Tests for server identities and certificate facts."""

from __future__ import annotations

import hashlib

import pytest

from tremote.security.trust_models import (
    CertificateInfo,
    ServerIdentity,
    fingerprint_of,
    format_fingerprint,
)

pytestmark = [pytest.mark.unit, pytest.mark.security]


class TestServerIdentity:
    def test_host_comparison_is_case_insensitive(self):
        a = ServerIdentity("NAS.local", 9091, True)
        b = ServerIdentity("nas.LOCAL", 9091, True)

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_port_and_scheme_distinguish(self):
        base = ServerIdentity("nas.local", 9091, True)
        assert base != ServerIdentity("nas.local", 9092, True)
        assert base != ServerIdentity("nas.local", 9091, False)

    @pytest.mark.parametrize(("host", "port"), [("", 9091), ("nas", 0), ("nas", 65536)])
    def test_invalid_values_rejected(self, host, port):
        with pytest.raises(ValueError):
            ServerIdentity(host, port, False)

    def test_storage_key_and_endpoint(self):
        identity = ServerIdentity("NAS.local", 443, True)
        assert identity.storage_key == "nas.local:443:true"
        assert identity.endpoint == "https://NAS.local:443"
        assert str(identity) == identity.endpoint

    @pytest.mark.parametrize(
        ("host", "endpoint"),
        [
            ("::1", "http://[::1]:9091"),
            ("fd00::10", "http://[fd00::10]:9091"),
            ("192.168.1.5", "http://192.168.1.5:9091"),
            ("nas.local", "http://nas.local:9091"),
        ],
    )
    def test_endpoint_brackets_ipv6_literals(self, host, endpoint):
        identity = ServerIdentity(host, 9091, False)

        assert identity.endpoint == endpoint
        assert identity.host == host
        assert identity.storage_key == f"{host}:9091:false"

    def test_from_storage_key_roundtrip_with_ipv6_host(self):
        identity = ServerIdentity("::1", 9091, False)
        assert ServerIdentity.from_storage_key(identity.storage_key) == identity

    def test_from_storage_key_rejects_bad_flag(self):
        with pytest.raises(ValueError):
            ServerIdentity.from_storage_key("nas.local:9091:maybe")


def test_fingerprint_of_is_sha256():
    assert fingerprint_of(b"der") == hashlib.sha256(b"der").digest()


def test_format_fingerprint():
    assert format_fingerprint("ab12cd") == "AB:12:CD"


class TestCertificateInfo:
    def test_from_der_reads_subject(self, certificate_der):
        info = CertificateInfo.from_der(certificate_der)

        assert info.fingerprint == hashlib.sha256(certificate_der).digest()
        assert info.fingerprint_hex == hashlib.sha256(certificate_der).hexdigest()
        assert info.common_name == "nas.local"
        assert info.organization == "Home Lab"
        assert info.not_valid_before < info.not_valid_after

    def test_from_der_unparseable_keeps_fingerprint(self):
        info = CertificateInfo.from_der(b"not a certificate")

        assert info.fingerprint == hashlib.sha256(b"not a certificate").digest()
        assert info.common_name is None
        assert info.not_valid_after is None
