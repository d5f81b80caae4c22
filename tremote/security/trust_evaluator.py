"""Decides whether a server certificate may be used.

Evaluation order:

1. the (identity, fingerprint) pair is already stored: accept;
2. CA validation applies and the system validator accepts the chain:
   accept without storing anything;
3. otherwise raise a :class:`TrustChallenge` and wait for a decision.
   Accepted certificates are stored. Rejected ones leave the store untouched.

Without a decision handler every challenge is rejected.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from tremote.observability.audit import AuditLogger
from tremote.security.trust_models import (
    CertificateInfo,
    ChallengeReason,
    ServerIdentity,
    TrustChallenge,
    TrustDecision,
    TrustDecisionHandler,
)
from tremote.security.trust_store import TrustStore
from tremote.utils.exceptions import (
    TrustEvaluationError,
    TrustRejectedError,
    TrustStoreError,
)
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)

SystemValidator = Callable[[ServerIdentity, bytes], Awaitable[bool]]


class TrustBasis(str, Enum):
    """How a certificate came to be trusted."""

    STORED = "stored"
    SYSTEM = "system"
    USER = "user"


@dataclass(frozen=True)
class TrustResult:
    """Outcome of a successful evaluation."""

    certificate: CertificateInfo
    basis: TrustBasis

    @property
    def is_pinned(self) -> bool:
        """True when the connection must present exactly this certificate."""
        return self.basis is not TrustBasis.SYSTEM


class TrustEvaluator:
    """Gate TLS handshakes against stored fingerprints and the system CAs."""

    def __init__(
        self,
        store: TrustStore,
        system_validator: SystemValidator | None = None,
        decision_handler: TrustDecisionHandler | None = None,
        audit: AuditLogger | None = None,
    ):
        """Initialize trust evaluator.

        Args:
            store: Where accepted fingerprints live
            system_validator: Async callable checking the chain against system CAs
            decision_handler: Default handler for challenges (none means reject)
            audit: Audit log receiving trust events

        """
        self.store = store
        self.system_validator = system_validator
        self.decision_handler = decision_handler
        self.audit = audit or AuditLogger()

    async def evaluate(
        self,
        identity: ServerIdentity,
        certificate_der: bytes,
        *,
        pin_certificate: bool = False,
        decision_handler: TrustDecisionHandler | None = None,
    ) -> TrustResult:
        """Evaluate the leaf certificate presented by ``identity``.

        Raises:
            TrustRejectedError: The certificate was declined
            TrustEvaluationError: The store could not be read or written

        """
        if not certificate_der:
            msg = f"No certificate presented by {identity}"
            raise TrustEvaluationError(msg)

        certificate = CertificateInfo.from_der(certificate_der)

        try:
            entry = await self.store.get(identity)
        except TrustStoreError as e:
            raise TrustEvaluationError(e.message) from e

        if entry is not None and entry.matches(certificate.fingerprint):
            logger.debug("Certificate for %s matches stored fingerprint", identity)
            return TrustResult(certificate, TrustBasis.STORED)

        if not pin_certificate and self.system_validator is not None:
            if await self.system_validator(identity, certificate_der):
                logger.debug("Certificate for %s accepted by system CAs", identity)
                self.audit.trust_accepted(identity, certificate.fingerprint_hex, persisted=False)
                return TrustResult(certificate, TrustBasis.SYSTEM)

        if entry is not None:
            logger.warning(
                "Certificate for %s changed: stored %s, presented %s",
                identity,
                entry.fingerprint[:16],
                certificate.fingerprint_hex[:16],
            )
            self.audit.trust_mismatch(identity, entry.fingerprint, certificate.fingerprint_hex)
            challenge = TrustChallenge(
                identity,
                certificate,
                ChallengeReason.FINGERPRINT_MISMATCH,
                previous_fingerprint=entry.fingerprint,
            )
        else:
            challenge = TrustChallenge(identity, certificate)

        handler = decision_handler or self.decision_handler
        if handler is None:
            self.audit.trust_auto_rejected(
                identity, certificate.fingerprint_hex, "no interactive handler"
            )
            raise TrustRejectedError(challenge)

        try:
            decision = await handler(challenge)
        except asyncio.CancelledError:
            self.audit.trust_auto_rejected(identity, certificate.fingerprint_hex, "cancelled")
            raise

        if decision is not TrustDecision.ACCEPTED:
            self.audit.trust_rejected(identity, certificate.fingerprint_hex)
            raise TrustRejectedError(challenge)

        try:
            await self.store.accept(identity, certificate)
        except TrustStoreError as e:
            raise TrustEvaluationError(e.message) from e

        self.audit.trust_accepted(identity, certificate.fingerprint_hex, persisted=True)
        return TrustResult(certificate, TrustBasis.USER)
