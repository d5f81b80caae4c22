"""Certificate trust, TLS gating and credential lookup."""

from tremote.security.credentials import (
    CredentialStore,
    EncryptedFileCredentialStore,
    InMemoryCredentialStore,
    ServerCredentials,
    ServerCredentialsKey,
)
from tremote.security.ssl_context import (
    PeerCertificateInspector,
    SSLContextBuilder,
    SystemCertificateValidator,
    TLSGate,
)
from tremote.security.trust_evaluator import TrustBasis, TrustEvaluator, TrustResult
from tremote.security.trust_models import (
    CertificateInfo,
    ChallengeReason,
    ServerIdentity,
    TrustChallenge,
    TrustDecision,
)
from tremote.security.trust_prompt import TrustPrompt, TrustPromptCoordinator
from tremote.security.trust_store import (
    FileTrustStore,
    InMemoryTrustStore,
    TrustEntry,
    TrustStore,
)

__all__ = [
    "CertificateInfo",
    "ChallengeReason",
    "CredentialStore",
    "EncryptedFileCredentialStore",
    "FileTrustStore",
    "InMemoryCredentialStore",
    "InMemoryTrustStore",
    "PeerCertificateInspector",
    "SSLContextBuilder",
    "ServerCredentials",
    "ServerCredentialsKey",
    "ServerIdentity",
    "SystemCertificateValidator",
    "TLSGate",
    "TrustBasis",
    "TrustChallenge",
    "TrustDecision",
    "TrustEntry",
    "TrustEvaluator",
    "TrustPrompt",
    "TrustPromptCoordinator",
    "TrustResult",
    "TrustStore",
]
