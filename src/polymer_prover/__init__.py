"""Polymer prover: chunked proof caching and event proof validation."""

from .client import ProverClient
from .config import CacheConfig, HostConfig, ProverConfig, TrustAnchorConfig
from .errors import ProofVerificationError, ProverError
from .events import EventBus
from .forwarder import ForwardingProgram, ProofCacheClient
from .host import CallContext, ExecutionHost
from .models import DecodedEvent, ProofCache, TrustAnchor, ValidateEventEvent, ValidationResult
from .program import ProofProgram
from .verifier import PolymerProofVerifier, ProofVerifier

__version__ = "0.1.0"

__all__ = [
    "CacheConfig",
    "CallContext",
    "DecodedEvent",
    "EventBus",
    "ExecutionHost",
    "ForwardingProgram",
    "HostConfig",
    "PolymerProofVerifier",
    "ProofCache",
    "ProofCacheClient",
    "ProofProgram",
    "ProofVerificationError",
    "ProofVerifier",
    "ProverClient",
    "ProverConfig",
    "ProverError",
    "TrustAnchor",
    "TrustAnchorConfig",
    "ValidateEventEvent",
    "ValidationResult",
]
