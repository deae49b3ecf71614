"""
Error types for the Polymer prover.

Every abort-class failure derives from ProverError and carries a
machine-readable ``code``. A failed operation leaves storage untouched.

ProofVerificationError is different: verifiers raise it, but the Validator
always catches it and records the message in the caller's result record.
"""


class ProverError(Exception):
    """Base class for operations rejected by the prover or its host."""

    code: str = "ProverError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def __str__(self) -> str:
        return self.message


class AlreadyInitialized(ProverError):
    """The trust anchor config record already exists."""

    code = "AlreadyInitialized"


class NotInitialized(ProverError):
    """The trust anchor config record has not been written yet."""

    code = "NotInitialized"


class AlreadyExists(ProverError):
    code = "AlreadyExists"


class DoesNotExist(ProverError):
    code = "DoesNotExist"


class CacheCapacityExceeded(ProverError):
    """Appending (or shrinking) would break ``len(buffer) <= capacity``."""

    code = "CacheCapacityExceeded"

    def __init__(self, message: str = "", *, capacity: int = 0, requested: int = 0) -> None:
        super().__init__(message)
        self.capacity = capacity
        self.requested = requested


class UnauthorizedCaller(ProverError):
    code = "UnauthorizedCaller"


class DuplicateTransaction(ProverError):
    code = "DuplicateTransaction"


class PayloadTooLarge(ProverError):
    code = "PayloadTooLarge"


class InvalidInstruction(ProverError):
    code = "InvalidInstruction"


class InvalidArgument(ProverError):
    code = "InvalidArgument"


class InvalidAccountData(ProverError):
    code = "InvalidAccountData"


class ProofVerificationError(Exception):
    """Raised by a verifier when it rejects a proof; the message is kept verbatim."""

    code: str = "ProofVerificationFailure"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message
