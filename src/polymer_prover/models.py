"""
Data models for the Polymer prover.

This module contains the persisted records (trust anchor config, proof cache,
validation result) and the typed values passed between the validator, its
verifier and event subscribers.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from .errors import CacheCapacityExceeded

ZERO_ADDRESS: bytes = b"\x00" * 20


def address_to_hex(address: bytes) -> str:
    """Render a 20-byte address as lowercase 0x-prefixed hex."""
    return "0x" + bytes(address).hex()


@dataclass(frozen=True, slots=True)
class TrustAnchor:
    """The singleton config record proofs are checked against.

    Attributes:
        client_type: Client type used on peptide to generate the proof
        signer_address: Known 20-byte signer of the peptide state root
        chain_id: Peptide chain ID included in the signed message
        authority: Address that initialized the record
    """
    client_type: str
    signer_address: bytes
    chain_id: int
    authority: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_type": self.client_type,
            "signer_address": self.signer_address,
            "chain_id": self.chain_id,
            "authority": self.authority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrustAnchor":
        return cls(
            client_type=data["client_type"],
            signer_address=bytes(data["signer_address"]),
            chain_id=data["chain_id"],
            authority=data["authority"],
        )


@dataclass(frozen=True, slots=True)
class ProofCache:
    """A caller's bounded, append-only proof buffer.

    Records are immutable; every mutation returns a new instance so a
    rejected operation can never leave a half-written buffer behind.
    """
    capacity: int
    buffer: bytes = b""
    deposit: int = 0

    def __len__(self) -> int:
        return len(self.buffer)

    @property
    def remaining(self) -> int:
        return self.capacity - len(self.buffer)

    def appended(self, chunk: bytes) -> "ProofCache":
        """Return a copy with ``chunk`` appended, enforcing the capacity."""
        requested = len(self.buffer) + len(chunk)
        if requested > self.capacity:
            raise CacheCapacityExceeded(
                f"proof cache capacity exceeded: {len(self.buffer)} cached + "
                f"{len(chunk)} new bytes > {self.capacity}",
                capacity=self.capacity,
                requested=requested,
            )
        return replace(self, buffer=self.buffer + bytes(chunk))

    def cleared(self) -> "ProofCache":
        return replace(self, buffer=b"")

    def resized(self, capacity: int, deposit: int) -> "ProofCache":
        if capacity < len(self.buffer):
            raise CacheCapacityExceeded(
                f"cannot shrink proof cache to {capacity} bytes while it holds {len(self.buffer)}",
                capacity=capacity,
                requested=len(self.buffer),
            )
        return replace(self, capacity=capacity, deposit=deposit)

    def to_dict(self) -> dict[str, Any]:
        return {"capacity": self.capacity, "buffer": self.buffer, "deposit": self.deposit}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProofCache":
        return cls(
            capacity=data["capacity"],
            buffer=bytes(data["buffer"]),
            deposit=data["deposit"],
        )


@dataclass(frozen=True, slots=True)
class DecodedEvent:
    """Event fields decoded from a verified proof.

    Attributes:
        chain_id: Chain the event was emitted on
        emitting_contract: 20-byte address of the emitting contract
        topics: Indexed topics, 32 bytes each
        unindexed_data: Raw unindexed event data
    """
    chain_id: int
    emitting_contract: bytes
    topics: tuple[bytes, ...]
    unindexed_data: bytes

    def __str__(self) -> str:
        return (
            f"DecodedEvent(chain={self.chain_id}, "
            f"contract={address_to_hex(self.emitting_contract)}, "
            f"topics={len(self.topics)}, data={len(self.unindexed_data)} bytes)"
        )


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of the most recent validation for one caller.

    Always built through ``valid``/``invalid``/``empty`` so that every field is
    written on each run; an invalid result never carries decoded fields.
    """
    is_valid: bool
    error_message: str
    chain_id: int
    emitting_contract: bytes
    topics: tuple[bytes, ...]
    unindexed_data: bytes

    @classmethod
    def valid(cls, event: DecodedEvent) -> "ValidationResult":
        return cls(
            is_valid=True,
            error_message="",
            chain_id=event.chain_id,
            emitting_contract=bytes(event.emitting_contract),
            topics=tuple(bytes(t) for t in event.topics),
            unindexed_data=bytes(event.unindexed_data),
        )

    @classmethod
    def invalid(cls, message: str) -> "ValidationResult":
        return cls(
            is_valid=False,
            error_message=message,
            chain_id=0,
            emitting_contract=ZERO_ADDRESS,
            topics=(),
            unindexed_data=b"",
        )

    @classmethod
    def empty(cls) -> "ValidationResult":
        """Result record state before any validation ran."""
        return cls.invalid("")

    def __str__(self) -> str:
        if self.is_valid:
            return "proof is valid"
        return self.error_message or "no validation has run"

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "error_message": self.error_message,
            "chain_id": self.chain_id,
            "emitting_contract": self.emitting_contract,
            "topics": list(self.topics),
            "unindexed_data": self.unindexed_data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidationResult":
        return cls(
            is_valid=data["is_valid"],
            error_message=data["error_message"],
            chain_id=data["chain_id"],
            emitting_contract=bytes(data["emitting_contract"]),
            topics=tuple(bytes(t) for t in data["topics"]),
            unindexed_data=bytes(data["unindexed_data"]),
        )


@dataclass(frozen=True, slots=True)
class ValidateEventEvent:
    """Emitted after a successful validation; mirrors the result record."""
    owner: str
    chain_id: int
    emitting_contract: bytes
    topics: tuple[bytes, ...] = field(default_factory=tuple)
    unindexed_data: bytes = b""

    @classmethod
    def from_result(cls, owner: str, result: ValidationResult) -> "ValidateEventEvent":
        return cls(
            owner=owner,
            chain_id=result.chain_id,
            emitting_contract=result.emitting_contract,
            topics=result.topics,
            unindexed_data=result.unindexed_data,
        )
