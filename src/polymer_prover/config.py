"""Configuration management for the Polymer prover.

This module provides type-safe configuration dataclasses with validation
for the prover, its execution host and the control tool. Configuration is
loaded from environment variables with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1
MAX_CLIENT_TYPE_LEN = 32


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class TrustAnchorConfig:
    """Trust anchor written once by ``initialize``.

    Attributes:
        client_type: Client type used on peptide to generate proofs
        signer_address: Checksummed address of the peptide state root signer
        chain_id: Peptide chain ID included in the signed message
    """

    client_type: str
    signer_address: str
    chain_id: int

    def __post_init__(self) -> None:
        """Validate trust anchor configuration."""
        if not self.client_type:
            raise ValueError("Client type is required (CLIENT_TYPE)")
        if len(self.client_type) > MAX_CLIENT_TYPE_LEN:
            raise ValueError(
                f"Client type too long (max {MAX_CLIENT_TYPE_LEN}), got {len(self.client_type)}"
            )

        if not self.signer_address:
            raise ValueError("Signer address is required (SIGNER_ADDRESS)")

        address = self.signer_address
        if not address.startswith("0x"):
            address = "0x" + address
        if not Web3.is_address(address):
            raise ValueError(f"Invalid signer address: {self.signer_address}")

        # Convert to checksum address
        checksummed = Web3.to_checksum_address(address)
        if checksummed != self.signer_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, "signer_address", checksummed)

        if not 0 <= self.chain_id <= U64_MAX:
            raise ValueError(f"Chain ID must fit in 64 bits, got {self.chain_id}")

    @property
    def signer_bytes(self) -> bytes:
        return Web3.to_bytes(hexstr=self.signer_address)

    @classmethod
    def from_env(cls) -> "TrustAnchorConfig":
        """Load the trust anchor from CLIENT_TYPE, SIGNER_ADDRESS and PEPTIDE_CHAIN_ID.

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        chain_id = os.environ.get("PEPTIDE_CHAIN_ID", "")
        if not chain_id:
            raise ValueError(
                "PEPTIDE_CHAIN_ID environment variable is required. "
                "This is the peptide chain ID the signer signs state roots for."
            )
        return cls(
            client_type=os.environ.get("CLIENT_TYPE", "proof_api"),
            signer_address=os.environ.get("SIGNER_ADDRESS", ""),
            chain_id=int(chain_id),
        )


@dataclass(frozen=True, slots=True)
class CacheConfig:
    """Per-deployment proof cache settings."""
    capacity: int = 3000  # bytes per caller
    deposit_per_byte: int = 1  # storage deposit charged per reserved byte
    # Create the cache/result pair on the first load_proof instead of requiring create_accounts
    auto_create_accounts: bool = False

    def __post_init__(self) -> None:
        """Validate cache configuration."""
        if self.capacity <= 0:
            raise ValueError(f"Proof cache capacity must be positive, got {self.capacity}")
        if self.capacity > 10 * 1024 * 1024:
            raise ValueError(f"Proof cache capacity too large (max 10 MiB), got {self.capacity}")
        if self.deposit_per_byte < 0:
            raise ValueError(f"Deposit per byte must be non-negative, got {self.deposit_per_byte}")


@dataclass(frozen=True, slots=True)
class HostConfig:
    """Execution host limits and storage location."""
    max_transaction_size: int = 1232  # bytes per serialized transaction
    max_processed_txs: int = 10_000  # in-memory cache of recent transaction ids
    db_path: str | None = None  # None keeps accounts in memory

    def __post_init__(self) -> None:
        """Validate host configuration."""
        if self.max_transaction_size <= 0:
            raise ValueError(
                f"Max transaction size must be positive, got {self.max_transaction_size}"
            )
        if self.max_processed_txs <= 0:
            raise ValueError(
                f"Max processed transactions must be positive, got {self.max_processed_txs}"
            )


@dataclass(frozen=True, slots=True)
class ProverConfig:
    """Main configuration for the Polymer prover.

    Attributes:
        program_id: Identifier the prover registers under; namespaces its storage
        chunk_size: Bytes per load_proof call used by clients
        cache: Proof cache settings
        host: Execution host settings
    """

    program_id: str = "polymer_prover"
    chunk_size: int = 800
    cache: CacheConfig = field(default_factory=CacheConfig)
    host: HostConfig = field(default_factory=HostConfig)

    def __post_init__(self) -> None:
        """Validate prover configuration."""
        if not self.program_id:
            raise ValueError("Program ID is required (PROGRAM_ID)")
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_size > self.cache.capacity:
            raise ValueError(
                f"Chunk size ({self.chunk_size}) cannot exceed proof cache capacity ({self.cache.capacity})"
            )

    @classmethod
    def from_env(cls) -> "ProverConfig":
        """Load configuration from environment variables.

        Returns:
            ProverConfig instance with loaded values

        Raises:
            ValueError: If environment variables are invalid
        """
        cache_config = CacheConfig(
            capacity=int(os.environ.get("PROOF_CACHE_CAPACITY", "3000")),
            deposit_per_byte=int(os.environ.get("DEPOSIT_PER_BYTE", "1")),
            auto_create_accounts=_env_bool("AUTO_CREATE_ACCOUNTS"),
        )

        host_config = HostConfig(
            max_transaction_size=int(os.environ.get("MAX_TRANSACTION_SIZE", "1232")),
            max_processed_txs=int(os.environ.get("MAX_PROCESSED_TXS", "10000")),
            db_path=os.environ.get("PROVER_DB_PATH") or None,
        )

        return cls(
            program_id=os.environ.get("PROGRAM_ID", "polymer_prover"),
            chunk_size=int(os.environ.get("CHUNK_SIZE", "800")),
            cache=cache_config,
            host=host_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Polymer Prover Configuration")
        logger.info("=" * 60)
        logger.info(f"Program ID: {self.program_id}")
        logger.info(f"Chunk Size: {self.chunk_size} bytes")

        logger.info("Proof Cache:")
        logger.info(f"  Capacity: {self.cache.capacity} bytes")
        logger.info(f"  Deposit Per Byte: {self.cache.deposit_per_byte}")
        logger.info(f"  Auto Create Accounts: {self.cache.auto_create_accounts}")

        logger.info("Execution Host:")
        logger.info(f"  Max Transaction Size: {self.host.max_transaction_size} bytes")
        logger.info(f"  Replay Cache: {self.host.max_processed_txs} transactions")
        logger.info(f"  Storage: {self.host.db_path or '[IN MEMORY]'}")
        logger.info("=" * 60)
