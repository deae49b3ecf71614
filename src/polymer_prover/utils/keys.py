"""
Deterministic storage keys.

Every record lives under ``derive_key(namespace, identity)``. For a fixed
namespace the mapping is injective: the namespace is length-prefixed and the
identity is always the 20-byte canonical address (or empty for singletons).
"""

from web3 import Web3

CONFIG_SEED = "internal"
CACHE_SEED = "cache"
RESULT_SEED = "result"
TX_SEED = "tx"


def namespace(program_id: str, seed: str) -> bytes:
    """Namespace for one kind of record owned by ``program_id``."""
    return f"{program_id}:{seed}".encode()


def canonical_identity(identity: str | bytes) -> bytes:
    """Normalize an address (hex string or raw bytes) to its 20 bytes."""
    if isinstance(identity, (bytes, bytearray)):
        raw = bytes(identity)
        if len(raw) != 20:
            raise ValueError(f"identity must be 20 bytes, got {len(raw)}")
        return raw
    if not Web3.is_address(identity):
        raise ValueError(f"Invalid identity address: {identity}")
    return Web3.to_bytes(hexstr=identity)


def derive_key(ns: bytes, identity: str | bytes | None = None) -> bytes:
    """Derive the storage key of ``identity``'s record in namespace ``ns``."""
    if len(ns) > 255:
        raise ValueError(f"namespace too long ({len(ns)} > 255)")
    owner = b"" if identity is None else canonical_identity(identity)
    return bytes([len(ns)]) + ns + owner


def config_key(program_id: str) -> bytes:
    return derive_key(namespace(program_id, CONFIG_SEED))


def cache_key(program_id: str, owner: str | bytes) -> bytes:
    return derive_key(namespace(program_id, CACHE_SEED), owner)


def result_key(program_id: str, owner: str | bytes) -> bytes:
    return derive_key(namespace(program_id, RESULT_SEED), owner)


def processed_tx_key(program_id: str, tx_id: str) -> bytes:
    """Marker recording that transaction ``tx_id`` was committed to ``program_id``."""
    return derive_key(namespace(program_id, TX_SEED)) + Web3.to_bytes(hexstr=tx_id)


def account_address(key: bytes) -> str:
    """Short, address-like label for a storage key (logs and CLI output)."""
    return Web3.to_hex(Web3.keccak(key)[12:])
