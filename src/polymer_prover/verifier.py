"""
Polymer event proof verification.

A proof asserts that an event was stored under a peptide state root (app
hash) signed by a known signer. Verification recovers the signer, walks the
membership proof from the event up to the app hash and decodes the event.

Proof layout (offsets in bytes)::

    [0:32]          app hash
    [32:96]         signature r || s
    [96]            recovery byte (27 or 28)
    [97:101]        source chain id (u32, big endian)
    [101:109]       peptide height
    [109:117]       source block height (u64, big endian)
    [117:119]       transaction index (u16, big endian)
    [119]           log index
    [120]           number of topics
    [121:123]       event end offset (u16, big endian)
    [123:event_end] raw event: contract(20) || topics(32 * n) || data
    [event_end:]    membership proof
"""

import hashlib
import logging
from typing import Protocol

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from .errors import ProofVerificationError
from .models import DecodedEvent, TrustAnchor, address_to_hex

logger = logging.getLogger(__name__)

HEADER_SIZE = 123
ADDRESS_SIZE = 20
TOPIC_SIZE = 32


class ProofVerifier(Protocol):
    def verify(self, proof: bytes, anchor: TrustAnchor) -> DecodedEvent:
        """Return the decoded event, or raise ProofVerificationError."""
        ...


def _sha256(*parts: bytes) -> bytes:
    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(part)
    return hasher.digest()


def _keccak(*parts: bytes) -> bytes:
    return bytes(Web3.keccak(b"".join(parts)))


def signing_hash(app_hash: bytes, peptide_height: bytes, peptide_chain_id: int) -> bytes:
    """Digest the peptide signer signs for a given app hash and height."""
    message_hash = _keccak(app_hash, peptide_height)
    return _keccak(b"\x00" * 32, peptide_chain_id.to_bytes(32, "big"), message_hash)


def storage_key(chain_id: int, client_type: str, height: int, tx_index: int, log_index: int) -> bytes:
    """Key the event is stored under in the peptide state tree."""
    return f"chain/{chain_id}/storedLogs/{client_type}/{height}/{tx_index}/{log_index}".encode()


def parse_event(raw_event: bytes, num_topics: int) -> tuple[bytes, tuple[bytes, ...], bytes]:
    """Split a raw event into (emitting contract, topics, unindexed data)."""
    topics_end = ADDRESS_SIZE + TOPIC_SIZE * num_topics
    if len(raw_event) < topics_end:
        raise ProofVerificationError(
            f"invalid event: got {len(raw_event)} bytes, at least {topics_end} are needed"
        )
    topics = tuple(
        raw_event[start:start + TOPIC_SIZE]
        for start in range(ADDRESS_SIZE, topics_end, TOPIC_SIZE)
    )
    return raw_event[:ADDRESS_SIZE], topics, raw_event[topics_end:]


class PolymerProofVerifier:
    """Verifies Polymer event proofs against a trust anchor."""

    def verify(self, proof: bytes, anchor: TrustAnchor) -> DecodedEvent:
        """
        Verify ``proof`` and decode the event it carries.

        Args:
            proof: Fully assembled proof bytes
            anchor: Configured client type, signer address and peptide chain id

        Returns:
            The decoded event

        Raises:
            ProofVerificationError: With a human-readable reason on any failure
        """
        proof = bytes(proof)
        # first, check there's enough data to read the event end offset
        if len(proof) < HEADER_SIZE:
            raise ProofVerificationError(
                f"invalid proof: got {len(proof)} bytes, at least {HEADER_SIZE} are needed"
            )

        event_end = int.from_bytes(proof[121:123], "big")
        if len(proof) < event_end:
            raise ProofVerificationError(
                f"invalid proof: got {len(proof)} bytes, at least {event_end} are needed"
            )

        app_hash = proof[0:32]
        recovered = self.recover_signer(
            anchor.chain_id,
            app_hash,
            peptide_height=proof[101:109],
            signature=proof[32:96],
            recovery_byte=proof[96],
        )
        if recovered != bytes(anchor.signer_address):
            raise ProofVerificationError(
                f"recovered invalid signer address: {address_to_hex(recovered)}"
            )

        chain_id = int.from_bytes(proof[97:101], "big")
        key = storage_key(
            chain_id,
            anchor.client_type,
            height=int.from_bytes(proof[109:117], "big"),
            tx_index=int.from_bytes(proof[117:119], "big"),
            log_index=proof[119],
        )

        raw_event = proof[HEADER_SIZE:event_end]
        self.verify_membership(app_hash, key, _keccak(raw_event), proof[event_end:])

        emitting_contract, topics, data = parse_event(raw_event, proof[120])
        event = DecodedEvent(
            chain_id=chain_id,
            emitting_contract=emitting_contract,
            topics=topics,
            unindexed_data=data,
        )
        logger.debug(f"Verified {event}")
        return event

    @staticmethod
    def recover_signer(
        peptide_chain_id: int,
        app_hash: bytes,
        peptide_height: bytes,
        signature: bytes,
        recovery_byte: int,
    ) -> bytes:
        """Recover the 20-byte address that signed ``app_hash`` at ``peptide_height``."""
        if recovery_byte < 27:
            raise ProofVerificationError(f"invalid signature: invalid recovery byte {recovery_byte}")

        digest = signing_hash(app_hash, peptide_height, peptide_chain_id)
        try:
            sig = keys.Signature(signature + bytes([recovery_byte - 27]))
            public_key = sig.recover_public_key_from_msg_hash(digest)
        except (BadSignature, ValidationError) as e:
            raise ProofVerificationError(f"invalid signature: {e}") from e
        # last 20 bytes of keccak(pubkey)
        return public_key.to_canonical_address()

    @staticmethod
    def verify_membership(app_hash: bytes, key: bytes, value: bytes, proof: bytes) -> None:
        """
        Check that ``value`` is stored under ``key`` in the tree rooted at ``app_hash``.

        Membership proof layout: number of paths (1 byte), offset of the first
        path (1 byte), leaf prefix, then each path as
        ``suffix_start(1) || suffix_end(1) || prefix || suffix`` where both
        offsets are relative to the start of the path.
        """
        if len(proof) < 2:
            raise ProofVerificationError("invalid membership proof: can't read start of first path")

        number_of_paths = proof[0]
        path_zero_start = proof[1]

        # +1 covers the first suffix_end read in the loop
        if len(proof) < path_zero_start + 1:
            raise ProofVerificationError("invalid membership proof: can't read first path")

        pre_hash = _sha256(proof[2:path_zero_start], key, b"\x20", _sha256(value))

        offset = path_zero_start
        for _ in range(number_of_paths):
            if len(proof) < offset + 2:
                raise ProofVerificationError("invalid membership proof: can't read path")
            suffix_start = proof[offset]
            suffix_end = proof[offset + 1]
            if len(proof) < offset + suffix_end:
                raise ProofVerificationError("invalid membership proof: can't read path")

            pre_hash = _sha256(
                proof[offset + 2:offset + suffix_start],
                pre_hash,
                proof[offset + suffix_start:offset + suffix_end],
            )
            offset += suffix_end

        if pre_hash != bytes(app_hash):
            raise ProofVerificationError(f"invalid state root: 0x{pre_hash.hex()}")
