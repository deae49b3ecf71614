"""
Signed calls submitted to the execution host.

A caller's identity is the address recovered from its signature over the
instruction, so storage owned by one address can only be touched by calls
that address signed.
"""

import secrets
from dataclasses import dataclass, field
from typing import Any

import cbor2
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3


@dataclass(frozen=True, slots=True)
class Instruction:
    """One operation addressed to a program.

    Attributes:
        program_id: Program the instruction is routed to
        name: Operation name (e.g. "load_proof")
        owner: Checksummed address whose storage the call targets
        args: CBOR-serializable positional arguments
        accounts: Storage keys supplied explicitly by the caller
        nonce: Makes otherwise identical calls distinct
    """
    program_id: str
    name: str
    owner: str
    args: tuple[Any, ...] = ()
    accounts: tuple[bytes, ...] = ()
    nonce: int = field(default_factory=lambda: secrets.randbits(64))

    def encode(self) -> bytes:
        return cbor2.dumps([
            self.program_id,
            self.name,
            self.owner,
            list(self.args),
            list(self.accounts),
            self.nonce,
        ])

    def message_hash(self) -> bytes:
        return bytes(Web3.keccak(self.encode()))


@dataclass(frozen=True, slots=True)
class Transaction:
    """An instruction plus the signatures authorizing it."""
    instruction: Instruction
    signatures: tuple[bytes, ...]

    @classmethod
    def sign(cls, instruction: Instruction, *signers: LocalAccount) -> "Transaction":
        message = encode_defunct(primitive=instruction.message_hash())
        signatures = tuple(bytes(s.sign_message(message).signature) for s in signers)
        return cls(instruction=instruction, signatures=signatures)

    def recover_signers(self) -> frozenset[str]:
        """
        Recover the checksummed address behind every signature.

        Raises:
            ValueError: If a signature cannot be recovered
        """
        message = encode_defunct(primitive=self.instruction.message_hash())
        return frozenset(
            Account.recover_message(message, signature=signature)
            for signature in self.signatures
        )

    @property
    def tx_id(self) -> str:
        """Identifier of the transaction, derived from the signed instruction."""
        return Web3.to_hex(self.instruction.message_hash())

    def serialize(self) -> bytes:
        return cbor2.dumps([self.instruction.encode(), list(self.signatures)])

    @property
    def size(self) -> int:
        return len(self.serialize())
