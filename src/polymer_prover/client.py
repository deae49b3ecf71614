"""
Async client for the Polymer prover.

This module signs prover operations with a caller's key, submits them to an
execution host and reads back the caller's records.
"""

import asyncio
import logging
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .host import ExecutionHost
from .models import ProofCache, TrustAnchor, ValidationResult
from .transaction import Instruction, Transaction
from .utils.encoding import decode_record
from .utils.keys import cache_key, config_key, result_key

logger = logging.getLogger(__name__)


class ProverClient:
    """Handles signing, submission and chunked proof upload for one caller."""

    def __init__(
        self,
        host: ExecutionHost,
        account: LocalAccount,
        program_id: str = "polymer_prover",
        chunk_size: int = 800,
    ):
        """
        Initialize the ProverClient.

        Args:
            host: Execution host the prover is registered with
            account: Caller credentials used to sign every operation
            program_id: Program the operations are addressed to
            chunk_size: Bytes per load_proof call in submit_proof
        """
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        self.host = host
        self.account = account
        self.program_id = program_id
        self.chunk_size = chunk_size

    @classmethod
    def from_private_key(cls, host: ExecutionHost, private_key: str, **kwargs: Any) -> "ProverClient":
        return cls(host, Account.from_key(private_key), **kwargs)

    @property
    def address(self) -> str:
        return self.account.address

    async def send(self, name: str, *args: Any, accounts: tuple[bytes, ...] = (), program_id: str | None = None) -> Any:
        """
        Sign one instruction and submit it to the host.

        Args:
            name: Instruction name
            args: Instruction arguments
            accounts: Storage keys to pass explicitly
            program_id: Target program (defaults to the prover)

        Returns:
            The program's return value

        Raises:
            ProverError: If the host or program rejects the call
        """
        instruction = Instruction(
            program_id=program_id or self.program_id,
            name=name,
            owner=self.address,
            args=tuple(args),
            accounts=tuple(accounts),
        )
        tx = Transaction.sign(instruction, self.account)
        logger.debug(f"Submitting {name} ({tx.size} bytes) for {self.address}")
        # The host call is synchronous and may block on the store lock
        return await asyncio.to_thread(self.host.send_transaction, tx)

    async def initialize(self, client_type: str, signer_address: str | bytes, chain_id: int) -> TrustAnchor:
        if isinstance(signer_address, str):
            signer_address = Web3.to_bytes(hexstr=signer_address)
        return await self.send("initialize", client_type, bytes(signer_address), chain_id)

    async def create_accounts(self) -> int:
        return await self.send("create_accounts")

    async def close_accounts(self) -> int:
        return await self.send("close_accounts")

    async def resize_proof_cache(self) -> int:
        return await self.send("resize_proof_cache")

    async def clear_proof_cache(self) -> None:
        await self.send("clear_proof_cache")

    async def load_proof(self, chunk: bytes) -> int:
        return await self.send("load_proof", bytes(chunk))

    async def validate_event(self) -> ValidationResult:
        return await self.send("validate_event")

    async def validate_event_with_proof(self, proof: bytes) -> ValidationResult:
        return await self.send("validate_event_with_proof", bytes(proof))

    def chunks(self, proof: bytes) -> list[bytes]:
        return [proof[i:i + self.chunk_size] for i in range(0, len(proof), self.chunk_size)]

    async def upload_proof(self, proof: bytes) -> int:
        """Load ``proof`` into the cache in ``chunk_size`` pieces, in order."""
        cached = 0
        for index, chunk in enumerate(self.chunks(proof)):
            cached = await self.load_proof(chunk)
            logger.info(f"Loaded chunk {index} ({len(chunk)} bytes), {cached} bytes cached")
        return cached

    async def submit_proof(self, proof: bytes) -> ValidationResult:
        """
        Complete flow: upload a proof in chunks and validate it.

        Args:
            proof: Full proof bytes

        Returns:
            The validation result recorded for this caller
        """
        logger.info(f"Submitting {len(proof)}-byte proof for {self.address}")
        await self.upload_proof(proof)
        result = await self.validate_event()
        logger.info(f"Validation result for {self.address}: {result}")
        return result

    def fetch_config(self) -> TrustAnchor | None:
        return self._fetch(config_key(self.program_id), TrustAnchor)

    def fetch_proof_cache(self, owner: str | None = None) -> ProofCache | None:
        return self._fetch(cache_key(self.program_id, owner or self.address), ProofCache)

    def fetch_result(self, owner: str | None = None) -> ValidationResult | None:
        return self._fetch(result_key(self.program_id, owner or self.address), ValidationResult)

    def _fetch(self, key: bytes, record_type: type) -> Any:
        data = self.host.get_account(key)
        return None if data is None else decode_record(record_type, data)
