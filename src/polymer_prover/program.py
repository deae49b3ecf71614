"""
Polymer prover program.

Lets a caller load a large event proof in chunks into a bounded per-caller
cache, validate it against the configured trust anchor and read the outcome
back from a per-caller result record. Every operation runs inside one host
transaction, so a rejected call leaves no trace.
"""

import logging
from collections.abc import Callable
from typing import Any

from web3 import Web3

from .config import MAX_CLIENT_TYPE_LEN, U64_MAX, ProverConfig
from .errors import (
    AlreadyExists,
    AlreadyInitialized,
    DoesNotExist,
    InvalidArgument,
    InvalidInstruction,
    NotInitialized,
    ProofVerificationError,
    UnauthorizedCaller,
)
from .host import CallContext, ExecutionHost
from .models import ProofCache, TrustAnchor, ValidateEventEvent, ValidationResult, address_to_hex
from .transaction import Instruction
from .utils.encoding import DISCRIMINATOR_SIZE, decode_record, encode_record
from .utils.keys import account_address, cache_key, config_key, result_key
from .verifier import PolymerProofVerifier, ProofVerifier

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LEN = 256
# flag + error message + chain id + contract + topics/data length prefixes
RESULT_FIXED_SPACE = 1 + (4 + MAX_ERROR_MESSAGE_LEN) + 8 + 20 + 4 + 4


def storage_space(capacity: int) -> int:
    """Bytes reserved for one caller's cache and result records."""
    cache_space = DISCRIMINATOR_SIZE + 4 + capacity
    # decoded topics and data can never outgrow the proof they came from
    result_space = DISCRIMINATOR_SIZE + RESULT_FIXED_SPACE + capacity
    return cache_space + result_space


class ProofProgram:
    """
    Proof cache, validator and account lifecycle for the Polymer prover.

    Direct callers reach it through signed transactions sent to the host;
    other programs call ``load_proof``/``validate_event`` with the context
    the host gave them.
    """

    def __init__(
        self,
        host: ExecutionHost,
        config: ProverConfig | None = None,
        verifier: ProofVerifier | None = None,
    ) -> None:
        """
        Initialize the program and register it with the host.

        Args:
            host: Execution host that owns storage and authentication
            config: Prover configuration
            verifier: Proof verification collaborator
        """
        self.host = host
        self.config = config or ProverConfig()
        self.program_id = self.config.program_id
        self.verifier = verifier or PolymerProofVerifier()
        self._handlers: dict[str, Callable[[CallContext, Instruction], Any]] = {
            "initialize": self._initialize,
            "create_accounts": self._create_accounts,
            "close_accounts": self._close_accounts,
            "resize_proof_cache": self._resize_proof_cache,
            "clear_proof_cache": self._clear_proof_cache,
            "load_proof": self._load_proof,
            "validate_event": self._validate_event,
            "validate_event_with_proof": self._validate_event_with_proof,
        }
        host.register(self)

    # ------------------------------------------------------------------ routing

    def process(self, ctx: CallContext, instruction: Instruction) -> Any:
        handler = self._handlers.get(instruction.name)
        if handler is None:
            raise InvalidInstruction(f"unknown instruction: {instruction.name}")
        return handler(ctx, instruction)

    # --------------------------------------------------------- delegated entry

    def load_proof(
        self,
        ctx: CallContext,
        owner: str,
        chunk: bytes,
        cache_account: bytes | None = None,
    ) -> int:
        """
        Append ``chunk`` to ``owner``'s proof cache.

        Args:
            ctx: Context issued by the host for the current transaction
            owner: Address whose cache receives the chunk; must have signed
            chunk: Proof bytes to append
            cache_account: Explicit cache key supplied by a forwarding caller

        Returns:
            Number of bytes cached after the append

        Raises:
            CacheCapacityExceeded: If the chunk does not fit; the cache is unchanged
        """
        ctx = self._enter(ctx)
        owner = self._authorize(ctx, owner)
        key = self._check_account(cache_key(self.program_id, owner), cache_account)
        if not isinstance(chunk, (bytes, bytearray)):
            raise InvalidArgument(f"proof chunk must be bytes, got {type(chunk).__name__}")

        cache = self._read(ctx, key, ProofCache)
        if cache is None:
            if not self.config.cache.auto_create_accounts:
                raise DoesNotExist(
                    f"proof cache {account_address(key)} does not exist; call create_accounts first"
                )
            self._provision(ctx, owner)
            cache = self._read(ctx, key, ProofCache)

        cache = cache.appended(bytes(chunk))
        ctx.accounts.put(key, encode_record(cache))
        logger.info(f"Loaded {len(chunk)} bytes into {account_address(key)} ({len(cache)}/{cache.capacity})")
        return len(cache)

    def validate_event(
        self,
        ctx: CallContext,
        owner: str,
        cache_account: bytes | None = None,
    ) -> ValidationResult:
        """
        Validate the proof cached for ``owner`` and record the outcome.

        A rejected proof is not an error: the negative result is stored like a
        positive one. Either way the cache is emptied afterwards.

        Returns:
            The result written to ``owner``'s result record
        """
        ctx = self._enter(ctx)
        owner = self._authorize(ctx, owner)
        key = self._check_account(cache_key(self.program_id, owner), cache_account)
        anchor = self._load_anchor(ctx)

        cache = self._read(ctx, key, ProofCache)
        if cache is None:
            raise DoesNotExist(f"proof cache {account_address(key)} does not exist")

        result = self._run_validation(ctx, owner, cache.buffer, anchor)
        ctx.accounts.put(key, encode_record(cache.cleared()))
        return result

    # ---------------------------------------------------------------- handlers

    def _initialize(self, ctx: CallContext, ix: Instruction) -> TrustAnchor:
        authority = self._authorize(ctx, ix.owner)
        client_type, signer_address, chain_id = self._args(ix, str, bytes, int)
        if len(client_type) > MAX_CLIENT_TYPE_LEN:
            raise InvalidArgument(f"client type too long (max {MAX_CLIENT_TYPE_LEN})")
        if len(signer_address) != 20:
            raise InvalidArgument(f"signer address must be 20 bytes, got {len(signer_address)}")
        if not 0 <= chain_id <= U64_MAX:
            raise InvalidArgument(f"peptide chain id must fit in 64 bits, got {chain_id}")

        key = config_key(self.program_id)
        if ctx.accounts.exists(key):
            raise AlreadyInitialized(f"config account {account_address(key)} already in use")

        anchor = TrustAnchor(
            client_type=client_type,
            signer_address=bytes(signer_address),
            chain_id=chain_id,
            authority=authority,
        )
        ctx.accounts.put(key, encode_record(anchor))
        logger.info(f"client_type: {anchor.client_type}")
        logger.info(f"peptide_chain_id: {anchor.chain_id}")
        logger.info(f"signer_addr: {address_to_hex(anchor.signer_address)}")
        return anchor

    def _create_accounts(self, ctx: CallContext, ix: Instruction) -> int:
        owner = self._authorize(ctx, ix.owner)
        self._args(ix)
        for key in (cache_key(self.program_id, owner), result_key(self.program_id, owner)):
            if ctx.accounts.exists(key):
                raise AlreadyExists(f"account {account_address(key)} already in use")
        deposit = self._provision(ctx, owner)
        logger.info(f"accounts successfully created for {owner}, deposit {deposit}")
        return deposit

    def _close_accounts(self, ctx: CallContext, ix: Instruction) -> int:
        owner = self._authorize(ctx, ix.owner)
        self._args(ix)
        key = cache_key(self.program_id, owner)
        cache = self._read(ctx, key, ProofCache)
        if cache is None:
            raise DoesNotExist(f"proof cache {account_address(key)} does not exist")

        ctx.accounts.delete(key)
        ctx.accounts.delete(result_key(self.program_id, owner))
        logger.info(f"accounts successfully closed for {owner}, refunded {cache.deposit}")
        return cache.deposit

    def _resize_proof_cache(self, ctx: CallContext, ix: Instruction) -> int:
        owner = self._authorize(ctx, ix.owner)
        self._args(ix)
        key = cache_key(self.program_id, owner)
        cache = self._read(ctx, key, ProofCache)
        if cache is None:
            raise DoesNotExist(f"proof cache {account_address(key)} does not exist")

        capacity = self.config.cache.capacity
        resized = cache.resized(capacity, self._deposit(capacity))
        ctx.accounts.put(key, encode_record(resized))
        delta = resized.deposit - cache.deposit
        logger.info(
            f"proof cache successfully resized from {cache.capacity} to {capacity} bytes, "
            f"deposit change {delta}"
        )
        return delta

    def _clear_proof_cache(self, ctx: CallContext, ix: Instruction) -> None:
        owner = self._authorize(ctx, ix.owner)
        self._args(ix)
        key = cache_key(self.program_id, owner)
        cache = self._read(ctx, key, ProofCache)
        if cache is None:
            raise DoesNotExist(f"proof cache {account_address(key)} does not exist")

        ctx.accounts.put(key, encode_record(cache.cleared()))
        logger.info("proof cache successfully cleared")

    def _load_proof(self, ctx: CallContext, ix: Instruction) -> int:
        (chunk,) = self._args(ix, bytes)
        return self.load_proof(ctx, ix.owner, chunk, self._explicit_account(ix))

    def _validate_event(self, ctx: CallContext, ix: Instruction) -> ValidationResult:
        self._args(ix)
        return self.validate_event(ctx, ix.owner, self._explicit_account(ix))

    def _validate_event_with_proof(self, ctx: CallContext, ix: Instruction) -> ValidationResult:
        """Single-shot variant: the proof is the argument and the cache is not touched."""
        owner = self._authorize(ctx, ix.owner)
        (proof,) = self._args(ix, bytes)
        anchor = self._load_anchor(ctx)

        if not ctx.accounts.exists(result_key(self.program_id, owner)):
            if not self.config.cache.auto_create_accounts:
                raise DoesNotExist(f"result account for {owner} does not exist; call create_accounts first")
            self._provision(ctx, owner)

        return self._run_validation(ctx, owner, proof, anchor)

    # ------------------------------------------------------------------- reads

    def fetch_config(self) -> TrustAnchor | None:
        return self._fetch(config_key(self.program_id), TrustAnchor)

    def fetch_proof_cache(self, owner: str) -> ProofCache | None:
        return self._fetch(cache_key(self.program_id, owner), ProofCache)

    def fetch_result(self, owner: str) -> ValidationResult | None:
        return self._fetch(result_key(self.program_id, owner), ValidationResult)

    # ----------------------------------------------------------------- helpers

    def _run_validation(
        self,
        ctx: CallContext,
        owner: str,
        proof: bytes,
        anchor: TrustAnchor,
    ) -> ValidationResult:
        try:
            event = self.verifier.verify(proof, anchor)
        except ProofVerificationError as e:
            # recorded messages are bounded to the space reserved by storage_space
            message = e.message.encode()[:MAX_ERROR_MESSAGE_LEN].decode(errors="ignore")
            result = ValidationResult.invalid(message)
        else:
            result = ValidationResult.valid(event)
            ctx.emit(ValidateEventEvent.from_result(owner, result))

        logger.info(f"{result}")
        if ctx.caller_program:
            logger.info(f"Validation requested by program {ctx.caller_program} for {owner}")
        ctx.accounts.put(result_key(self.program_id, owner), encode_record(result))
        return result

    def _provision(self, ctx: CallContext, owner: str) -> int:
        capacity = self.config.cache.capacity
        deposit = self._deposit(capacity)
        ctx.accounts.put(
            cache_key(self.program_id, owner),
            encode_record(ProofCache(capacity=capacity, deposit=deposit)),
        )
        ctx.accounts.put(result_key(self.program_id, owner), encode_record(ValidationResult.empty()))
        return deposit

    def _deposit(self, capacity: int) -> int:
        return storage_space(capacity) * self.config.cache.deposit_per_byte

    def _enter(self, ctx: CallContext) -> CallContext:
        self.host.verify_context(ctx)
        if ctx.program_id != self.program_id:
            return ctx.delegate(self.program_id)
        return ctx

    @staticmethod
    def _authorize(ctx: CallContext, owner: str) -> str:
        if not isinstance(owner, str) or not Web3.is_address(owner):
            raise InvalidArgument(f"invalid owner address: {owner!r}")
        owner = Web3.to_checksum_address(owner)
        if not ctx.is_signer(owner):
            raise UnauthorizedCaller(f"{owner} did not sign this transaction")
        return owner

    @staticmethod
    def _check_account(expected: bytes, supplied: bytes | None) -> bytes:
        if supplied is not None and bytes(supplied) != expected:
            raise UnauthorizedCaller(
                f"account {account_address(bytes(supplied))} does not belong to the signer"
            )
        return expected

    @staticmethod
    def _explicit_account(ix: Instruction) -> bytes | None:
        if len(ix.accounts) > 1:
            raise InvalidArgument(f"{ix.name} takes at most one account, got {len(ix.accounts)}")
        return ix.accounts[0] if ix.accounts else None

    @staticmethod
    def _args(ix: Instruction, *types: type) -> tuple[Any, ...]:
        if len(ix.args) != len(types):
            raise InvalidArgument(f"{ix.name} takes {len(types)} arguments, got {len(ix.args)}")
        for position, (value, expected) in enumerate(zip(ix.args, types)):
            if expected is bytes and isinstance(value, bytearray):
                continue
            # bool is an int subclass but never a valid integer argument here
            if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
                raise InvalidArgument(
                    f"{ix.name} argument {position} must be {expected.__name__}, "
                    f"got {type(value).__name__}"
                )
        return ix.args

    def _load_anchor(self, ctx: CallContext) -> TrustAnchor:
        anchor = self._read(ctx, config_key(self.program_id), TrustAnchor)
        if anchor is None:
            raise NotInitialized("trust anchor has not been initialized")
        return anchor

    @staticmethod
    def _read(ctx: CallContext, key: bytes, record_type: type) -> Any:
        data = ctx.accounts.get(key)
        return None if data is None else decode_record(record_type, data)

    def _fetch(self, key: bytes, record_type: type) -> Any:
        data = self.host.get_account(key)
        return None if data is None else decode_record(record_type, data)
