"""
Cross-program access to the prover.

A ForwardingProgram is a thin program that other deployments can build on:
it receives the end user's signed transaction and forwards the proof calls to
the prover with the user's identity and cache key supplied explicitly.
"""

import logging
from typing import Any, Protocol

from .errors import InvalidArgument, InvalidInstruction
from .host import CallContext, ExecutionHost
from .models import ValidationResult, address_to_hex
from .transaction import Instruction
from .utils.keys import cache_key

logger = logging.getLogger(__name__)


class ProofCacheClient(Protocol):
    """What a forwarding program needs from the prover."""

    program_id: str

    def load_proof(
        self, ctx: CallContext, owner: str, chunk: bytes, cache_account: bytes | None = None
    ) -> int: ...

    def validate_event(
        self, ctx: CallContext, owner: str, cache_account: bytes | None = None
    ) -> ValidationResult: ...


class ForwardingProgram:
    """Pass-through program that forwards proof calls to a ProofCacheClient."""

    def __init__(self, host: ExecutionHost, prover: ProofCacheClient, program_id: str = "proof_forwarder") -> None:
        self.host = host
        self.prover = prover
        self.program_id = program_id
        host.register(self)

    def process(self, ctx: CallContext, instruction: Instruction) -> Any:
        match instruction.name:
            case "call_load_proof":
                return self.call_load_proof(ctx, instruction)
            case "call_validate_event":
                return self.call_validate_event(ctx, instruction)
            case _:
                raise InvalidInstruction(f"unknown instruction: {instruction.name}")

    def call_load_proof(self, ctx: CallContext, instruction: Instruction) -> int:
        if len(instruction.args) != 1 or not isinstance(instruction.args[0], (bytes, bytearray)):
            raise InvalidArgument("call_load_proof takes one bytes argument")
        key = self._user_cache(instruction)
        return self.prover.load_proof(ctx, instruction.owner, bytes(instruction.args[0]), key)

    def call_validate_event(self, ctx: CallContext, instruction: Instruction) -> ValidationResult:
        if instruction.args:
            raise InvalidArgument("call_validate_event takes no arguments")
        key = self._user_cache(instruction)
        result = self.prover.validate_event(ctx, instruction.owner, key)
        if result.is_valid:
            logger.info(
                f"proof validated: chain_id: {result.chain_id}, "
                f"emitting_contract: {address_to_hex(result.emitting_contract)}"
            )
        else:
            logger.info(f"proof rejected: {result.error_message}")
        return result

    def _user_cache(self, instruction: Instruction) -> bytes:
        # callers may pin the key themselves; the prover rejects a mismatch
        if instruction.accounts:
            return bytes(instruction.accounts[0])
        try:
            return cache_key(self.prover.program_id, instruction.owner)
        except ValueError as e:
            raise InvalidArgument(str(e)) from e
