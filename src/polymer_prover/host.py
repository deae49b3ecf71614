"""
In-process execution host.

The host authenticates signed transactions, enforces the per-call payload
limit, routes instructions to registered programs and runs each one as a
single all-or-nothing state transition over the account store.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from .config import HostConfig
from .errors import (
    DuplicateTransaction,
    InvalidInstruction,
    PayloadTooLarge,
    UnauthorizedCaller,
)
from .events import EventBus
from .transaction import Instruction, Transaction
from .utils.account_store import AccountStore, MemoryAccountStore, SqliteAccountStore, StagedAccounts
from .utils.keys import processed_tx_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CallContext:
    """Authenticated view of one transaction, handed to programs by the host.

    Attributes:
        issuer: Host that authenticated the transaction
        signers: Addresses whose signatures were verified
        program_id: Program currently executing
        accounts: Staged storage for this transaction
        events: Events queued for publication after commit
        caller_program: Program that forwarded the call, if any
    """
    issuer: "ExecutionHost"
    signers: frozenset[str]
    program_id: str
    accounts: StagedAccounts
    events: list[Any] = field(default_factory=list)
    caller_program: str | None = None

    def is_signer(self, address: str) -> bool:
        return address in self.signers

    def emit(self, event: Any) -> None:
        self.events.append(event)

    def delegate(self, program_id: str) -> "CallContext":
        """Context for a cross-program call; signers and storage carry over."""
        return replace(self, program_id=program_id, caller_program=self.program_id)


class Program(Protocol):
    program_id: str

    def process(self, ctx: CallContext, instruction: Instruction) -> Any: ...


class ExecutionHost:
    """Routes signed transactions to programs over one account store."""

    def __init__(
        self,
        store: AccountStore | None = None,
        config: HostConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        """
        Initialize the execution host.

        Args:
            store: Account storage (defaults to config.db_path, else in memory)
            config: Host limits
            events: Bus committed events are published to
        """
        self.config = config or HostConfig()
        if store is None:
            store = SqliteAccountStore(self.config.db_path) if self.config.db_path else MemoryAccountStore()
        self.store = store
        self.events = events or EventBus()
        self.programs: dict[str, Program] = {}
        # recent ids in front of the persisted markers; OrderedDict keeps insertion order for LRU eviction
        self.processed_txs: OrderedDict[str, None] = OrderedDict()

    def register(self, program: Program) -> None:
        if program.program_id in self.programs:
            raise ValueError(f"Program {program.program_id} is already registered")
        self.programs[program.program_id] = program
        logger.info(f"Registered program {program.program_id}")

    def get_account(self, key: bytes) -> bytes | None:
        """Read committed account data."""
        return self.store.get(key)

    def verify_context(self, ctx: CallContext) -> None:
        if ctx.issuer is not self:
            raise UnauthorizedCaller("call context was not issued by this host")

    def send_transaction(self, tx: Transaction) -> Any:
        """
        Authenticate and execute a transaction atomically.

        Returns:
            Whatever the target program returned

        Raises:
            ProverError: If the transaction is rejected; no state changes survive
        """
        instruction = tx.instruction
        size = tx.size
        if size > self.config.max_transaction_size:
            raise PayloadTooLarge(
                f"transaction too large: {size} bytes > {self.config.max_transaction_size}"
            )

        if not tx.signatures:
            raise UnauthorizedCaller("transaction has no signatures")
        try:
            signers = tx.recover_signers()
        except Exception as e:
            raise UnauthorizedCaller(f"invalid transaction signature: {e}") from e

        program = self.programs.get(instruction.program_id)
        if program is None:
            raise InvalidInstruction(f"unknown program: {instruction.program_id}")

        with self.store.transaction() as staged:
            marker = processed_tx_key(program.program_id, tx.tx_id)
            if tx.tx_id in self.processed_txs or staged.exists(marker):
                raise DuplicateTransaction(f"transaction {tx.tx_id[:10]}... was already processed")

            ctx = CallContext(
                issuer=self,
                signers=signers,
                program_id=program.program_id,
                accounts=staged,
            )
            logger.info(f"Program {program.program_id} invoke: {instruction.name}")
            try:
                result = program.process(ctx, instruction)
            except Exception as e:
                logger.info(f"Program {program.program_id} failed: {e}")
                raise

            staged.put(marker, b"\x01")
            self._track_processed(tx.tx_id)

        for event in ctx.events:
            self.events.publish(event)

        logger.info(f"Program {program.program_id} success")
        return result

    def _track_processed(self, tx_id: str) -> None:
        """
        Track a processed transaction with automatic LRU eviction.

        Args:
            tx_id: Identifier of the committed transaction
        """
        if len(self.processed_txs) >= self.config.max_processed_txs:
            self.processed_txs.popitem(last=False)
        self.processed_txs[tx_id] = None
