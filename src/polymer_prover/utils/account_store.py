"""
Account storage backends for the execution host.

An AccountStore maps storage keys to encoded records. All mutation goes
through ``transaction()``, which holds the store lock for the whole operation
and applies the staged writes only when the block exits normally, so an
operation either commits every write or none.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class StagedAccounts:
    """Write-buffering view of a store used inside one transaction."""

    def __init__(self, store: "AccountStore") -> None:
        self._store = store
        # None marks a deletion
        self.writes: dict[bytes, bytes | None] = {}

    def get(self, key: bytes) -> bytes | None:
        if key in self.writes:
            return self.writes[key]
        return self._store.load(key)

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    def put(self, key: bytes, data: bytes) -> None:
        self.writes[key] = bytes(data)

    def delete(self, key: bytes) -> bool:
        existed = self.exists(key)
        self.writes[key] = None
        return existed


class AccountStore(ABC):
    """Base class for key/value account storage with atomic transactions."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def load(self, key: bytes) -> bytes | None:
        """Read the committed value of ``key``."""

    @abstractmethod
    def _apply(self, writes: dict[bytes, bytes | None]) -> None:
        """Persist a batch of staged writes in one step."""

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            return self.load(key)

    @contextmanager
    def transaction(self) -> Iterator[StagedAccounts]:
        with self._lock:
            staged = StagedAccounts(self)
            yield staged
            if staged.writes:
                self._apply(staged.writes)
                logger.debug(f"Committed {len(staged.writes)} account writes")

    def close(self) -> None:
        pass


class MemoryAccountStore(AccountStore):
    """Process-local store, used by tests and ephemeral deployments."""

    def __init__(self) -> None:
        super().__init__()
        self._accounts: dict[bytes, bytes] = {}

    def load(self, key: bytes) -> bytes | None:
        return self._accounts.get(key)

    def _apply(self, writes: dict[bytes, bytes | None]) -> None:
        for key, data in writes.items():
            if data is None:
                self._accounts.pop(key, None)
            else:
                self._accounts[key] = data

    def __len__(self) -> int:
        return len(self._accounts)


class SqliteAccountStore(AccountStore):
    """SQLite-backed store so accounts survive across control-tool runs."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = str(path)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        with self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS accounts (key BLOB PRIMARY KEY, data BLOB NOT NULL)"
            )
        logger.info(f"Opened account store at {self.path}")

    def load(self, key: bytes) -> bytes | None:
        row = self._conn.execute("SELECT data FROM accounts WHERE key = ?", (key,)).fetchone()
        return bytes(row[0]) if row else None

    def _apply(self, writes: dict[bytes, bytes | None]) -> None:
        upserts = [(k, v) for k, v in writes.items() if v is not None]
        deletes = [(k,) for k, v in writes.items() if v is None]
        with self._conn:
            if upserts:
                self._conn.executemany(
                    "INSERT OR REPLACE INTO accounts (key, data) VALUES (?, ?)", upserts
                )
            if deletes:
                self._conn.executemany("DELETE FROM accounts WHERE key = ?", deletes)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
