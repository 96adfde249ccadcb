"""
KVBackend - bucket-based transactional key-value store in a single SQLite file.
"""

import fcntl
import logging
import re
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from objectstore.exceptions import BackendError, BucketNotFound, TransactionError

logger = logging.getLogger(__name__)

BUCKET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _table_name(bucket: str) -> str:
    if not BUCKET_NAME_PATTERN.match(bucket):
        raise ValueError(f"Invalid bucket name: {bucket!r}")
    return f"bucket_{bucket}"


class Bucket:
    """
    A named key space inside a transaction.

    Keys are strings, values are bytes. Iteration follows the byte
    order of the keys.
    """

    def __init__(self, tx: "Transaction", name: str):
        self._tx = tx
        self._name = name
        self._table = _table_name(name)

    @property
    def name(self) -> str:
        return self._name

    def get(self, key: str) -> bytes | None:
        row = self._tx._execute(
            f"SELECT value FROM {self._table} WHERE key = ?", (key,)
        ).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, key: str, value: bytes) -> None:
        self._tx._check_writable()
        self._tx._execute(
            f"INSERT INTO {self._table}(key, value) VALUES(?, ?) "
            f"ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, sqlite3.Binary(value)),
        )

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if a row was removed."""
        self._tx._check_writable()
        cursor = self._tx._execute(f"DELETE FROM {self._table} WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        rows = self._tx._execute(f"SELECT key FROM {self._table} ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def __len__(self) -> int:
        return self._tx._execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]


class Transaction:
    """
    A single read-only or read-write transaction.

    Only valid inside the `view()` / `update()` block that created it.
    """

    def __init__(self, con: sqlite3.Connection, writable: bool):
        self._con = con
        self._writable = writable
        self._closed = False

    @property
    def writable(self) -> bool:
        return self._writable

    def bucket(self, name: str) -> Bucket:
        """
        Return an existing bucket.

        Raises:
            BucketNotFound: If the bucket was never created.
        """
        table = _table_name(name)
        row = self._execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        if row is None:
            raise BucketNotFound(name)
        return Bucket(self, name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        self._check_writable()
        table = _table_name(name)
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("
            f"key TEXT PRIMARY KEY NOT NULL, value BLOB NOT NULL"
            f") WITHOUT ROWID"
        )
        return Bucket(self, name)

    def _check_writable(self) -> None:
        if not self._writable:
            raise TransactionError("write attempted in a read-only transaction")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._closed:
            raise TransactionError("transaction is closed")
        try:
            return self._con.execute(sql, params)
        except sqlite3.Error as e:
            raise BackendError(str(e)) from e


class KVBackend:
    """
    Durable key-value store with bucket namespaces and ACID transactions.

    Provides:
    - view(): read-only transaction on a snapshot
    - update(): read-write transaction, one writer at a time

    Storage:
    - One SQLite file in WAL mode, one table per bucket
    - Readers use one connection per thread so they never block each other
    - Writers share one connection guarded by a lock
    - An exclusive flock on `<path>.lock` keeps other processes out
      while the backend is open
    """

    # Default time to wait for the database file lock at open (seconds)
    DEFAULT_TIMEOUT = 1.0
    # Busy wait for transactions once open (seconds)
    LOCK_WAIT = 5.0
    LOCK_POLL_INTERVAL = 0.05

    def __init__(self, path: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        """
        Initialize the backend. Use `KVBackend.open()` to get a usable instance.

        Args:
            path: Path of the database file. Created if missing.
            timeout: Seconds to wait at open for another process to release
                the file before failing.
        """
        if not path or not str(path).strip():
            raise ValueError("path cannot be empty")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._path = str(path)
        self._timeout = timeout

        self._lock_file = None
        self._writer: sqlite3.Connection | None = None
        self._write_lock = threading.Lock()

        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

        self._closed = True

    @classmethod
    def open(cls, path: str, timeout: float = DEFAULT_TIMEOUT) -> "KVBackend":
        """
        Open (or create) the database file.

        Raises:
            BackendError: If the file is locked for longer than `timeout`
                or is not a usable database.
        """
        backend = cls(path, timeout)
        backend._open()
        return backend

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def _connect(self, busy_timeout: float = LOCK_WAIT) -> sqlite3.Connection:
        con = sqlite3.connect(
            self._path,
            timeout=busy_timeout,
            isolation_level=None,  # BEGIN/COMMIT are issued explicitly
            check_same_thread=False,
        )
        con.execute(f"PRAGMA busy_timeout={int(busy_timeout * 1000)};")
        return con

    def _acquire_file_lock(self) -> None:
        """Take the process-wide exclusive lock, polling until `timeout`."""
        lock_path = f"{self._path}.lock"
        try:
            lock_file = open(lock_path, "a")
        except OSError as e:
            raise BackendError(f"cannot open lock file {lock_path}: {e}") from e

        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    lock_file.close()
                    raise BackendError(
                        f"cannot open {self._path}: locked by another process"
                    ) from None
                time.sleep(self.LOCK_POLL_INTERVAL)
            except OSError as e:
                lock_file.close()
                raise BackendError(f"cannot lock {lock_path}: {e}") from e

        self._lock_file = lock_file

    def _release_file_lock(self) -> None:
        if self._lock_file is None:
            return
        try:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_file.close()
            self._lock_file = None

    def _open(self) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._acquire_file_lock()

        con = None
        try:
            con = self._connect(busy_timeout=self._timeout)
            row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
            if row is not None and str(row[0]).lower() != "wal":
                logger.warning(f"Journal mode is '{row[0]}', expected 'wal'")
            con.execute("PRAGMA synchronous=FULL;")

            # Fail now if another process holds the write lock
            con.execute("BEGIN IMMEDIATE;")
            con.execute("COMMIT;")
            con.execute(f"PRAGMA busy_timeout={int(self.LOCK_WAIT * 1000)};")
        except sqlite3.Error as e:
            if con is not None:
                con.close()
            self._release_file_lock()
            raise BackendError(f"cannot open {self._path}: {e}") from e

        self._writer = con
        self._closed = False
        logger.debug(f"Opened key-value backend at {self._path}")

    def _check_open(self) -> None:
        if self._closed:
            raise BackendError(f"backend is closed: {self._path}")

    def _reader(self) -> sqlite3.Connection:
        con = getattr(self._local, "con", None)
        if con is None:
            try:
                con = self._connect()
            except sqlite3.Error as e:
                raise BackendError(f"cannot open reader for {self._path}: {e}") from e
            self._local.con = con
            with self._readers_lock:
                self._readers.append(con)
        return con

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """Run a read-only transaction."""
        self._check_open()
        con = self._reader()
        try:
            con.execute("BEGIN;")
        except sqlite3.Error as e:
            raise BackendError(f"cannot begin read transaction: {e}") from e

        tx = Transaction(con, writable=False)
        try:
            yield tx
        finally:
            tx._closed = True
            if con.in_transaction:
                con.execute("ROLLBACK;")

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """
        Run a read-write transaction.

        Commits when the block exits normally, rolls back if it raises.
        """
        self._check_open()
        with self._write_lock:
            con = self._writer
            try:
                con.execute("BEGIN IMMEDIATE;")
            except sqlite3.Error as e:
                raise BackendError(f"cannot begin write transaction: {e}") from e

            tx = Transaction(con, writable=True)
            try:
                yield tx
            except BaseException:
                tx._closed = True
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise

            tx._closed = True
            try:
                con.execute("COMMIT;")
            except sqlite3.Error as e:
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise BackendError(f"commit failed: {e}") from e

    def close(self) -> None:
        """Close every connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        with self._write_lock:
            if self._writer is not None:
                self._writer.close()
                self._writer = None

        with self._readers_lock:
            for con in self._readers:
                con.close()
            self._readers.clear()

        self._release_file_lock()
        logger.debug(f"Closed key-value backend at {self._path}")

    def __enter__(self) -> "KVBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
