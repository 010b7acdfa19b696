"""
SQLite Storage Backend.

Provides lightweight embedded storage using SQLite with async support via
aiosqlite. Ideal for local development, testing, and single-process
deployments.

All stores share one connection. Transactions are serialised on that
connection and opened with ``BEGIN IMMEDIATE`` so the write lock is taken
up-front; constraint checks (unique ``source_draft_id``, status
compare-and-set) are done by SQLite itself.

Usage:
    >>> from voyagez.storage.backends.sqlite import SQLiteStorageManager
    >>>
    >>> # File-based storage
    >>> storage = SQLiteStorageManager("./data/bookings.db")
    >>>
    >>> # In-memory storage (for testing)
    >>> async with SQLiteStorageManager(":memory:") as storage:
    ...     await storage.drafts.create(draft)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal

import aiosqlite

from voyagez.core.exceptions import (
    BookingNotFoundError,
    DraftNotFoundError,
    InvalidStateError,
    PromotionConflictError,
)
from voyagez.core.logger import get_logger
from voyagez.core.types import (
    BookingStatus,
    ConfirmedBooking,
    DraftBooking,
    DraftStatus,
    PaymentStatus,
)
from voyagez.storage.core import (
    ConcurrencyError,
    DuplicateKeyError,
    StorageConnectionError,
    TransactionError,
    load_record,
    serialize,
)
from voyagez.storage.interfaces import BookingStore, DraftStore, SignalInbox
from voyagez.storage.manager import BaseStorageManager

logger = get_logger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS drafts (
        draft_id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        provider_session_id TEXT UNIQUE,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_touched_at TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_drafts_status_touched
        ON drafts(status, last_touched_at);

    CREATE TABLE IF NOT EXISTS bookings (
        booking_id TEXT PRIMARY KEY,
        booking_reference TEXT NOT NULL UNIQUE,
        source_draft_id TEXT NOT NULL UNIQUE,
        payment_status TEXT NOT NULL,
        booking_status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS provider_signals (
        event_id TEXT PRIMARY KEY,
        provider_session_id TEXT NOT NULL,
        outcome TEXT NOT NULL,
        draft_id TEXT,
        processed_at TEXT NOT NULL
    );
"""


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison orders correctly."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _integrity_error(exc: aiosqlite.IntegrityError, source_draft_id: str | None = None):
    message = str(exc)
    if "source_draft_id" in message and source_draft_id:
        return PromotionConflictError(source_draft_id)
    if "booking_reference" in message:
        return DuplicateKeyError("Booking reference already exists", key="booking_reference")
    if "provider_session_id" in message:
        return DuplicateKeyError("Provider session already in use", key="provider_session_id")
    return DuplicateKeyError(message)


class SQLiteDatabase:
    """Single aiosqlite connection shared by the SQLite stores."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> aiosqlite.Connection:
        if self._conn is None:
            try:
                # Autocommit mode: transactions are opened explicitly below
                self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            except (OSError, aiosqlite.Error) as e:
                msg = f"Cannot open SQLite database: {e}"
                raise StorageConnectionError(msg, backend="sqlite", url=self.db_path) from e
            self._conn.row_factory = aiosqlite.Row
            await self._conn.executescript(SCHEMA)
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            yield await self.connect()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            conn = await self.connect()
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.OperationalError as e:
                msg = f"Cannot begin transaction: {e}"
                raise TransactionError(msg, operation="begin") from e
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            try:
                await conn.execute("COMMIT")
            except aiosqlite.OperationalError as e:
                await conn.execute("ROLLBACK")
                msg = f"Cannot commit transaction: {e}"
                raise TransactionError(msg, operation="commit") from e


class SQLiteDraftStore(DraftStore):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def create(self, draft: DraftBooking) -> DraftBooking:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO drafts (draft_id, status, provider_session_id, version,
                                        created_at, last_touched_at, payload)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._row(draft),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateKeyError(f"Draft {draft.draft_id} already exists", key="draft_id") from e
        return draft

    @staticmethod
    def _row(draft: DraftBooking) -> tuple:
        return (
            draft.draft_id,
            draft.status.value,
            draft.provider_session_id,
            draft.version,
            _ts(draft.created_at),
            _ts(draft.last_touched_at),
            serialize(draft.to_dict()),
        )

    async def get(self, draft_id: str) -> DraftBooking | None:
        async with self._db.reading() as conn:
            async with conn.execute(
                "SELECT payload FROM drafts WHERE draft_id = ?", (draft_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return load_record(DraftBooking.from_dict, row["payload"], "draft") if row else None

    async def get_by_session(self, provider_session_id: str) -> DraftBooking | None:
        async with self._db.reading() as conn:
            async with conn.execute(
                "SELECT payload FROM drafts WHERE provider_session_id = ?",
                (provider_session_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return load_record(DraftBooking.from_dict, row["payload"], "draft") if row else None

    async def save(self, draft: DraftBooking) -> DraftBooking:
        async with self._db.transaction() as conn:
            async with conn.execute(
                "SELECT status, version FROM drafts WHERE draft_id = ?", (draft.draft_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise DraftNotFoundError(draft.draft_id)
            status = DraftStatus(row["status"])
            if status != DraftStatus.COLLECTING:
                raise InvalidStateError(draft.draft_id, status, [DraftStatus.COLLECTING])
            if row["version"] != draft.version:
                raise ConcurrencyError(
                    item_id=draft.draft_id,
                    expected_version=draft.version,
                    actual_version=row["version"],
                )
            draft.version += 1
            await conn.execute(
                """
                UPDATE drafts SET version = ?, last_touched_at = ?, payload = ?
                WHERE draft_id = ?
                """,
                (draft.version, _ts(draft.last_touched_at), serialize(draft.to_dict()),
                 draft.draft_id),
            )
        return draft

    async def transition(self, draft: DraftBooking, from_status: DraftStatus) -> bool:
        expected_version = draft.version
        draft.version += 1
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE drafts
                    SET status = ?, provider_session_id = ?, version = ?,
                        last_touched_at = ?, payload = ?
                    WHERE draft_id = ? AND status = ? AND version = ?
                    """,
                    (
                        draft.status.value,
                        draft.provider_session_id,
                        draft.version,
                        _ts(draft.last_touched_at),
                        serialize(draft.to_dict()),
                        draft.draft_id,
                        from_status.value,
                        expected_version,
                    ),
                )
                updated = cursor.rowcount == 1
        except aiosqlite.IntegrityError as e:
            draft.version = expected_version
            raise _integrity_error(e) from e
        if not updated:
            draft.version = expected_version
        return updated

    async def find_stale(
        self,
        statuses: list[DraftStatus],
        older_than: datetime,
        limit: int = 100,
    ) -> list[DraftBooking]:
        placeholders = ", ".join("?" for _ in statuses)
        async with self._db.reading() as conn:
            async with conn.execute(
                f"""
                SELECT payload FROM drafts
                WHERE status IN ({placeholders}) AND last_touched_at < ?
                ORDER BY last_touched_at
                LIMIT ?
                """,
                (*[s.value for s in statuses], _ts(older_than), limit),
            ) as cursor:
                rows = await cursor.fetchall()
        return [load_record(DraftBooking.from_dict, row["payload"], "draft") for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        async with self._db.reading() as conn:
            async with conn.execute(
                "SELECT status, COUNT(*) AS n FROM drafts GROUP BY status"
            ) as cursor:
                rows = await cursor.fetchall()
        return {row["status"]: row["n"] for row in rows}


class SQLiteBookingStore(BookingStore):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    @staticmethod
    async def insert(conn: aiosqlite.Connection, booking: ConfirmedBooking) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO bookings (booking_id, booking_reference, source_draft_id,
                                      payment_status, booking_status, created_at,
                                      updated_at, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.booking_id,
                    booking.booking_reference,
                    booking.source_draft_id,
                    booking.payment_status.value,
                    booking.booking_status.value,
                    _ts(booking.created_at),
                    _ts(booking.updated_at),
                    serialize(booking.to_dict()),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise _integrity_error(e, booking.source_draft_id) from e

    async def create_from_draft(self, booking: ConfirmedBooking) -> str:
        async with self._db.transaction() as conn:
            await self.insert(conn, booking)
        return booking.booking_id

    async def _fetch_one(self, where: str, value: str) -> ConfirmedBooking | None:
        async with self._db.reading() as conn:
            async with conn.execute(
                f"SELECT payload FROM bookings WHERE {where} = ?", (value,)
            ) as cursor:
                row = await cursor.fetchone()
        return load_record(ConfirmedBooking.from_dict, row["payload"], "booking") if row else None

    async def get(self, booking_id: str) -> ConfirmedBooking | None:
        return await self._fetch_one("booking_id", booking_id)

    async def get_by_source_draft(self, draft_id: str) -> ConfirmedBooking | None:
        return await self._fetch_one("source_draft_id", draft_id)

    async def update_payment_status(
        self,
        booking_id: str,
        payment_status: PaymentStatus,
        booking_status: BookingStatus | None = None,
        refunded_amount: Decimal | None = None,
    ) -> ConfirmedBooking:
        async with self._db.transaction() as conn:
            async with conn.execute(
                "SELECT payload FROM bookings WHERE booking_id = ?", (booking_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise BookingNotFoundError(booking_id)
            booking = load_record(ConfirmedBooking.from_dict, row["payload"], "booking")
            booking.payment_status = payment_status
            if booking_status is not None:
                booking.booking_status = booking_status
            if refunded_amount is not None:
                booking.refunded_amount = refunded_amount
            booking.updated_at = datetime.now(UTC)
            await conn.execute(
                """
                UPDATE bookings
                SET payment_status = ?, booking_status = ?, updated_at = ?, payload = ?
                WHERE booking_id = ?
                """,
                (
                    booking.payment_status.value,
                    booking.booking_status.value,
                    _ts(booking.updated_at),
                    serialize(booking.to_dict()),
                    booking_id,
                ),
            )
        return booking

    async def list_recent(self, limit: int = 20) -> list[ConfirmedBooking]:
        async with self._db.reading() as conn:
            async with conn.execute(
                "SELECT payload FROM bookings ORDER BY created_at DESC LIMIT ?", (limit,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [load_record(ConfirmedBooking.from_dict, row["payload"], "booking") for row in rows]

    async def count(self) -> int:
        async with self._db.reading() as conn:
            async with conn.execute("SELECT COUNT(*) FROM bookings") as cursor:
                row = await cursor.fetchone()
        return row[0]


class SQLiteSignalInbox(SignalInbox):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def seen(self, event_id: str) -> bool:
        async with self._db.reading() as conn:
            async with conn.execute(
                "SELECT 1 FROM provider_signals WHERE event_id = ?", (event_id,)
            ) as cursor:
                return await cursor.fetchone() is not None

    async def record(
        self,
        event_id: str,
        provider_session_id: str,
        outcome: str,
        draft_id: str | None = None,
    ) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO provider_signals
                    (event_id, provider_session_id, outcome, draft_id, processed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event_id, provider_session_id, outcome, draft_id, _ts(datetime.now(UTC))),
            )
            return cursor.rowcount == 1

    async def count(self) -> int:
        async with self._db.reading() as conn:
            async with conn.execute("SELECT COUNT(*) FROM provider_signals") as cursor:
                row = await cursor.fetchone()
        return row[0]


class SQLiteStorageManager(BaseStorageManager):
    """
    SQLite-backed storage manager.

    Example:
        >>> async with SQLiteStorageManager("./bookings.db") as storage:
        ...     booking = await storage.promote(draft, booking)
    """

    backend_name = "sqlite"

    def __init__(self, db_path: str = ":memory:", **kwargs):
        self.db_path = db_path
        self._db = SQLiteDatabase(db_path)
        self._drafts = SQLiteDraftStore(self._db)
        self._bookings = SQLiteBookingStore(self._db)
        self._signals = SQLiteSignalInbox(self._db)

    @property
    def drafts(self) -> SQLiteDraftStore:
        return self._drafts

    @property
    def bookings(self) -> SQLiteBookingStore:
        return self._bookings

    @property
    def signals(self) -> SQLiteSignalInbox:
        return self._signals

    async def initialize(self) -> None:
        await self._db.connect()
        logger.debug(f"SQLite storage ready at {self.db_path}")

    async def close(self) -> None:
        await self._db.close()

    async def ping(self) -> None:
        async with self._db.reading() as conn:
            await conn.execute("SELECT 1")

    async def promote(self, draft: DraftBooking, booking: ConfirmedBooking) -> ConfirmedBooking:
        async with self._db.transaction() as conn:
            async with conn.execute(
                "SELECT status, version FROM drafts WHERE draft_id = ?", (draft.draft_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise DraftNotFoundError(draft.draft_id)

            # Booking first: the uniqueness constraint decides concurrent promotions
            await SQLiteBookingStore.insert(conn, booking)

            status = DraftStatus(row["status"])
            if status != DraftStatus.AWAITING_PAYMENT:
                raise InvalidStateError(draft.draft_id, status, [DraftStatus.AWAITING_PAYMENT])

            draft.version = row["version"] + 1
            cursor = await conn.execute(
                """
                UPDATE drafts SET status = ?, version = ?, payload = ?
                WHERE draft_id = ? AND status = ?
                """,
                (
                    DraftStatus.PROMOTED.value,
                    draft.version,
                    serialize(draft.to_dict()),
                    draft.draft_id,
                    DraftStatus.AWAITING_PAYMENT.value,
                ),
            )
            if cursor.rowcount != 1:
                msg = f"Draft {draft.draft_id} changed during promotion"
                raise TransactionError(msg, operation="update")
        return booking
