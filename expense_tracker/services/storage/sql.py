"""
SQL Storage Implementation

DESIGN DECISION: SQLAlchemy Core (no ORM) against any database SQLAlchemy
supports. SQLite is the default because a personal tracker should run
with zero setup; point STORAGE_DATABASE_URL at PostgreSQL for more.

Money is stored as integer cents so the balance increment is exact
integer arithmetic inside the database.

ATOMICITY:
- Balance increments are one `UPDATE ... SET balance = balance + :delta
  RETURNING ...` statement; concurrent increments serialize in the database
  and none is lost.
- An absent balance row is inserted in the same transaction. If another
  request inserted it first, the IntegrityError rolls our transaction back
  (nothing committed) and the increment is retried.
- Expense deletion is one `DELETE ... RETURNING` statement.

BLOCKING CALLS: the methods are `async def` to satisfy the storage
interfaces, but each runs its SQLAlchemy statements synchronously on the
calling thread and holds the event loop until the transaction ends.
Requests on one loop are therefore served one statement at a time.
Consistency under parallel callers (threads, multiple workers) comes
from the database statements above, not from the loop.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_tracker.config import get_settings
from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.expense import (
    Balance,
    Expense,
    ExpenseCategory,
    as_utc,
    utcnow,
)
from expense_tracker.services.storage.interface import (
    AuditStorageInterface,
    BalanceStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger(__name__)

metadata = MetaData()

expenses_table = Table(
    "expenses",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(36), unique=True, nullable=False),
    Column("description", String(500), nullable=False),
    Column("amount_cents", BigInteger, nullable=False),
    Column("category", String(20), nullable=False),
    Column("date", DateTime(timezone=True), nullable=False, index=True),
)

balances_table = Table(
    "balances",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("balance_cents", BigInteger, nullable=False),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)

audit_events_table = Table(
    "audit_events",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(36), unique=True, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("event_type", String(50), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("entity_type", String(20)),
    Column("entity_id", String(64)),
    Column("correlation_id", String(36), index=True),
    Column("description", String(500), nullable=False),
    Column("details_json", Text),
    Column("error_message", Text),
)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


class SQLClient:
    """
    Owns the SQLAlchemy engine.

    The engine is created lazily on first use and the tables are created
    if they don't exist yet.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: Optional[bool] = None,
    ):
        settings = get_settings().storage
        self._database_url = database_url or settings.database_url
        self._echo = settings.echo_sql if echo is None else echo
        self._engine: Optional[Engine] = None

    @property
    def database_url(self) -> str:
        return self._database_url

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    def connect(self) -> Engine:
        """Create the engine and schema (once)."""
        if self._engine is None:
            kwargs = {"echo": self._echo}
            if self._database_url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if self._is_sqlite_memory():
                    # one shared connection, otherwise every checkout is a new empty db
                    kwargs["poolclass"] = StaticPool
            try:
                engine = create_engine(self._database_url, **kwargs)
                metadata.create_all(engine)
            except SQLAlchemyError as e:
                raise ConnectionError(f"Failed to connect to database: {e}") from e
            self._engine = engine
            logger.info("database_connected", dialect=engine.dialect.name)
        return self._engine

    def _is_sqlite_memory(self) -> bool:
        return self._database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in self._database_url

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


class SQLExpenseStorage(ExpenseStorageInterface):
    """
    SQL implementation of expense storage.

    `seq` is an autoincrement column used only to break ties between
    expenses with identical timestamps.
    """

    def __init__(self, client: Optional[SQLClient] = None):
        self._client = client or SQLClient()

    def _expense_to_row(self, expense: Expense) -> dict:
        return {
            "id": str(expense.id),
            "description": expense.description,
            "amount_cents": to_cents(expense.amount),
            "category": expense.category.value,
            "date": expense.date,
        }

    def _row_to_expense(self, row) -> Expense:
        return Expense(
            id=UUID(row.id),
            description=row.description,
            amount=from_cents(row.amount_cents),
            category=ExpenseCategory(row.category),
            date=as_utc(row.date),
        )

    async def insert_expense(self, expense: Expense) -> Expense:
        engine = self._client.connect()
        try:
            with engine.begin() as conn:
                conn.execute(insert(expenses_table).values(**self._expense_to_row(expense)))
        except IntegrityError as e:
            raise DuplicateError(f"Expense already exists: {expense.id}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save expense: {e}") from e
        return expense

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        engine = self._client.connect()
        try:
            with engine.connect() as conn:
                row = conn.execute(
                    select(expenses_table).where(expenses_table.c.id == str(expense_id))
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get expense: {e}") from e
        return self._row_to_expense(row) if row else None

    async def delete_expense(self, expense_id: UUID) -> Optional[Expense]:
        engine = self._client.connect()
        try:
            with engine.begin() as conn:
                row = conn.execute(
                    delete(expenses_table)
                    .where(expenses_table.c.id == str(expense_id))
                    .returning(*expenses_table.c)
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete expense: {e}") from e
        return self._row_to_expense(row) if row else None

    async def list_expenses(self) -> list[Expense]:
        engine = self._client.connect()
        try:
            with engine.connect() as conn:
                rows = conn.execute(
                    select(expenses_table).order_by(
                        expenses_table.c.date.desc(),
                        expenses_table.c.seq.asc(),
                    )
                ).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list expenses: {e}") from e
        return [self._row_to_expense(row) for row in rows]


class _BalanceInsertRace(Exception):
    """Another request created the balance row between our UPDATE and INSERT."""


class SQLBalanceStorage(BalanceStorageInterface):
    """SQL implementation of the singleton balance record."""

    def __init__(self, client: Optional[SQLClient] = None):
        self._client = client or SQLClient()

    def _row_to_balance(self, row) -> Balance:
        return Balance(
            id=row.id,
            current_balance=from_cents(row.balance_cents),
            last_updated=as_utc(row.last_updated),
        )

    async def get_balance(self, balance_id: str) -> Optional[Balance]:
        engine = self._client.connect()
        try:
            with engine.connect() as conn:
                row = conn.execute(
                    select(balances_table).where(balances_table.c.id == balance_id)
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read balance: {e}") from e
        return self._row_to_balance(row) if row else None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(_BalanceInsertRace),
        reraise=True,
    )
    def _increment(self, balance_id: str, delta_cents: int, upsert: bool) -> Balance:
        engine = self._client.connect()
        now = utcnow()
        with engine.begin() as conn:
            row = conn.execute(
                update(balances_table)
                .where(balances_table.c.id == balance_id)
                .values(
                    balance_cents=balances_table.c.balance_cents + delta_cents,
                    last_updated=now,
                )
                .returning(*balances_table.c)
            ).first()
            if row is None:
                if not upsert:
                    raise NotFoundError(f"Balance record not found: {balance_id}")
                try:
                    row = conn.execute(
                        insert(balances_table)
                        .values(id=balance_id, balance_cents=delta_cents, last_updated=now)
                        .returning(*balances_table.c)
                    ).first()
                except IntegrityError as e:
                    raise _BalanceInsertRace(str(e)) from e
        return self._row_to_balance(row)

    async def increment_balance(
        self,
        balance_id: str,
        delta: Decimal,
        upsert: bool,
    ) -> Balance:
        try:
            return self._increment(balance_id, to_cents(delta), upsert)
        except StorageError:
            raise
        except (SQLAlchemyError, _BalanceInsertRace) as e:
            raise StorageError(f"Failed to update balance: {e}") from e

    async def create_balance_if_absent(self, balance_id: str) -> tuple[Balance, bool]:
        existing = await self.get_balance(balance_id)
        if existing is not None:
            return existing, False

        engine = self._client.connect()
        try:
            with engine.begin() as conn:
                row = conn.execute(
                    insert(balances_table)
                    .values(id=balance_id, balance_cents=0, last_updated=utcnow())
                    .returning(*balances_table.c)
                ).first()
            return self._row_to_balance(row), True
        except IntegrityError:
            # lost the race; the winner's record stands
            pass
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize balance: {e}") from e

        existing = await self.get_balance(balance_id)
        if existing is None:
            raise StorageError(f"Balance record vanished during initialization: {balance_id}")
        return existing, False


class SQLAuditStorage(AuditStorageInterface):
    """
    SQL implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SQLClient] = None):
        self._client = client or SQLClient()

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            engine = self._client.connect()
            with engine.begin() as conn:
                conn.execute(insert(audit_events_table).values(**event.to_record()))
            return True
        except (SQLAlchemyError, StorageError) as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        engine = self._client.connect()
        try:
            with engine.connect() as conn:
                rows = conn.execute(
                    select(audit_events_table)
                    .where(audit_events_table.c.correlation_id == str(correlation_id))
                    .order_by(audit_events_table.c.timestamp, audit_events_table.c.seq)
                ).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
        return [AuditEvent.from_record(dict(row)) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        engine = self._client.connect()
        try:
            with engine.connect() as conn:
                rows = conn.execute(
                    select(audit_events_table)
                    .order_by(audit_events_table.c.seq.desc())
                    .limit(limit)
                ).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
        return [AuditEvent.from_record(dict(row)) for row in rows]
