"""SQLAlchemy persistence for store snapshots.

Three tables hold the state of an :class:`~true_north.store.AppStore`:

- ``tn_transactions``: one row per transaction
- ``tn_rules``: rules in insertion order
- ``tn_settings``: key/value pairs (bank balance, savings reserve, last backup)

Saving replaces everything (last write wins); there is no merge of
concurrent writers. Tables are created on first use with
``metadata.create_all``.

Usage
-----
with session_scope() as s:
    save_snapshot(s, store.export_state())
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Text, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .categories import UNCATEGORIZED
from .config import database_url
from .logging_setup import get_logger
from .store import RuleRecord, StoreSnapshot, TransactionRecord

_logger = get_logger("true_north.persistence")

_ENGINES: dict[str, Engine] = {}
_SESSION_MAKERS: dict[str, sessionmaker[Session]] = {}

BANK_BALANCE_KEY = "bank_balance"
SAVINGS_RESERVE_KEY = "savings_reserve"
LAST_BACKUP_KEY = "last_backup_date"


class Base(DeclarativeBase):
    pass


class TnTransaction(Base):
    __tablename__ = "tn_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    date: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default=UNCATEGORIZED)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    merchant_name: Mapped[str | None] = mapped_column(String, nullable=True)


class TnRule(Base):
    __tablename__ = "tn_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    keyword: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String, nullable=False)


class TnSetting(Base):
    __tablename__ = "tn_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


# ---------------------------------------------------------------------------
# Engine/session helpers
# ---------------------------------------------------------------------------


def get_engine(*, url: str | None = None) -> Engine:
    """Return the engine for ``url`` (default from the environment), creating tables once."""

    resolved = database_url(url)
    engine = _ENGINES.get(resolved)
    if engine is None:
        engine = create_engine(resolved, pool_pre_ping=True)
        Base.metadata.create_all(engine)
        _ENGINES[resolved] = engine
        _SESSION_MAKERS[resolved] = sessionmaker(
            bind=engine, expire_on_commit=False, class_=Session
        )
        _logger.debug("persistence:engine_created url=%s", engine.url.render_as_string())
    return engine


def dispose_engines() -> None:
    for engine in _ENGINES.values():
        engine.dispose()
    _ENGINES.clear()
    _SESSION_MAKERS.clear()


@contextmanager
def session_scope(*, url: str | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    get_engine(url=url)
    session = _SESSION_MAKERS[database_url(url)]()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Snapshot I/O
# ---------------------------------------------------------------------------


def save_snapshot(session: Session, snapshot: StoreSnapshot) -> None:
    """Replace all stored state with ``snapshot``."""

    session.execute(delete(TnTransaction))
    session.execute(delete(TnRule))
    session.execute(delete(TnSetting))

    session.add_all(
        TnTransaction(
            id=t.id,
            date=t.date,
            amount=t.amount,
            description=t.description,
            category=t.category,
            is_recurring=t.is_recurring,
            merchant_name=t.merchant_name,
        )
        for t in snapshot.transactions
    )
    session.add_all(
        TnRule(id=r.id, position=i, keyword=r.keyword, category=r.category)
        for i, r in enumerate(snapshot.rules)
    )
    settings = {
        BANK_BALANCE_KEY: str(snapshot.bank_balance),
        SAVINGS_RESERVE_KEY: str(snapshot.savings_reserve),
    }
    if snapshot.last_backup_date is not None:
        settings[LAST_BACKUP_KEY] = snapshot.last_backup_date.isoformat()
    session.add_all(TnSetting(key=k, value=v) for k, v in settings.items())
    session.flush()
    _logger.info(
        "persistence:snapshot_saved num_transactions=%d num_rules=%d",
        len(snapshot.transactions),
        len(snapshot.rules),
    )


def load_snapshot(session: Session) -> StoreSnapshot:
    """Read the stored state; an empty database yields an empty snapshot."""

    txns = session.scalars(select(TnTransaction).order_by(TnTransaction.date.desc())).all()
    rules = session.scalars(select(TnRule).order_by(TnRule.position)).all()
    settings = {s.key: s.value for s in session.scalars(select(TnSetting)).all()}

    last_backup = settings.get(LAST_BACKUP_KEY)
    return StoreSnapshot(
        transactions=[
            TransactionRecord(
                id=t.id,
                date=t.date,
                amount=t.amount,
                description=t.description,
                category=t.category,
                is_recurring=t.is_recurring,
                merchant_name=t.merchant_name,
            )
            for t in txns
        ],
        rules=[RuleRecord(id=r.id, keyword=r.keyword, category=r.category) for r in rules],
        bank_balance=Decimal(settings.get(BANK_BALANCE_KEY, "0")),
        savings_reserve=Decimal(settings.get(SAVINGS_RESERVE_KEY, "0")),
        last_backup_date=datetime.fromisoformat(last_backup) if last_backup else None,
    )


__all__ = [
    "Base",
    "TnRule",
    "TnSetting",
    "TnTransaction",
    "dispose_engines",
    "get_engine",
    "load_snapshot",
    "save_snapshot",
    "session_scope",
]
