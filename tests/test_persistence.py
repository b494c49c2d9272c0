from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select

from true_north.models import Transaction
from true_north.persistence import (
    TnRule,
    TnTransaction,
    load_snapshot,
    save_snapshot,
    session_scope,
)
from true_north.store import AppStore


def _store() -> AppStore:
    store = AppStore()
    store.add_transactions(
        [
            Transaction("a", "2024-01-05", Decimal("-16.99"), "NETFLIX", "Subscriptions", True),
            Transaction("b", "2024-01-09", Decimal("2500.00"), "SALARY", "Income"),
        ]
    )
    store.add_rule("netflix", "Subscriptions", rule_id="r1")
    store.add_rule("aldi", "Groceries", rule_id="r0")
    store.set_bank_balance("1520.35")
    store.set_savings_reserve("300")
    return store


def test_empty_database_loads_empty_snapshot():
    with session_scope() as s:
        snap = load_snapshot(s)
    assert snap.transactions == []
    assert snap.rules == []
    assert snap.bank_balance == Decimal("0")
    assert snap.last_backup_date is None


def test_save_and_load_roundtrip():
    store = _store()
    store.mark_backed_up(datetime(2024, 2, 1, 8, 0))

    with session_scope() as s:
        save_snapshot(s, store.export_state())
    with session_scope() as s:
        snap = load_snapshot(s)

    restored = AppStore()
    restored.import_state(snap)
    assert restored.transactions == store.transactions
    # Insertion order, not id order.
    assert [r.id for r in restored.rules] == ["r1", "r0"]
    assert restored.bank_balance == Decimal("1520.35")
    assert restored.savings_reserve == Decimal("300")
    assert restored.last_backup_date == datetime(2024, 2, 1, 8, 0)


def test_save_replaces_previous_state():
    with session_scope() as s:
        save_snapshot(s, _store().export_state())

    smaller = AppStore()
    smaller.add_transactions([Transaction("z", "2024-03-01", Decimal("-1"), "ONLY")])
    with session_scope() as s:
        save_snapshot(s, smaller.export_state())

    with session_scope() as s:
        assert s.scalar(select(func.count()).select_from(TnTransaction)) == 1
        assert s.scalar(select(func.count()).select_from(TnRule)) == 0
        assert load_snapshot(s).bank_balance == Decimal("0")


def test_failed_scope_rolls_back():
    with session_scope() as s:
        save_snapshot(s, _store().export_state())

    with pytest.raises(RuntimeError):
        with session_scope() as s:
            save_snapshot(s, AppStore().export_state())
            raise RuntimeError("abort")

    with session_scope() as s:
        assert len(load_snapshot(s).transactions) == 2


def test_explicit_url(tmp_path: Path):
    url = f"sqlite+pysqlite:///{tmp_path / 'other.db'}"
    with session_scope(url=url) as s:
        save_snapshot(s, _store().export_state())
    with session_scope() as s:
        assert load_snapshot(s).transactions == []
    with session_scope(url=url) as s:
        assert len(load_snapshot(s).rules) == 2
