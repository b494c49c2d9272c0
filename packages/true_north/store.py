"""State-owning application store.

:class:`AppStore` holds the transaction set, the rules, the bank balance and
the savings reserve, and exposes every mutation as a method. Each mutation
runs under one re-entrant lock, and any change to the transactions recomputes
the recurring patterns (and re-marks recurring transactions) before the lock
is released, so readers never see patterns derived from stale data.

:class:`StoreSnapshot` is the serializable form of the state, used for
JSON export/import and for database persistence. Field aliases follow the
camelCase keys of the mobile app's backup files so those can be imported
as-is.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .analytics import calculate_round_up_savings, detect_subscriptions, detect_surcharges
from .categories import UNCATEGORIZED, coerce_category
from .config import ClassifierSettings, RecurringSettings
from .errors import StoreBusyError
from .logging_setup import get_logger
from .models import (
    AnalysisResult,
    RecurringPattern,
    RoundUpResult,
    Rule,
    SafeBalanceResult,
    Subscription,
    SurchargeResult,
    Transaction,
    to_decimal,
)
from .recurring import detect_recurring, mark_recurring_transactions
from .rules import make_rule
from .safe_balance import calculate_safe_balance
from .workflow import BatchClassifier, merge_results, run_categorization_workflow

_logger = get_logger("true_north.store")

_UPDATABLE_FIELDS = frozenset({"category", "is_recurring", "merchant_name"})


# ---------------------------------------------------------------------------
# Snapshot records
# ---------------------------------------------------------------------------


class TransactionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    date: str
    amount: Decimal
    description: str
    category: str = UNCATEGORIZED
    is_recurring: bool = Field(default=False, alias="isRecurring")
    merchant_name: str | None = Field(default=None, alias="merchantName")

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v: Any) -> str:
        return coerce_category(v)

    @field_serializer("amount", when_used="json")
    def _amount_as_number(self, v: Decimal) -> float:
        return float(v)

    @classmethod
    def from_transaction(cls, txn: Transaction) -> TransactionRecord:
        return cls(
            id=txn.id,
            date=txn.date,
            amount=txn.amount,
            description=txn.description,
            category=txn.category,
            is_recurring=txn.is_recurring,
            merchant_name=txn.merchant_name,
        )

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            date=self.date,
            amount=self.amount,
            description=self.description,
            category=self.category,
            is_recurring=self.is_recurring,
            merchant_name=self.merchant_name,
        )


class RuleRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    keyword: str
    category: str

    @classmethod
    def from_rule(cls, rule: Rule) -> RuleRecord:
        return cls(id=rule.id, keyword=rule.keyword, category=rule.category)

    def to_rule(self) -> Rule:
        return Rule(id=self.id, keyword=self.keyword, category=self.category)


class StoreSnapshot(BaseModel):
    """Serializable store state. Derived fields (patterns) are not included."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transactions: list[TransactionRecord] = Field(default_factory=list)
    rules: list[RuleRecord] = Field(default_factory=list)
    bank_balance: Decimal = Field(default=Decimal(0), alias="bankBalance")
    savings_reserve: Decimal = Field(default=Decimal(0), alias="savingsBuckets")
    last_backup_date: datetime | None = Field(default=None, alias="lastBackupDate")

    # App backups carry money as JSON numbers.
    @field_serializer("bank_balance", "savings_reserve", when_used="json")
    def _money_as_number(self, v: Decimal) -> float:
        return float(v)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def _sort_newest_first(transactions: list[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda t: t.posted_on, reverse=True)


class AppStore:
    """Single-writer owner of the application state.

    Parameters
    ----------
    classifier_factory:
        Builds the classifier used by :meth:`reapply_rules` when none is
        passed explicitly. Defaults to an OpenAI-backed
        :class:`~true_north.llm.LLMClassifier` configured from the environment.
    recurring_settings:
        Tolerances for recurring detection.
    batch_size:
        Chunk size for classification runs started from the store.
    """

    def __init__(
        self,
        *,
        classifier_factory: Callable[[], BatchClassifier] | None = None,
        recurring_settings: RecurringSettings | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._classifier_factory = classifier_factory
        self._recurring_settings = recurring_settings or RecurringSettings()
        self._batch_size = batch_size
        self._transactions: list[Transaction] = []
        self._rules: list[Rule] = []
        self._bank_balance = Decimal(0)
        self._savings_reserve = Decimal(0)
        self._last_backup_date: datetime | None = None
        self._patterns: list[RecurringPattern] = []
        self._is_analyzing = False

    # ---- Read access ---------------------------------------------------

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        with self._lock:
            return tuple(self._transactions)

    @property
    def rules(self) -> tuple[Rule, ...]:
        with self._lock:
            return tuple(self._rules)

    @property
    def recurring_patterns(self) -> tuple[RecurringPattern, ...]:
        with self._lock:
            return tuple(self._patterns)

    @property
    def bank_balance(self) -> Decimal:
        return self._bank_balance

    @property
    def savings_reserve(self) -> Decimal:
        return self._savings_reserve

    @property
    def last_backup_date(self) -> datetime | None:
        return self._last_backup_date

    @property
    def is_analyzing(self) -> bool:
        return self._is_analyzing

    def get_transaction(self, txn_id: str) -> Transaction | None:
        with self._lock:
            return next((t for t in self._transactions if t.id == txn_id), None)

    # ---- Internal ------------------------------------------------------

    def _commit_transactions(self, transactions: list[Transaction]) -> None:
        # Caller holds the lock.
        patterns = detect_recurring(transactions, self._recurring_settings)
        marked = mark_recurring_transactions(transactions, patterns)
        self._transactions = _sort_newest_first(marked)
        self._patterns = patterns

    def _apply_rule_categories(self, ruled: list[Transaction]) -> None:
        # Only fills categories that are still Uncategorized in the live state.
        assigned = {t.id: t.category for t in ruled if t.category != UNCATEGORIZED}
        with self._lock:
            merged = [
                replace(t, category=assigned[t.id])
                if t.category == UNCATEGORIZED and t.id in assigned
                else t
                for t in self._transactions
            ]
            self._commit_transactions(merged)

    def _apply_results(self, results: Mapping[str, AnalysisResult]) -> None:
        with self._lock:
            self._commit_transactions(merge_results(self._transactions, results))

    # ---- Transaction actions -------------------------------------------

    def add_transactions(self, transactions: list[Transaction]) -> int:
        """Add transactions whose ids are not already stored; return how many."""

        with self._lock:
            seen = {t.id for t in self._transactions}
            fresh: list[Transaction] = []
            for txn in transactions:
                if txn.id in seen:
                    continue
                seen.add(txn.id)
                fresh.append(txn)
            if fresh:
                self._commit_transactions(self._transactions + fresh)
            _logger.info(
                "store:transactions_added added=%d duplicates=%d total=%d",
                len(fresh),
                len(transactions) - len(fresh),
                len(self._transactions),
            )
            return len(fresh)

    def update_transaction(self, txn_id: str, **changes: Any) -> Transaction:
        """Change ``category``, ``is_recurring`` or ``merchant_name`` of one transaction.

        Raises ``KeyError`` for an unknown id and ``ValueError`` for any other
        field or an unknown category.
        """

        bad = set(changes) - _UPDATABLE_FIELDS
        if bad:
            raise ValueError(f"cannot update field(s): {', '.join(sorted(bad))}")
        if "category" in changes and coerce_category(changes["category"]) != changes["category"]:
            raise ValueError(f"unknown category: {changes['category']!r}")

        with self._lock:
            for i, txn in enumerate(self._transactions):
                if txn.id == txn_id:
                    updated = replace(txn, **changes)
                    items = list(self._transactions)
                    items[i] = updated
                    self._commit_transactions(items)
                    return self.get_transaction(txn_id) or updated
            raise KeyError(txn_id)

    def delete_transaction(self, txn_id: str) -> bool:
        with self._lock:
            remaining = [t for t in self._transactions if t.id != txn_id]
            if len(remaining) == len(self._transactions):
                return False
            self._commit_transactions(remaining)
            return True

    # ---- Rule actions --------------------------------------------------

    def add_rule(self, keyword: str, category: str, *, rule_id: str | None = None) -> Rule:
        """Add a rule; raises :class:`~true_north.rules.DuplicateRuleError` on a repeat keyword."""

        with self._lock:
            rule = make_rule(keyword, category, existing=self._rules, rule_id=rule_id)
            self._rules.append(rule)
            _logger.info("store:rule_added keyword=%s category=%s", rule.keyword, rule.category)
            return rule

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.id != rule_id]
            return len(self._rules) != before

    # ---- Settings actions ----------------------------------------------

    def set_bank_balance(self, balance: object) -> None:
        value = to_decimal(balance)
        with self._lock:
            self._bank_balance = value

    def set_savings_reserve(self, amount: object) -> None:
        value = to_decimal(amount)
        if value < 0:
            raise ValueError("savings reserve must not be negative")
        with self._lock:
            self._savings_reserve = value

    def mark_backed_up(self, when: datetime | None = None) -> None:
        with self._lock:
            self._last_backup_date = when or datetime.now()

    def reset(self) -> None:
        with self._lock:
            if self._is_analyzing:
                raise StoreBusyError("cannot reset while categorization is running")
            self._transactions = []
            self._rules = []
            self._patterns = []
            self._bank_balance = Decimal(0)
            self._savings_reserve = Decimal(0)
            self._last_backup_date = None

    # ---- Snapshots -----------------------------------------------------

    def export_state(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                transactions=[TransactionRecord.from_transaction(t) for t in self._transactions],
                rules=[RuleRecord.from_rule(r) for r in self._rules],
                bank_balance=self._bank_balance,
                savings_reserve=self._savings_reserve,
                last_backup_date=self._last_backup_date,
            )

    def import_state(self, data: StoreSnapshot | Mapping[str, Any]) -> None:
        """Replace the fields present in ``data``; absent fields are kept.

        ``data`` may be a :class:`StoreSnapshot` or a mapping in its JSON
        shape (either snake_case or the app's camelCase keys).
        """

        snap = data if isinstance(data, StoreSnapshot) else StoreSnapshot.model_validate(data)
        present = snap.model_fields_set
        with self._lock:
            if self._is_analyzing:
                raise StoreBusyError("cannot import while categorization is running")
            if "rules" in present:
                self._rules = [r.to_rule() for r in snap.rules]
            if "bank_balance" in present:
                self._bank_balance = snap.bank_balance
            if "savings_reserve" in present:
                self._savings_reserve = snap.savings_reserve
            if "last_backup_date" in present:
                self._last_backup_date = snap.last_backup_date
            if "transactions" in present:
                self._commit_transactions([r.to_transaction() for r in snap.transactions])
            _logger.info(
                "store:state_imported fields=%s num_transactions=%d num_rules=%d",
                ",".join(sorted(present)),
                len(self._transactions),
                len(self._rules),
            )

    # ---- Categorization ------------------------------------------------

    def _default_classifier(self) -> BatchClassifier:
        if self._classifier_factory is not None:
            return self._classifier_factory()
        from .llm import LLMClassifier

        return LLMClassifier()

    def reapply_rules(
        self,
        classifier: BatchClassifier | None = None,
        *,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> bool:
        """Run rules then the classifier over the stored transactions.

        Rule results are committed before classification starts, and classifier
        results are patched onto the live state by id, so edits made while the
        classifier runs are kept. A failure of
        the classification step is logged and leaves those rule results in
        place; the method then returns ``False``.

        Raises :class:`~true_north.errors.StoreBusyError` when a run is
        already in progress.
        """

        with self._lock:
            if self._is_analyzing:
                raise StoreBusyError("categorization is already running")
            self._is_analyzing = True
            transactions = list(self._transactions)
            rules = list(self._rules)

        try:
            clf = classifier or self._default_classifier()
            batch_size = self._batch_size or ClassifierSettings.from_env().residual_batch_size
            run_categorization_workflow(
                transactions,
                rules,
                classifier=clf,
                on_progress=on_progress,
                on_update=self._apply_rule_categories,
                on_results=self._apply_results,
                batch_size=batch_size,
            )
            return True
        except Exception:
            _logger.exception("store:categorization_failed")
            return False
        finally:
            with self._lock:
                self._is_analyzing = False

    # ---- Derived views -------------------------------------------------

    def safe_balance(self, today: date | None = None) -> SafeBalanceResult:
        with self._lock:
            return calculate_safe_balance(
                self._bank_balance,
                self._savings_reserve,
                self._transactions,
                self._patterns,
                today=today,
            )

    def subscriptions(self) -> list[Subscription]:
        return detect_subscriptions(self.transactions)

    def surcharges(self, month: date | None = None) -> SurchargeResult:
        return detect_surcharges(self.transactions, month)

    def round_ups(self, month: date | None = None) -> RoundUpResult:
        return calculate_round_up_savings(self.transactions, month)

    def uncategorized(self) -> list[Transaction]:
        return [t for t in self.transactions if t.category == UNCATEGORIZED]


__all__ = ["AppStore", "RuleRecord", "StoreSnapshot", "TransactionRecord"]
