"""Public interface for the ``true_north`` package.

Symbol re-exports only; see the individual modules for behavior.
"""

from .analytics import calculate_round_up_savings, detect_subscriptions, detect_surcharges
from .categories import CATEGORIES, UNCATEGORIZED
from .errors import ClassificationError, ErrorKind, StoreBusyError
from .llm import LLMClassifier, OpenAIChatClassifier, RetryPolicy, TextClassifier
from .models import (
    AnalysisResult,
    RecurringPattern,
    RoundUpResult,
    Rule,
    SafeBalanceResult,
    Subscription,
    SurchargeResult,
    Transaction,
    UpcomingBill,
)
from .normalizers import CSVNormalizer, ParseResult
from .recurring import detect_recurring, mark_recurring_transactions, merchant_key
from .rules import DuplicateRuleError, apply_rules, suggest_keyword
from .safe_balance import calculate_safe_balance
from .store import AppStore, StoreSnapshot
from .workflow import run_categorization_workflow

__all__ = [
    # Categorization
    "apply_rules",
    "suggest_keyword",
    "run_categorization_workflow",
    "LLMClassifier",
    "OpenAIChatClassifier",
    "RetryPolicy",
    "TextClassifier",
    # Detection and projections
    "detect_recurring",
    "mark_recurring_transactions",
    "merchant_key",
    "calculate_safe_balance",
    "detect_subscriptions",
    "detect_surcharges",
    "calculate_round_up_savings",
    # Ingest and state
    "CSVNormalizer",
    "ParseResult",
    "AppStore",
    "StoreSnapshot",
    # Models and errors
    "CATEGORIES",
    "UNCATEGORIZED",
    "AnalysisResult",
    "RecurringPattern",
    "RoundUpResult",
    "Rule",
    "SafeBalanceResult",
    "Subscription",
    "SurchargeResult",
    "Transaction",
    "UpcomingBill",
    "ClassificationError",
    "ErrorKind",
    "StoreBusyError",
    "DuplicateRuleError",
]
