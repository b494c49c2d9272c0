"""Two-stage categorization: user rules first, the classifier for the rest.

Rules are applied synchronously and reported through ``on_update`` before any
network call so a caller can show rule-resolved categories immediately. The
classifier only ever sees transactions that are still ``Uncategorized``; when
rules resolve everything it is not called at all.

Classifier exceptions are not caught here. :class:`true_north.store.AppStore`
owns recovery from a failed run.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Protocol

from .categories import UNCATEGORIZED
from .logging_setup import get_logger
from .models import AnalysisResult, Rules, Transaction, Transactions
from .rules import apply_rules

_logger = get_logger("true_north.workflow")

DEFAULT_BATCH_SIZE = 50


class BatchClassifier(Protocol):
    def analyze_batch(
        self,
        transactions: Transactions,
        batch_size: int | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> Mapping[str, AnalysisResult]: ...


def merge_results(
    transactions: Transactions, results: Mapping[str, AnalysisResult]
) -> list[Transaction]:
    """Patch each transaction that has a result; pass the others through."""

    out: list[Transaction] = []
    for txn in transactions:
        res = results.get(txn.id)
        if res is None:
            out.append(txn)
            continue
        out.append(
            replace(
                txn,
                category=res.category,
                is_recurring=txn.is_recurring or res.is_subscription or res.is_recurring,
                merchant_name=res.clean_merchant_name or txn.merchant_name,
            )
        )
    return out


def run_categorization_workflow(
    transactions: Transactions,
    rules: Rules,
    *,
    classifier: BatchClassifier,
    on_progress: Callable[[int, int], None] | None = None,
    on_update: Callable[[list[Transaction]], None] | None = None,
    on_results: Callable[[Mapping[str, AnalysisResult]], None] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[Transaction]:
    """Categorize ``transactions`` and return the updated list.

    Parameters
    ----------
    transactions:
        The full transaction set; order is preserved in the result.
    rules:
        Keyword rules applied before the classifier.
    classifier:
        Anything with an ``analyze_batch`` method, normally
        :class:`true_north.llm.LLMClassifier`.
    on_progress:
        Forwarded to ``analyze_batch``; called as ``(completed, total)``.
    on_update:
        Called once with the rule-applied list before classification starts.
    on_results:
        Called with the classifier results, keyed by transaction id, before
        they are merged. Not called when rules leave nothing to classify.
    batch_size:
        Chunk size for the classifier.
    """

    current = apply_rules(transactions, rules)
    if on_update is not None:
        on_update(current)

    residual = [t for t in current if t.category == UNCATEGORIZED]
    _logger.info(
        "workflow:rules_applied num_transactions=%d residual=%d num_rules=%d",
        len(current),
        len(residual),
        len(rules),
    )
    if not residual:
        return current

    results = classifier.analyze_batch(residual, batch_size, on_progress)
    if on_results is not None:
        on_results(results)
    merged = merge_results(current, results)
    _logger.info("workflow:classified num_results=%d", len(results))
    return merged


__all__ = ["BatchClassifier", "merge_results", "run_categorization_workflow"]
