"""Keyword rules: matching transactions and suggesting keywords.

Public API:
    - :func:`apply_rules` categorizes ``Uncategorized`` transactions by
      case-insensitive substring match, longest keyword first.
    - :func:`suggest_keyword` derives a merchant keyword from a noisy bank
      description, used when the user asks to "always apply" a category.
    - :func:`make_rule` builds a validated :class:`~true_north.models.Rule`.

The keyword pipeline is an ordered tuple of named steps (``KEYWORD_STEPS``).
Order matters: e.g. amounts must be stripped before punctuation is blanked,
otherwise ``$50.00`` would leave a stray ``50`` token behind.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import NamedTuple

from .categories import CATEGORIES, UNCATEGORIZED
from .models import Rule, Rules, Transaction, Transactions


class DuplicateRuleError(ValueError):
    """Raised when a rule keyword already exists (case-insensitive)."""


# ---------------------------------------------------------------------------
# Rule matching
# ---------------------------------------------------------------------------


def apply_rules(transactions: Transactions, rules: Rules) -> list[Transaction]:
    """Return ``transactions`` with matching rules applied.

    Only transactions still in ``Uncategorized`` are considered, so rules
    never overwrite a category assigned earlier (by a person, a rule, or the
    classifier). Transactions that do not change are returned as the same
    objects.
    """

    if not rules:
        return list(transactions)

    # Longest (most specific) keyword first; sorted() is stable for ties.
    ordered = sorted(rules, key=lambda r: len(r.keyword), reverse=True)

    out: list[Transaction] = []
    for txn in transactions:
        if txn.category != UNCATEGORIZED:
            out.append(txn)
            continue
        upper_desc = txn.description.upper()
        match = next((r for r in ordered if r.keyword.upper() in upper_desc), None)
        out.append(replace(txn, category=match.category) if match else txn)
    return out


def make_rule(
    keyword: str,
    category: str,
    *,
    existing: Iterable[Rule] = (),
    rule_id: str | None = None,
) -> Rule:
    """Validate and build a rule.

    Raises ``ValueError`` for a blank keyword or an unknown category and
    :class:`DuplicateRuleError` when ``existing`` already holds the keyword.
    """

    kw = (keyword or "").strip().upper()
    if not kw:
        raise ValueError("rule keyword must be non-empty")
    if category not in CATEGORIES:
        raise ValueError(f"unknown category: {category!r}")
    if any(r.keyword.upper() == kw for r in existing):
        raise DuplicateRuleError(f"a rule for keyword {kw!r} already exists")
    return Rule(id=rule_id or uuid.uuid4().hex, keyword=kw, category=category)


# ---------------------------------------------------------------------------
# Keyword suggestion
# ---------------------------------------------------------------------------


class KeywordStep(NamedTuple):
    name: str
    apply: Callable[[str], str]


def _sub(pattern: str, repl: str = "", flags: int = 0) -> Callable[[str], str]:
    rx = re.compile(pattern, flags | re.ASCII)
    return lambda s: rx.sub(repl, s)


_NOISE_WORDS = ("VISA", "EFTPOS", "DEBIT", "CREDIT", "PURCHASE", "PTY", "LTD")
_LOCATIONS = (
    "SYDNEY",
    "MELBOURNE",
    "BRISBANE",
    "PERTH",
    "ADELAIDE",
    "CANBERRA",
    "HOBART",
    "DARWIN",
    "AUS",
    "NSW",
    "VIC",
    "QLD",
    "WA",
    "SA",
    "TAS",
    "ACT",
    "NT",
)

KEYWORD_STEPS: tuple[KeywordStep, ...] = (
    KeywordStep("uppercase", str.upper),
    KeywordStep("strip_dates", _sub(r"\d{2}/\d{2}")),
    KeywordStep("strip_amounts", _sub(r"\$[\d,.]+")),
    KeywordStep("strip_references", _sub(r"REF:\s*\S+", flags=re.IGNORECASE)),
    KeywordStep(
        "strip_noise_words",
        _sub(r"\b(?:" + "|".join(_NOISE_WORDS) + r")\b", flags=re.IGNORECASE),
    ),
    KeywordStep("strip_long_numbers", _sub(r"\d{4,}")),
    KeywordStep(
        "strip_location_suffix",
        _sub(r"\b(?:" + "|".join(_LOCATIONS) + r")\b.*$", flags=re.IGNORECASE),
    ),
    KeywordStep("blank_punctuation", _sub(r"[^\w\s]", " ")),
    KeywordStep("collapse_whitespace", _sub(r"\s+", " ")),
    KeywordStep("trim", str.strip),
)

_FALLBACK_LEN = 15
_MIN_TOKEN_LEN = 2
_STANDALONE_TOKEN_LEN = 4


def clean_description(description: str) -> str:
    """Run every step of ``KEYWORD_STEPS`` over ``description`` in order."""

    s = description
    for step in KEYWORD_STEPS:
        s = step.apply(s)
    return s


def suggest_keyword(description: str) -> str:
    """Suggest a rule keyword for a raw bank description.

    Examples
    --------
    >>> suggest_keyword("WOOLWORTHS 24/12 $50.00")
    'WOOLWORTHS'
    >>> suggest_keyword("VISA PURCHASE   KFC Tweed Heads FC")
    'KFC TWEED'

    A first word of four or more characters is taken as the whole merchant
    name ("COLES 4577" -> "COLES"); shorter first words keep the next word
    too ("JB HI FI" -> "JB HI"). This is a clustering heuristic, not a
    guarantee.
    """

    words = [w for w in clean_description(description).split(" ") if len(w) >= _MIN_TOKEN_LEN]
    if not words:
        return description.upper()[:_FALLBACK_LEN].strip()
    if len(words[0]) >= _STANDALONE_TOKEN_LEN:
        return words[0]
    return " ".join(words[:2])


__all__ = [
    "KEYWORD_STEPS",
    "DuplicateRuleError",
    "KeywordStep",
    "apply_rules",
    "clean_description",
    "make_rule",
    "suggest_keyword",
]
