"""The closed spending-category set.

Every category assigned by rules, the classifier, or the interactive review
must be one of :data:`CATEGORIES`. ``"Uncategorized"`` is a member of the set
and doubles as the "not yet classified" marker that makes a transaction
eligible for rules and the classifier.
"""

from __future__ import annotations

from typing import Final

UNCATEGORIZED: Final = "Uncategorized"
SUBSCRIPTIONS: Final = "Subscriptions"
FEES_AND_CHARGES: Final = "Fees & Charges"

CATEGORIES: Final[tuple[str, ...]] = (
    "Groceries",
    "Dining Out",
    "Transport",
    "Utilities",
    "Entertainment",
    "Health",
    "Insurance",
    SUBSCRIPTIONS,
    "Shopping",
    "Travel",
    "Personal Care",
    "Home",
    "Education",
    "Gifts",
    FEES_AND_CHARGES,
    "Income",
    "Transfer",
    UNCATEGORIZED,
)


def is_valid_category(value: str) -> bool:
    return value in CATEGORIES


def coerce_category(value: object) -> str:
    """Return ``value`` when it names a known category, else ``UNCATEGORIZED``.

    Surrounding whitespace is ignored; anything that is not an exact member
    (including non-strings) is treated as a hallucinated category.
    """

    if not isinstance(value, str):
        return UNCATEGORIZED
    s = value.strip()
    return s if s in CATEGORIES else UNCATEGORIZED


__all__ = [
    "CATEGORIES",
    "FEES_AND_CHARGES",
    "SUBSCRIPTIONS",
    "UNCATEGORIZED",
    "coerce_category",
    "is_valid_category",
]
