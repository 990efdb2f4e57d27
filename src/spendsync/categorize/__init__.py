"""Spending categorization."""

from __future__ import annotations

from spendsync.categorize.loader import CategoryRulesLoader
from spendsync.categorize.rules import (
    CATEGORY_NAMES,
    DEFAULT_RULE_SET,
    UNCATEGORIZED,
    CategoryRule,
    Classifier,
    RuleSet,
    classify,
)

__all__ = [
    "CATEGORY_NAMES",
    "DEFAULT_RULE_SET",
    "UNCATEGORIZED",
    "CategoryRule",
    "CategoryRulesLoader",
    "Classifier",
    "RuleSet",
    "classify",
]
