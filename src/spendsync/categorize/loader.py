from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from spendsync.categorize.rules import (
    CATEGORY_NAMES,
    DEFAULT_FALLBACKS,
    DEFAULT_RULE_SET,
    CategoryRule,
    RuleSet,
)


class CategoryRulesLoader:
    """
    Loads the categorization rule table from a YAML file.

    Expected shape::

        rules:
          - category: Coffee
            patterns: [starbucks, coffee]
        fallbacks:            # optional, defaults to the built-in hints
          - category: Travel
            hints: [Travel]  # matched case-sensitively

    Rule order in the file is the evaluation order.
    """

    def __init__(
        self,
        rules_path: Path,
        *,
        allowed_categories: tuple[str, ...] = CATEGORY_NAMES,
    ) -> None:
        """
        Initialize the rules loader.

        Args:
            rules_path: Path to the YAML rules file
            allowed_categories: Category labels rules may assign
        """
        self._rules_path = rules_path
        self._allowed = allowed_categories
        self._rule_set: RuleSet | None = None

    @property
    def rules_path(self) -> Path:
        """Return the rules file path."""
        return self._rules_path

    def load(self) -> RuleSet:
        """
        Load the rules file and return an immutable RuleSet.

        The result is cached after first load. A missing file yields the
        built-in rule set.

        Raises:
            ValueError: If the file is malformed or names an unknown category.
        """
        if self._rule_set is not None:
            return self._rule_set

        if not self._rules_path.exists():
            self._rule_set = DEFAULT_RULE_SET
            return self._rule_set

        try:
            data = yaml.safe_load(self._rules_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Could not parse rules file {self._rules_path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Rules file {self._rules_path} must be a mapping")

        rules = self._parse_entries(data.get("rules"), "patterns", section="rules")
        if "fallbacks" in data:
            fallbacks = self._parse_entries(
                data.get("fallbacks"), "hints", section="fallbacks", casefold=False
            )
        else:
            fallbacks = DEFAULT_FALLBACKS

        rule_set = RuleSet(rules=rules, fallbacks=fallbacks)
        self._validate_categories(rule_set)
        self._rule_set = rule_set
        return rule_set

    def _parse_entries(
        self,
        entries: Any,
        patterns_key: str,
        *,
        section: str,
        casefold: bool = True,
    ) -> tuple[CategoryRule, ...]:
        if entries is None:
            return ()
        if not isinstance(entries, list):
            raise ValueError(f"'{section}' must be a list in {self._rules_path}")

        parsed: list[CategoryRule] = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValueError(f"{section}[{idx}] must be a mapping")
            category = entry.get("category")
            patterns = entry.get(patterns_key)
            if not isinstance(category, str) or not category:
                raise ValueError(f"{section}[{idx}] is missing 'category'")
            if not isinstance(patterns, list) or not patterns:
                raise ValueError(f"{section}[{idx}] needs a non-empty '{patterns_key}'")
            parsed.append(
                CategoryRule.of(category, [str(p) for p in patterns], casefold=casefold)
            )
        return tuple(parsed)

    def _validate_categories(self, rule_set: RuleSet) -> None:
        """
        Check every rule category against the allowed labels.

        Raises:
            ValueError: If any category is not allowed.
        """
        invalid = sorted(c for c in rule_set.categories() if c not in self._allowed)
        if invalid:
            msg = f"Invalid categories in rules file: {invalid}"
            raise ValueError(msg)
