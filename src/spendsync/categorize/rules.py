"""Rule-based spending categorization.

Categories are assigned by evaluating an ordered rule table against the
case-folded transaction text. The first rule with any matching pattern wins,
so rule order is a priority: coffee shops come before the generic restaurant
rule, food delivery before ride-hailing, and so on.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

UNCATEGORIZED = "Uncategorized"

CATEGORY_NAMES: tuple[str, ...] = (
    "Food",
    "Transportation",
    "Shopping",
    "Entertainment",
    "Utilities",
    "Healthcare",
    "Travel",
    "Education",
    "Groceries",
    "Coffee",
    "Subscriptions",
    UNCATEGORIZED,
)


@dataclass(frozen=True)
class CategoryRule:
    """Assign ``category`` when the text contains any of ``patterns``."""

    patterns: frozenset[str]
    category: str

    @classmethod
    def of(
        cls, category: str, patterns: Iterable[str], *, casefold: bool = True
    ) -> CategoryRule:
        """Build a rule, dropping blank patterns.

        Name rules match case-folded text, so their patterns are folded too.
        Provider hint fallbacks pass ``casefold=False`` and match exactly.
        """
        return cls(
            patterns=frozenset(
                p.casefold() if casefold else p for p in patterns if p.strip()
            ),
            category=category,
        )

    def matches(self, text: str) -> bool:
        return any(pattern in text for pattern in self.patterns)


@dataclass(frozen=True)
class RuleSet:
    """Ordered name rules plus ordered provider-hint fallbacks."""

    rules: tuple[CategoryRule, ...]
    fallbacks: tuple[CategoryRule, ...] = field(default_factory=tuple)

    def with_rule(self, rule: CategoryRule, *, index: int | None = None) -> RuleSet:
        """Return a new RuleSet with ``rule`` inserted (appended by default)."""
        rules = list(self.rules)
        if index is None:
            rules.append(rule)
        else:
            rules.insert(index, rule)
        return RuleSet(rules=tuple(rules), fallbacks=self.fallbacks)

    def categories(self) -> set[str]:
        return {r.category for r in (*self.rules, *self.fallbacks)}


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    CategoryRule.of(
        "Coffee",
        ["starbucks", "coffee", "dunkin", "peet", "philz", "blue bottle", "espresso"],
    ),
    CategoryRule.of(
        "Food",
        ["uber eats", "doordash", "grubhub", "postmates", "instacart", "seamless"],
    ),
    CategoryRule.of(
        "Transportation",
        [
            "uber",
            "lyft",
            "taxi",
            "metro",
            "subway",
            "train",
            "parking",
            "toll",
            "gas station",
            "chevron",
            "shell",
            "exxon",
            "bp",
        ],
    ),
    CategoryRule.of(
        "Shopping",
        ["amazon", "walmart", "target", "costco", "best buy", "ebay", "etsy"],
    ),
    CategoryRule.of(
        "Groceries",
        ["whole foods", "trader joe", "safeway", "kroger", "publix", "aldi", "grocery"],
    ),
    CategoryRule.of(
        "Subscriptions",
        [
            "netflix",
            "spotify",
            "hulu",
            "disney",
            "apple tv",
            "youtube premium",
            "hbo",
            "prime video",
        ],
    ),
    CategoryRule.of(
        "Entertainment",
        [
            "movie",
            "cinema",
            "amc",
            "regal",
            "theater",
            "concert",
            "ticketmaster",
            "steam",
            "playstation",
        ],
    ),
    CategoryRule.of(
        "Utilities",
        [
            "electric",
            "water bill",
            "gas bill",
            "internet",
            "comcast",
            "at&t",
            "verizon",
            "phone bill",
        ],
    ),
    CategoryRule.of(
        "Healthcare",
        ["doctor", "hospital", "pharmacy", "walgreens", "cvs", "medical", "dental"],
    ),
    CategoryRule.of(
        "Travel",
        [
            "airline",
            "airbnb",
            "hotel",
            "marriott",
            "hilton",
            "united",
            "delta",
            "southwest",
            "expedia",
        ],
    ),
    CategoryRule.of(
        "Education",
        ["udemy", "coursera", "tuition", "university", "college"],
    ),
    CategoryRule.of(
        "Food",
        [
            "restaurant",
            "diner",
            "burger",
            "pizza",
            "sushi",
            "taco",
            "grill",
            "bistro",
            "kitchen",
        ],
    ),
)

# Matched case-sensitively against the joined provider category hints, in
# this order. Provider labels are capitalized ("Food and Drink", "Shops").
DEFAULT_FALLBACKS: tuple[CategoryRule, ...] = (
    CategoryRule.of("Food", ["Food"], casefold=False),
    CategoryRule.of("Travel", ["Travel"], casefold=False),
    CategoryRule.of("Shopping", ["Shops", "Shopping"], casefold=False),
    CategoryRule.of("Entertainment", ["Recreation", "Entertainment"], casefold=False),
    CategoryRule.of("Healthcare", ["Healthcare", "Medical"], casefold=False),
    CategoryRule.of("Utilities", ["Service", "Utilities"], casefold=False),
)

DEFAULT_RULE_SET = RuleSet(rules=DEFAULT_RULES, fallbacks=DEFAULT_FALLBACKS)


class Classifier:
    """Deterministic categorizer over a RuleSet. No I/O."""

    def __init__(self, rule_set: RuleSet = DEFAULT_RULE_SET) -> None:
        self._rule_set = rule_set

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    def classify(
        self,
        name: str | None,
        merchant_name: str | None = None,
        provider_categories: Sequence[str] | None = None,
    ) -> str:
        text = f"{name or ''} {merchant_name or ''}".casefold()
        for rule in self._rule_set.rules:
            if rule.matches(text):
                return rule.category

        hints = " ".join(provider_categories or ())
        if hints:
            for rule in self._rule_set.fallbacks:
                if rule.matches(hints):
                    return rule.category

        return UNCATEGORIZED


_default_classifier = Classifier()


def classify(
    name: str | None,
    merchant_name: str | None = None,
    provider_categories: Sequence[str] | None = None,
) -> str:
    """Classify with the built-in rule table."""
    return _default_classifier.classify(name, merchant_name, provider_categories)
