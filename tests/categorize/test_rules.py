from __future__ import annotations

import pytest

from spendsync.categorize.rules import (
    CATEGORY_NAMES,
    DEFAULT_RULE_SET,
    UNCATEGORIZED,
    CategoryRule,
    Classifier,
    RuleSet,
    classify,
)


@pytest.mark.parametrize(
    ("name", "merchant_name", "hints", "expected"),
    [
        ("Starbucks Coffee #204", None, [], "Coffee"),
        ("Luigi's Pizzeria", None, [], "Food"),
        ("Unknown Store", None, ["Travel"], "Travel"),
        ("Random LLC", None, [], "Uncategorized"),
        ("Shell Gas", None, [], "Transportation"),
    ],
)
def test_classify_reference_examples(
    name: str, merchant_name: str | None, hints: list[str], expected: str
) -> None:
    assert classify(name, merchant_name, hints) == expected


def test_coffee_rule_wins_over_generic_restaurant_rule() -> None:
    # "Espresso Bistro" matches both Coffee and the generic Food rule.
    assert classify("Espresso Bistro", None, []) == "Coffee"


def test_food_delivery_wins_over_ride_hailing() -> None:
    assert classify("UBER EATS ORDER", None, []) == "Food"
    assert classify("UBER TRIP", None, []) == "Transportation"


def test_merchant_name_is_matched_too() -> None:
    assert classify("POS DEBIT 1234", "Trader Joe's", []) == "Groceries"


def test_matching_is_case_insensitive() -> None:
    assert classify("NETFLIX.COM", None, []) == "Subscriptions"


def test_name_rules_take_priority_over_provider_hints() -> None:
    assert classify("Marriott Downtown", None, ["Food and Drink"]) == "Travel"


def test_provider_hint_fallbacks_follow_fixed_priority() -> None:
    # Both Food and Shops hints present: Food is evaluated first.
    assert classify("Acme", None, ["Shops", "Food and Drink"]) == "Food"
    assert classify("Acme", None, ["Shops"]) == "Shopping"
    assert classify("Acme", None, ["Recreation", "Gyms"]) == "Entertainment"
    assert classify("Acme", None, ["Service", "Cable"]) == "Utilities"


def test_missing_name_and_hints_is_uncategorized() -> None:
    assert classify(None, None, None) == UNCATEGORIZED


def test_classify_is_deterministic() -> None:
    results = {classify("Whole Foods Market", None, []) for _ in range(20)}

    assert results == {"Groceries"}


def test_default_rules_only_use_known_categories() -> None:
    assert DEFAULT_RULE_SET.categories() <= set(CATEGORY_NAMES)


def test_custom_rule_set_changes_result_without_touching_matcher() -> None:
    # input
    rule = CategoryRule.of("Education", ["bookshop"])

    # setup
    rule_set = DEFAULT_RULE_SET.with_rule(rule, index=0)
    classifier = Classifier(rule_set)

    # act
    result = classifier.classify("Campus Bookshop", None, [])

    # assert
    assert result == "Education"
    assert classify("Campus Bookshop", None, []) == UNCATEGORIZED


def test_with_rule_returns_new_rule_set() -> None:
    rule_set = RuleSet(rules=())

    extended = rule_set.with_rule(CategoryRule.of("Coffee", ["cafe"]))

    assert rule_set.rules == ()
    assert len(extended.rules) == 1


def test_category_rule_casefolds_and_drops_blank_patterns() -> None:
    rule = CategoryRule.of("Coffee", ["Blue Bottle", "  "])

    assert rule.patterns == frozenset({"blue bottle"})


def test_provider_hints_match_case_sensitively() -> None:
    # Provider labels are capitalized; lowercase words inside a hint do not count.
    assert classify("Random LLC", None, ["Professional services"]) == UNCATEGORIZED
    assert classify("Random LLC", None, ["food truck"]) == UNCATEGORIZED
    assert classify("Random LLC", None, ["Service", "Cable"]) == "Utilities"


def test_fallback_rules_keep_hint_capitalization() -> None:
    rule = CategoryRule.of("Shopping", ["Shops"], casefold=False)

    assert rule.patterns == frozenset({"Shops"})
    assert not rule.matches("shops")
