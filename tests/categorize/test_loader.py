from __future__ import annotations

from pathlib import Path

import pytest

from spendsync.categorize.loader import CategoryRulesLoader
from spendsync.categorize.rules import DEFAULT_FALLBACKS, DEFAULT_RULE_SET, Classifier

SHIPPED_RULES = Path(__file__).resolve().parents[2] / "configs" / "category_rules.yaml"


def create_rules_file(tmp_path: Path, content: str) -> Path:
    """Create a rules file with the given content."""
    rules_path = tmp_path / "rules.yaml"
    rules_path.write_text(content)
    return rules_path


def test_shipped_rules_file_matches_builtin_rules() -> None:
    loader = CategoryRulesLoader(SHIPPED_RULES)

    assert loader.load() == DEFAULT_RULE_SET


def test_missing_file_falls_back_to_builtin_rules(tmp_path: Path) -> None:
    loader = CategoryRulesLoader(tmp_path / "nope.yaml")

    assert loader.load() is DEFAULT_RULE_SET


def test_file_order_is_evaluation_order(tmp_path: Path) -> None:
    # input
    content = """
rules:
  - category: Food
    patterns: [pizza]
  - category: Coffee
    patterns: [coffee]
"""

    # setup
    loader = CategoryRulesLoader(create_rules_file(tmp_path, content))
    classifier = Classifier(loader.load())

    # act
    result = classifier.classify("Coffee & Pizza Co", None, [])

    # assert
    assert result == "Food"


def test_fallbacks_default_when_omitted(tmp_path: Path) -> None:
    content = "rules:\n  - category: Coffee\n    patterns: [coffee]\n"
    loader = CategoryRulesLoader(create_rules_file(tmp_path, content))

    rule_set = loader.load()

    assert rule_set.fallbacks == DEFAULT_FALLBACKS
    assert Classifier(rule_set).classify("Nowhere", None, ["Travel"]) == "Travel"


def test_unknown_category_is_rejected(tmp_path: Path) -> None:
    content = "rules:\n  - category: Gambling\n    patterns: [casino]\n"
    loader = CategoryRulesLoader(create_rules_file(tmp_path, content))

    with pytest.raises(ValueError, match="Gambling"):
        loader.load()


@pytest.mark.parametrize(
    "content",
    [
        "- just\n- a list\n",
        "rules: nope\n",
        "rules:\n  - patterns: [x]\n",
        "rules:\n  - category: Coffee\n    patterns: []\n",
        "rules: [unclosed\n",
    ],
)
def test_malformed_files_raise_value_error(tmp_path: Path, content: str) -> None:
    loader = CategoryRulesLoader(create_rules_file(tmp_path, content))

    with pytest.raises(ValueError):
        loader.load()


def test_load_caches_rule_set(tmp_path: Path) -> None:
    rules_path = create_rules_file(
        tmp_path, "rules:\n  - category: Coffee\n    patterns: [coffee]\n"
    )
    loader = CategoryRulesLoader(rules_path)

    first = loader.load()
    rules_path.write_text("rules:\n  - category: Food\n    patterns: [pizza]\n")
    second = loader.load()

    assert first is second


def test_fallback_hints_from_file_are_case_sensitive(tmp_path: Path) -> None:
    content = (
        "rules: []\n"
        "fallbacks:\n"
        "  - category: Travel\n"
        "    hints: [Airlines]\n"
    )
    loader = CategoryRulesLoader(create_rules_file(tmp_path, content))
    classifier = Classifier(loader.load())

    assert classifier.classify("Nowhere", None, ["Airlines and Aviation"]) == "Travel"
    assert classifier.classify("Nowhere", None, ["airlines"]) == "Uncategorized"
