import pytest

from leadflow.core.conditions import evaluate_condition, get_nested_value, render_template


CONTEXT = {
    "name": "Acme",
    "rating": "4.5",
    "reviews": 12,
    "tags": ["vip", "local"],
    "business": {"owner": {"email": "owner@acme.test"}, "city": "Leeds"},
    "empty": "",
}


def test_nested_lookup():
    assert get_nested_value(CONTEXT, "business.owner.email") == "owner@acme.test"
    assert get_nested_value(CONTEXT, "tags.1") == "local"
    assert get_nested_value(CONTEXT, "tags.5") is None
    assert get_nested_value(CONTEXT, "business.zip.code") is None
    assert get_nested_value(CONTEXT, "") is None


def test_equals_coerces_numbers():
    assert evaluate_condition("rating", "equals", 4.5, CONTEXT)
    assert evaluate_condition("reviews", "equals", "12", CONTEXT)
    assert evaluate_condition("name", "equals", "Acme", CONTEXT)
    assert not evaluate_condition("name", "equals", "acme", CONTEXT)


def test_contains():
    assert evaluate_condition("name", "contains", "ACM", CONTEXT)
    assert evaluate_condition("tags", "contains", "vip", CONTEXT)
    assert not evaluate_condition("tags", "contains", "remote", CONTEXT)
    assert not evaluate_condition("missing", "contains", "x", CONTEXT)


def test_ordering_operators():
    assert evaluate_condition("rating", "greater_than", 4, CONTEXT)
    assert evaluate_condition("reviews", "less_than", "20", CONTEXT)
    assert not evaluate_condition("missing", "greater_than", 1, CONTEXT)
    # Incomparable values evaluate to False instead of raising.
    assert not evaluate_condition("name", "greater_than", 1, CONTEXT)


def test_exists():
    assert evaluate_condition("business.city", "exists", None, CONTEXT)
    assert not evaluate_condition("empty", "exists", None, CONTEXT)
    assert not evaluate_condition("nope", "exists", None, CONTEXT)


def test_unknown_operator_raises():
    with pytest.raises(ValueError, match="between"):
        evaluate_condition("reviews", "between", [1, 20], CONTEXT)


def test_render_template_styles():
    assert render_template("Hi {name}", CONTEXT) == "Hi Acme"
    assert render_template("Hi {{ name }} in {business.city}", CONTEXT) == "Hi Acme in Leeds"
    assert render_template("Hi {unknown}", CONTEXT) == "Hi {unknown}"


def test_render_template_keeps_types_and_recurses():
    assert render_template("{tags}", CONTEXT) == ["vip", "local"]
    assert render_template("{{reviews}}", CONTEXT) == 12
    rendered = render_template(
        {"to": "{business.owner.email}", "cc": ["{name}@example.com"], "count": 3},
        CONTEXT,
    )
    assert rendered == {"to": "owner@acme.test", "cc": ["Acme@example.com"], "count": 3}
