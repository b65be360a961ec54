"""
Unit Tests for the Template & Expression Engine

Tests cover:
- Path substitution, missing paths, bracket notation and helpers
- Rendering of non-string values
- Expression evaluation with JavaScript-style operators
- Typed field values (evaluate_value)
- Block and comment markers in plain text
- Malformed templates and expressions, runtime evaluation errors
- Rejected attribute and method access
"""

import pytest

from chainly.core.exceptions import TemplateSyntaxError
from chainly.core.templating import (
    TemplateEngine,
    to_expression_syntax,
    transform_bracket_notation,
)


@pytest.fixture
def engine():
    return TemplateEngine()


# ============================================================================
# RENDER
# ============================================================================

@pytest.mark.unit
def test_render_substitutes_paths(engine):
    assert engine.render("{{a.b}}", {"a": {"b": "x"}}) == "x"
    assert engine.render("Hello {{user.name}}!", {"user": {"name": "Ada"}}) == "Hello Ada!"


@pytest.mark.unit
def test_render_plain_text_is_unchanged(engine):
    assert engine.render("no placeholders here", {}) == "no placeholders here"


@pytest.mark.unit
@pytest.mark.parametrize("template, expected", [
    ("Hi {{name}}, ticket {#42", "Hi Ada, ticket {#42"),
    ("Discount {% off for {{name}}", "Discount {% off for Ada"),
    ("{# not a comment #} {{name}}", "{# not a comment #} Ada"),
    ("{% if vip %}{{name}}{% endif %}", "{% if vip %}Ada{% endif %}"),
    ("## {{name}} %} #}", "## Ada %} #}"),
])
def test_render_block_and_comment_markers_are_plain_text(engine, template, expected):
    assert engine.render(template, {"name": "Ada", "vip": False}) == expected


@pytest.mark.unit
def test_render_block_markers_without_placeholders(engine):
    assert engine.render("50{% off {#today", {}) == "50{% off {#today"


@pytest.mark.unit
def test_render_none_template_is_empty(engine):
    assert engine.render(None, {"a": 1}) == ""


@pytest.mark.unit
@pytest.mark.parametrize("template", ["{{a.missing}}", "{{a.missing.deeper}}", "{{nothing}}"])
def test_render_missing_path_is_empty(engine, template):
    assert engine.render(template, {"a": {"b": "x"}}) == ""


@pytest.mark.unit
def test_render_bracket_notation(engine):
    assert engine.render('{{a.b["k"]}}', {"a": {"b": {"k": 7}}}) == "7"
    assert engine.render("{{a['my key']}}", {"a": {"my key": "v"}}) == "v"


@pytest.mark.unit
def test_transform_bracket_notation():
    assert transform_bracket_notation('{{a.b["k"]}}') == '{{lookup a.b "k"}}'


@pytest.mark.unit
def test_render_lookup_helper(engine):
    context = {"headers": {"content-type": "application/json"}}

    assert engine.render('{{lookup headers "content-type"}}', context) == "application/json"


@pytest.mark.unit
def test_render_json_helper(engine):
    assert engine.render("{{json items}}", {"items": [1, 2]}) == "[\n  1,\n  2\n]"


@pytest.mark.unit
def test_render_json_helper_missing_value_is_null(engine):
    assert engine.render("{{json missing}}", {}) == "null"


@pytest.mark.unit
def test_render_dict_key_named_like_a_method(engine):
    assert engine.render("{{data.items}}", {"data": {"items": "three"}}) == "three"


@pytest.mark.unit
def test_render_booleans_and_objects(engine):
    context = {"order": {"paid": True, "meta": {"a": 1}}}

    assert engine.render("{{order.paid}}", context) == "true"
    assert engine.render("{{order.meta}}", context) == '{"a": 1}'


@pytest.mark.unit
def test_render_malformed_template_raises(engine):
    with pytest.raises(TemplateSyntaxError) as exc_info:
        engine.render("Total: {{ order.total + }}", {"order": {"total": 1}})

    assert exc_info.value.fragment == "Total: {{ order.total + }}"
    assert exc_info.value.retry_allowed is False


# ============================================================================
# EVALUATE
# ============================================================================

@pytest.mark.unit
def test_to_expression_syntax_translates_operators():
    assert to_expression_syntax("{{a}} === 1 && !b") == "a == 1  and   not b"


@pytest.mark.unit
def test_to_expression_syntax_leaves_string_literals_alone():
    assert to_expression_syntax('name === "a && b"') == 'name == "a && b"'


@pytest.mark.unit
def test_evaluate_condition(engine, simple_context):
    assert engine.evaluate("{{order.total}} > 100 && order.paid", simple_context) is True
    assert engine.evaluate("{{order.total}} > 200 || !order.paid", simple_context) is False


@pytest.mark.unit
def test_evaluate_strict_equality(engine, simple_context):
    assert engine.evaluate('customer.email === "ana@example.com"', simple_context) is True
    assert engine.evaluate("order.id !== 456", simple_context) is False


@pytest.mark.unit
def test_evaluate_literals(engine, simple_context):
    assert engine.evaluate("order.paid === true", simple_context) is True
    assert engine.evaluate("order.missing === null", simple_context) is True


@pytest.mark.unit
def test_evaluate_missing_path_is_none(engine, simple_context):
    assert engine.evaluate("{{order.missing}}", simple_context) is None
    assert engine.evaluate("nothing.deep.path", simple_context) is None
    assert engine.evaluate("order.items[10]", simple_context) is None


@pytest.mark.unit
def test_evaluate_length(engine, simple_context):
    assert engine.evaluate("order.items.length", simple_context) == 2
    assert engine.evaluate("order.items.length > 1", simple_context) is True


@pytest.mark.unit
def test_evaluate_mismatched_types_compare_false(engine):
    assert engine.evaluate("a > 1", {"a": "text"}) is False


@pytest.mark.unit
def test_evaluate_non_string_passthrough(engine):
    assert engine.evaluate(5, {}) == 5
    assert engine.evaluate(True, {}) is True


@pytest.mark.unit
def test_evaluate_malformed_expression_raises(engine):
    with pytest.raises(TemplateSyntaxError, match="Invalid expression"):
        engine.evaluate("order.total >", {"order": {"total": 1}})


@pytest.mark.unit
def test_evaluate_private_attribute_rejected(engine):
    with pytest.raises(TemplateSyntaxError):
        engine.evaluate("name.__class__", {"name": "x"})


@pytest.mark.unit
@pytest.mark.parametrize("expression", [
    '"{0.__self__.__name__}".format(len)',
    '"{x}".format_map(order)',
    "name.format(name)",
])
def test_evaluate_format_methods_rejected(engine, expression):
    with pytest.raises(TemplateSyntaxError, match="Unsupported expression"):
        engine.evaluate(expression, {"name": "x", "order": {}})


@pytest.mark.unit
@pytest.mark.parametrize("expression, error", [
    ("{{order.total}} / 0 > 1", "ZeroDivisionError"),
    ("{{order.missing}} + 1 > 2", "TypeError"),
])
def test_evaluate_runtime_error_is_not_retriable(engine, simple_context, expression, error):
    with pytest.raises(TemplateSyntaxError, match=f"Failed to evaluate expression: {error}") as exc_info:
        engine.evaluate(expression, simple_context)

    assert exc_info.value.fragment == expression
    assert exc_info.value.retry_allowed is False


# ============================================================================
# EVALUATE VALUE
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("raw, expected", [
    ("42", 42),
    ("true", True),
    ('{"a": 1}', {"a": 1}),
    ("hello", "hello"),
])
def test_evaluate_value_without_placeholders(engine, raw, expected):
    assert engine.evaluate_value(raw, {}) == expected


@pytest.mark.unit
def test_evaluate_value_single_placeholder_keeps_type(engine, simple_context):
    assert engine.evaluate_value("{{order.total}}", simple_context) == 150
    assert engine.evaluate_value("{{order.items}}", simple_context) == [{"sku": "A"}, {"sku": "B"}]


@pytest.mark.unit
def test_evaluate_value_mixed_text_is_interpolated(engine, simple_context):
    assert engine.evaluate_value("Order {{order.id}} paid: {{order.paid}}", simple_context) == "Order 456 paid: true"
