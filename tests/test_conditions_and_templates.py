"""
Tests for trigger matching, rule conditions, and template rendering.
"""

import random

from orchestrator.services import template_service
from orchestrator.utils.conditions import compare_values, evaluate_conditions, trigger_matches

ATTRIBUTES = {
    "email": "ada@example.com",
    "first_name": "Ada",
    "last_name": None,
    "full_name": "Ada",
    "company": "Analytical Engines",
    "custom_fields": {"plan": "Pro", "seats": "12"},
}


# =============================================================================
# Operators
# =============================================================================

def test_text_operators_are_case_insensitive():
    assert compare_values("Analytical Engines", "equals", "analytical engines")
    assert compare_values("Analytical Engines", "contains", "ENGINE")
    assert compare_values("Analytical Engines", "starts_with", "analytical")
    assert compare_values("Analytical Engines", "ends_with", "engines")
    assert compare_values("Analytical Engines", "not_contains", "steam")


def test_numeric_operators():
    assert compare_values("12", "greater_than", 10)
    assert compare_values(12, "less_than_or_equal", "12")
    assert not compare_values("twelve", "greater_than", 10)


def test_membership_operators():
    assert compare_values("pro", "in", ["Basic", "Pro"])
    assert compare_values("pro", "in", "basic, pro")
    assert compare_values("free", "not_in", ["basic", "pro"])


def test_empty_values():
    assert compare_values(None, "is_empty", None)
    assert compare_values("", "not_equals", "x")
    assert not compare_values(None, "equals", "x")
    assert compare_values("x", "is_not_empty", None)


def test_unknown_operator_is_false():
    assert compare_values("x", "resembles", "y") is False


# =============================================================================
# Condition lists
# =============================================================================

def test_empty_condition_list_passes():
    assert evaluate_conditions([], ATTRIBUTES)


def test_and_logic_requires_every_condition():
    conditions = [
        {"field": "company", "operator": "contains", "value": "engines"},
        {"field": "custom.plan", "operator": "equals", "value": "pro"},
    ]
    assert evaluate_conditions(conditions, ATTRIBUTES)
    conditions.append({"field": "custom.seats", "operator": "greater_than", "value": 50})
    assert not evaluate_conditions(conditions, ATTRIBUTES)


def test_or_logic_needs_one_condition():
    conditions = [
        {"field": "first_name", "operator": "equals", "value": "Grace"},
        {"field": "trigger.source", "operator": "equals", "value": "form"},
    ]
    assert evaluate_conditions(conditions, ATTRIBUTES, {"source": "form"}, "or")
    assert not evaluate_conditions(conditions, ATTRIBUTES, {"source": "import"}, "or")


# =============================================================================
# Trigger matching
# =============================================================================

def test_contact_event_config():
    config = {"event": "stage_changed", "to_stage": "qualified", "from_stage": "any"}
    assert trigger_matches(
        "contact_event", config, {"event": "stage_changed", "to_stage": "qualified", "from_stage": "new"}
    )
    assert not trigger_matches(
        "contact_event", config, {"event": "stage_changed", "to_stage": "lost"}
    )


def test_webhook_and_schedule_configs():
    assert trigger_matches("webhook", {"source": ["stripe", "shopify"]}, {"source": "stripe"})
    assert not trigger_matches("webhook", {"source": "stripe"}, {"source": "zapier"})
    assert trigger_matches("time_based", {}, {"schedule_key": "daily"})
    assert trigger_matches("manual_test", {"anything": 1}, None)


# =============================================================================
# Templates
# =============================================================================

def test_build_variables_exposes_fields_and_trigger_data():
    variables = template_service.build_variables(ATTRIBUTES, {"order_id": 42})
    assert variables["company"] == "Analytical Engines"
    assert variables["plan"] == "Pro"
    assert variables["trigger.order_id"] == "42"
    assert "last_name" not in variables


def test_full_name_falls_back():
    variables = template_service.build_variables({"full_name": ""})
    assert template_service.render_template("Hi {{ full_name }}!", variables) == "Hi there!"


def test_unknown_placeholder_renders_empty():
    assert template_service.render_template("[{{missing}}]", {}) == "[]"
    assert template_service.render_template(None, {}) is None


def test_extra_variables_override_attributes():
    variables = template_service.build_variables(ATTRIBUTES, extra={"first_name": "Countess"})
    assert template_service.render_template("{{first_name}}", variables) == "Countess"


def test_variant_overrides_templates():
    variants = [
        {"name": "A", "weight": 1, "subject": "Variant A for {{first_name}}"},
        {"name": "B", "weight": 0, "body": "never"},
    ]
    content = template_service.render_message(
        "Default", "Body for {{company}}", {"first_name": "Ada", "company": "AE"}, variants,
        rng=random.Random(7),
    )
    assert content.variant == "A"
    assert content.subject == "Variant A for Ada"
    assert content.body == "Body for AE"


def test_pick_variant_with_zero_weights_still_picks():
    variants = [{"name": "A", "weight": 0}, {"name": "B", "weight": 0}]
    assert template_service.pick_variant(variants, random.Random(1))["name"] in {"A", "B"}
    assert template_service.pick_variant([]) is None
