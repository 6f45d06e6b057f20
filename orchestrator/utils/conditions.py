"""Trigger matching and rule condition evaluation.

Conditions are JSON objects of the form
``{"field": "company", "operator": "equals", "value": "Acme"}``. Fields
resolve against contact attributes; ``custom.<name>`` reads a custom field
and ``trigger.<key>`` reads the event payload.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from orchestrator.db.enums import ConditionLogic, ConditionOperator, TriggerType

logger = logging.getLogger(__name__)

ANY = "any"


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compare_values(actual: Any, operator: str, expected: Any) -> bool:
    """Compare a resolved field value against a condition value (case-insensitive)."""
    if actual is None or actual == "":
        return operator in (
            ConditionOperator.IS_EMPTY.value,
            ConditionOperator.NOT_EQUALS.value,
            ConditionOperator.NOT_CONTAINS.value,
            ConditionOperator.NOT_IN.value,
        )

    actual_text = str(actual).strip().lower()
    expected_text = "" if expected is None else str(expected).strip().lower()

    if operator == ConditionOperator.EQUALS.value:
        return actual_text == expected_text
    if operator == ConditionOperator.NOT_EQUALS.value:
        return actual_text != expected_text
    if operator == ConditionOperator.CONTAINS.value:
        return expected_text in actual_text
    if operator == ConditionOperator.NOT_CONTAINS.value:
        return expected_text not in actual_text
    if operator == ConditionOperator.STARTS_WITH.value:
        return actual_text.startswith(expected_text)
    if operator == ConditionOperator.ENDS_WITH.value:
        return actual_text.endswith(expected_text)
    if operator == ConditionOperator.IS_EMPTY.value:
        return False
    if operator == ConditionOperator.IS_NOT_EMPTY.value:
        return True
    if operator in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value):
        if isinstance(expected, (list, tuple, set)):
            options = {str(v).strip().lower() for v in expected}
        else:
            options = {v.strip() for v in expected_text.split(",")}
        found = actual_text in options
        return found if operator == ConditionOperator.IN.value else not found

    left, right = _to_float(actual), _to_float(expected)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GREATER_THAN.value:
        return left > right
    if operator == ConditionOperator.LESS_THAN.value:
        return left < right
    if operator == ConditionOperator.GREATER_THAN_OR_EQUAL.value:
        return left >= right
    if operator == ConditionOperator.LESS_THAN_OR_EQUAL.value:
        return left <= right

    logger.warning("Unknown condition operator: %s", operator)
    return False


def resolve_field(field: str, attributes: Mapping[str, Any], trigger_data: Mapping[str, Any]) -> Any:
    if field.startswith("trigger."):
        return trigger_data.get(field[len("trigger."):])
    if field.startswith("custom."):
        custom = attributes.get("custom_fields") or {}
        return custom.get(field[len("custom."):])
    return attributes.get(field)


def evaluate_conditions(
    conditions: list[dict] | None,
    attributes: Mapping[str, Any],
    trigger_data: Mapping[str, Any] | None = None,
    logic: str = ConditionLogic.AND.value,
) -> bool:
    """Evaluate a rule's condition list. An empty list always passes."""
    if not conditions:
        return True
    trigger_data = trigger_data or {}
    use_or = (logic or "").lower() == ConditionLogic.OR.value

    for condition in conditions:
        field = condition.get("field")
        if not field:
            logger.warning("Skipping condition without field")
            continue
        actual = resolve_field(field, attributes, trigger_data)
        result = compare_values(actual, condition.get("operator", ""), condition.get("value"))
        if use_or and result:
            return True
        if not use_or and not result:
            return False
    return not use_or


def _matches_option(configured: Any, actual: Any) -> bool:
    """Configured value of None/"any" matches everything; lists match membership."""
    if configured in (None, "", ANY):
        return True
    if isinstance(configured, (list, tuple)):
        return not configured or actual in configured
    return configured == actual


def trigger_matches(trigger_type: str, config: Mapping[str, Any] | None, trigger_data: Mapping[str, Any] | None) -> bool:
    """
    Check a rule's trigger_config against an inbound event payload.

    - contact_event: optional ``event`` name, stage change ``from_stage``/``to_stage``
      (``any`` wildcard), and ``field`` for field updates
    - webhook: optional ``source``
    - time_based: optional ``schedule_key``
    - manual_test: always matches
    """
    config = config or {}
    data = trigger_data or {}

    if trigger_type == TriggerType.MANUAL_TEST.value:
        return True

    if trigger_type == TriggerType.CONTACT_EVENT.value:
        if not _matches_option(config.get("event"), data.get("event")):
            return False
        if not _matches_option(config.get("from_stage"), data.get("from_stage")):
            return False
        if not _matches_option(config.get("to_stage"), data.get("to_stage")):
            return False
        if not _matches_option(config.get("field"), data.get("field")):
            return False
        return True

    if trigger_type == TriggerType.WEBHOOK.value:
        return _matches_option(config.get("source"), data.get("source"))

    if trigger_type == TriggerType.TIME_BASED.value:
        return _matches_option(config.get("schedule_key"), data.get("schedule_key"))

    return False
