"""Automation rule enums."""

from enum import Enum


class TriggerType(str, Enum):
    """Event kinds that can fire an automation rule."""

    TIME_BASED = "time_based"
    CONTACT_EVENT = "contact_event"
    WEBHOOK = "webhook"
    MANUAL_TEST = "manual_test"


class DependencyType(str, Enum):
    """
    Relationship between a rule and the rule it depends on.

    - required: the rule waits until the referenced rule was sent to the contact
    - blocks: once the rule fires, the referenced rule may not fire for the contact
    - triggers: sending the rule schedules the referenced rule for the contact
    """

    REQUIRED = "required"
    BLOCKS = "blocks"
    TRIGGERS = "triggers"


class ExecutionStatus(str, Enum):
    """Status of one rule firing for one contact."""

    PENDING = "pending"  # waiting on required dependencies
    SCHEDULED = "scheduled"
    PROCESSING = "processing"  # claimed by a sweep
    SENT = "sent"
    FAILED = "failed"


class ConditionLogic(str, Enum):
    AND = "and"
    OR = "or"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
