"""
Workflow Context
================

Controlled access to the free-form state carried by a workflow instance.

The instance holds two JSON objects:
- context: entity data captured when the workflow started
- variables: values produced by nodes while the workflow runs

Lookups always consult context first and fall back to variables. Writes go
to variables only and are validated as JSON so instances stay persistable.
"""

import re
from typing import Any, Dict, Iterable, Optional

from pydantic import JsonValue, TypeAdapter, ValidationError

from commhub.config import ConditionOperator
from commhub.core.exceptions import ValidationException
from commhub.workflow.domain.nodes import Condition

_JSON_OBJECT = TypeAdapter(Dict[str, JsonValue])
_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_MISSING = object()


def validate_json_object(data: Optional[Dict[str, Any]], name: str = "context") -> Dict[str, Any]:
    """
    Validate that `data` is a JSON object.

    Raises:
        ValidationException: If a key is not a string or a value is not JSON
    """
    try:
        return _JSON_OBJECT.validate_python(dict(data or {}))
    except ValidationError as e:
        raise ValidationException(f"Workflow {name} must be a JSON object: {e}")


def get_nested_value(data: Any, path: str, default: Any = None) -> Any:
    """
    Walk a dotted path through nested dicts (and lists, by index).

    Example:
        >>> get_nested_value({"customer": {"email": "a@b.c"}}, "customer.email")
        'a@b.c'
    """
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            if key not in current:
                return default
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return default
    return current


class ContextView:
    """
    Read accessor over an instance's context and variables.

    Example:
        >>> view = ContextView({"amount": 1500}, {"approved": True})
        >>> view.lookup("amount")
        1500
        >>> view.resolve("Amount {{amount}}, approved={{approved}}")
        'Amount 1500, approved=True'
    """

    def __init__(self, context: Dict[str, Any], variables: Dict[str, Any]):
        self._context = context
        self._variables = variables

    def lookup(self, path: str, default: Any = None) -> Any:
        """Dotted lookup in context, then variables."""
        value = get_nested_value(self._context, path, _MISSING)
        if value is _MISSING or value is None:
            value = get_nested_value(self._variables, path, _MISSING)
        if value is _MISSING or value is None:
            return default
        return value

    def resolve(self, template: Optional[str]) -> Optional[str]:
        """
        Replace `{{a.b.c}}` placeholders.

        Unresolved placeholders become an empty string rather than an error.
        """
        if not template:
            return template

        def _substitute(match: "re.Match[str]") -> str:
            value = self.lookup(match.group(1).strip())
            return "" if value is None else str(value)

        return _PLACEHOLDER.sub(_substitute, template)

    def resolve_all(self, values: Any) -> list:
        """Resolve a single template or a list of templates into a list."""
        if values is None:
            return []
        if isinstance(values, str):
            values = [values]
        resolved = [self.resolve(v) for v in values]
        return [v for v in resolved if v]


class ConditionEvaluator:
    """
    Pure functions for CONDITION node evaluation.

    Operands that cannot be compared (e.g. a missing field against a number)
    make the predicate false instead of raising.
    """

    @staticmethod
    def evaluate(condition: Condition, view: ContextView) -> bool:
        actual = view.lookup(condition.field)
        expected = condition.value
        operator = condition.operator

        if operator == ConditionOperator.EQUALS:
            return actual == expected
        if operator == ConditionOperator.NOT_EQUALS:
            return actual != expected
        if actual is None:
            return False

        try:
            if operator == ConditionOperator.GREATER_THAN:
                return actual > expected
            if operator == ConditionOperator.LESS_THAN:
                return actual < expected
        except TypeError:
            return False

        if operator == ConditionOperator.CONTAINS:
            if isinstance(actual, (list, tuple, set, dict)):
                return expected in actual
            return str(expected) in str(actual)

        if operator == ConditionOperator.IN:
            return isinstance(expected, (list, tuple)) and actual in expected

        return False

    @classmethod
    def evaluate_all(cls, conditions: Iterable[Condition], view: ContextView) -> bool:
        """AND semantics; an empty list holds."""
        return all(cls.evaluate(condition, view) for condition in conditions)
