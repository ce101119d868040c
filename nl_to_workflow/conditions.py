"""
Declarative clause evaluation for scoring rules.

Rules are data: {"path": "function_id", "op": "contains", "value": "search"}
or {"operator": "OR", "clauses": [...]}. Evaluation is side-effect free.
"""

import logging
from typing import Any, Dict

from .templates import get_nested_value

logger = logging.getLogger(__name__)


def compare_values(actual: Any, op: str, expected: Any) -> bool:
    """
    Compare two values using the specified operator.

    Supported operators:
    - Equality: ==, !=
    - String: contains, not_contains, starts_with, ends_with
    - Membership: in, contains_any
    - Existence: exists, not_exists
    """
    if op == 'exists':
        return actual is not None
    elif op == 'not_exists':
        return actual is None

    if actual is None:
        return False

    if op == '==' or op == 'eq':
        return actual == expected
    elif op == '!=' or op == 'neq':
        return actual != expected

    elif op == 'contains':
        return str(expected).lower() in str(actual).lower()
    elif op == 'not_contains':
        return str(expected).lower() not in str(actual).lower()
    elif op == 'starts_with':
        return str(actual).lower().startswith(str(expected).lower())
    elif op == 'ends_with':
        return str(actual).lower().endswith(str(expected).lower())

    elif op == 'in':
        return actual in (expected or ())
    elif op == 'contains_any':
        text = str(actual).lower()
        return any(str(token).lower() in text for token in (expected or ()))

    else:
        logger.warning(f"Unknown comparison operator: {op}")
        return False


def evaluate_clause(clause: Dict[str, Any], context: Dict[str, Any]) -> bool:
    """
    Evaluate a single clause against the context.

    Clause format:
    {"path": "function_id", "op": "contains", "value": "reply"}
    """
    actual = get_nested_value(context, clause.get('path', ''))
    return compare_values(actual, clause.get('op', '=='), clause.get('value'))


def evaluate_condition(condition: Dict[str, Any], context: Dict[str, Any]) -> bool:
    """
    Evaluate a structured condition.

    Formats:
    1. Single clause: {"path": ..., "op": ..., "value": ...}
    2. Multi-clause: {"operator": "AND"|"OR", "clauses": [...]}
       Clauses may themselves be multi-clause conditions.

    An empty condition passes.
    """
    if not condition:
        return True

    if 'path' in condition:
        return evaluate_clause(condition, context)

    operator = condition.get('operator', 'AND').upper()
    clauses = condition.get('clauses', [])

    if not clauses:
        return True

    if operator == 'AND':
        return all(evaluate_condition(c, context) for c in clauses)
    elif operator == 'OR':
        return any(evaluate_condition(c, context) for c in clauses)
    else:
        logger.warning(f"Unknown logical operator: {operator}")
        return False
