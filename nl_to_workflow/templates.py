"""
Placeholder resolution for function parameters.

Parameter rules are written with {{path}} placeholders (for example
{{answers.spreadsheet_url}}). Placeholders that cannot be resolved are left
in place so the caller can see exactly which values still need completing.
"""

import json
import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{([^}]+)\}\}')


def get_nested_value(data: Any, path: str) -> Any:
    """
    Get a nested value from a dict/list using dot notation.
    Supports array indexing: 'items[0].name' or 'items.0.name'

    Examples:
        get_nested_value({'a': {'b': 1}}, 'a.b') -> 1
        get_nested_value({'apps': ['Gmail', 'Slack']}, 'apps.1') -> 'Slack'
    """
    if data is None:
        return None

    path = re.sub(r'\[(\d+)\]', r'.\1', path)
    current = data

    for part in path.split('.'):
        if current is None:
            return None

        if isinstance(current, list):
            if not part.lstrip('-').isdigit():
                return None
            idx = int(part)
            if -len(current) <= idx < len(current):
                current = current[idx]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None

    return current


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_template(template: str, context: Dict[str, Any]) -> Any:
    """
    Resolve {{path}} placeholders in a template string.

    A template consisting of exactly one placeholder resolves to the raw
    value (so lists and numbers keep their type). Inside longer strings,
    values are stringified and complex values JSON-encoded.

    Unresolved or blank values leave the placeholder untouched.
    """
    if not isinstance(template, str):
        return template

    whole = PLACEHOLDER_PATTERN.fullmatch(template.strip())
    if whole:
        value = get_nested_value(context, whole.group(1).strip())
        if _is_blank(value):
            logger.debug(f"Template variable not resolved: {whole.group(1).strip()}")
            return template
        return value

    def replace_var(match):
        value = get_nested_value(context, match.group(1).strip())
        if _is_blank(value):
            logger.debug(f"Template variable not resolved: {match.group(1).strip()}")
            return match.group(0)
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(replace_var, template)


def resolve_parameters(params: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively resolve all placeholders in a parameters dict."""
    resolved = {}

    for key, value in params.items():
        if isinstance(value, str):
            resolved[key] = resolve_template(value, context)
        elif isinstance(value, dict):
            resolved[key] = resolve_parameters(value, context)
        elif isinstance(value, list):
            resolved[key] = [
                resolve_template(item, context) if isinstance(item, str)
                else resolve_parameters(item, context) if isinstance(item, dict)
                else item
                for item in value
            ]
        else:
            resolved[key] = value

    return resolved


def is_placeholder(value: Any) -> bool:
    """True if value is an unresolved placeholder such as '{{answers.x}}'."""
    return isinstance(value, str) and PLACEHOLDER_PATTERN.fullmatch(value.strip()) is not None


def find_placeholders(value: Any) -> List[str]:
    """List placeholder paths still present anywhere inside value."""
    found: List[str] = []

    if isinstance(value, str):
        found.extend(m.strip() for m in PLACEHOLDER_PATTERN.findall(value))
    elif isinstance(value, dict):
        for v in value.values():
            found.extend(find_placeholders(v))
    elif isinstance(value, list):
        for item in value:
            found.extend(find_placeholders(item))

    return found
