"""
Answer normalization.

Maps the heterogeneous keys that clarification questions (often LLM-chosen)
produce onto the canonical field schema the resolver is written against, and
canonicalizes free-text trigger phrases into trigger descriptors.
"""

import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import MalformedAnswerMapping

logger = logging.getLogger(__name__)


# Raw answer key -> canonical key. Unknown keys pass through unchanged.
FIELD_MAPPINGS: Dict[str, str] = {
    # Trigger
    'schedule_config': 'trigger',
    'trigger_frequency': 'trigger',
    'trigger_specification': 'trigger',
    'trigger_type': 'trigger',
    'frequency': 'trigger',
    'when_to_run': 'trigger',
    'automation_schedule': 'trigger',

    # Spreadsheet
    'sheet_url': 'spreadsheet_url',
    'google_sheets_url': 'spreadsheet_url',
    'sheet_link': 'spreadsheet_url',
    'sheets_destination': 'spreadsheet_url',
    'spreadsheet_destination': 'spreadsheet_url',

    # Sheet name
    'tab_name': 'sheet_name',
    'worksheet_name': 'sheet_name',

    # Email search
    'email_filter': 'search_query',
    'gmail_search': 'search_query',
    'email_criteria': 'search_query',

    # Slack
    'channel': 'slack_channel',
    'notification_channel': 'slack_channel',

    # Messages
    'notification_message': 'message_template',
    'main_action': 'action',
}

# Raw keys that describe a schedule even when their value is unusable
SCHEDULE_KEYS = frozenset({'schedule_config', 'frequency', 'trigger_frequency', 'automation_schedule'})

# Lower-cased phrase -> canonical trigger descriptor
TRIGGER_PHRASES: Dict[str, str] = {
    # Time-based
    'every 5 minutes': 'On a time-based trigger every 5 minutes',
    'every 15 minutes': 'On a time-based trigger every 15 minutes',
    'every 30 minutes': 'On a time-based trigger every 30 minutes',
    'every hour': 'On a time-based trigger every hour',
    'every 6 hours': 'On a time-based trigger every 6 hours',
    'daily': 'On a time-based trigger daily',
    'hourly': 'On a time-based trigger every hour',

    # Event-based
    'spreadsheet edit': 'On spreadsheet edit',
    'form submission': 'On form submission',
    'email received': 'On email received',
    'new email received': 'On email received',
    'webhook': 'On webhook received',

    # Variations
    'time-based': 'On a time-based trigger every 15 minutes',
    'schedule': 'On a time-based trigger every 15 minutes',
    'periodic': 'On a time-based trigger every 15 minutes',
}

# Secondary coercion, only consulted when the phrase table misses
TRIGGER_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r'\b15\s*min'), 'On a time-based trigger every 15 minutes'),
    (re.compile(r'\bhour'), 'On a time-based trigger every hour'),
)

DEFAULT_TRIGGER = 'On a time-based trigger every 15 minutes'
DEFAULT_ACTION = 'automated_workflow'
TRIGGER_TEMPLATE = 'On a time-based trigger {value}'

SHEET_URL_PATTERN = re.compile(r'/spreadsheets/d/([a-zA-Z0-9-_]+)')


def _is_trigger_descriptor(value: str) -> bool:
    return value in TRIGGER_PHRASES.values() or value.startswith('On ')


def normalize_trigger(value: Any) -> str:
    """
    Canonicalize a free-text trigger phrase.

    Already-canonical descriptors are returned unchanged, which keeps
    normalization idempotent.
    """
    text = re.sub(r'\s+', ' ', str(value).strip())
    if _is_trigger_descriptor(text):
        return text

    key = text.lower()
    if key in TRIGGER_PHRASES:
        return TRIGGER_PHRASES[key]
    if key.startswith('on ') and key[3:] in TRIGGER_PHRASES:
        return TRIGGER_PHRASES[key[3:]]

    for pattern, descriptor in TRIGGER_PATTERNS:
        if pattern.search(key):
            return descriptor

    return TRIGGER_TEMPLATE.format(value=text)


class AnswerNormalizer:
    """
    Rewrites raw answer maps into canonical answer maps.

    normalize(normalize(x)) == normalize(x) for every answer map x.
    """

    def __init__(
        self,
        field_mappings: Optional[Mapping[str, str]] = None,
        schedule_keys: Optional[Iterable[str]] = None,
    ):
        self.field_mappings = dict(FIELD_MAPPINGS if field_mappings is None else field_mappings)
        self.schedule_keys = frozenset(SCHEDULE_KEYS if schedule_keys is None else schedule_keys)

    def canonical_key(self, raw_key: str) -> str:
        return self.field_mappings.get(raw_key, raw_key)

    def normalize(self, raw_answers: Mapping[str, Any]) -> Dict[str, str]:
        """
        Args:
            raw_answers: Answer map keyed by whatever ids the questions used

        Returns:
            Canonical answer map
        """
        normalized: Dict[str, str] = {}

        for raw_key, value in raw_answers.items():
            key = self.canonical_key(raw_key)

            if key == 'trigger':
                if value is None or not str(value).strip():
                    continue
                descriptor = normalize_trigger(value)
                if descriptor != value:
                    logger.debug(f"Mapped trigger '{raw_key}': '{value}' -> '{descriptor}'")
                normalized[key] = descriptor
                continue

            if key != raw_key:
                logger.debug(f"Mapped field '{raw_key}' -> '{key}'")
            normalized[key] = value

        if 'trigger' not in normalized and any(k in self.schedule_keys for k in raw_answers):
            normalized['trigger'] = DEFAULT_TRIGGER
            logger.info("Added default trigger from schedule answer")

        if normalized and 'action' not in normalized:
            normalized['action'] = DEFAULT_ACTION

        return normalized

    __call__ = normalize


def normalize_answers(raw_answers: Mapping[str, Any]) -> Dict[str, str]:
    """Normalize with the default tables."""
    return AnswerNormalizer().normalize(raw_answers)


def require_canonical(answers: Mapping[str, Any], fields: Iterable[str]) -> None:
    """
    Raise MalformedAnswerMapping for the first canonical field that is absent
    or blank.
    """
    for name in fields:
        value = answers.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MalformedAnswerMapping(name)


def extract_spreadsheet_id(url: Optional[str]) -> str:
    """Extract the spreadsheet id from any Google Sheets URL format."""
    if not url:
        return ''
    match = SHEET_URL_PATTERN.search(str(url))
    return match.group(1) if match else ''


def validate_trigger_descriptor(trigger: Optional[str]) -> Tuple[bool, str, Optional[str]]:
    """
    Check that a trigger descriptor names a recognizable time or event trigger.

    Returns:
        Tuple of (is_valid, normalized_descriptor, error_message)
    """
    if not trigger:
        return False, '', 'Trigger configuration is required'

    lowered = trigger.lower().strip()

    if any(token in lowered for token in ('time-based', 'every', 'daily', 'hourly')):
        return True, trigger, None

    if any(token in lowered for token in ('spreadsheet', 'form', 'email', 'webhook')):
        return True, trigger, None

    if '15' in lowered and 'min' in lowered:
        return True, DEFAULT_TRIGGER, None

    return False, '', f"Unrecognized trigger format: {trigger}"
