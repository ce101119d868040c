"""
Function resolution.

Scores every catalog function of an application against the automation
context with fixed, hand-authored weighted rules and selects the best one.
Scoring is a pure function of (prompt, context, catalog): no learning, no
randomness, ties broken by catalog order.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .conditions import evaluate_condition
from .config import (
    CONFIDENCE_NORMALIZER,
    DEFAULT_SELECTION_CONFIDENCE,
    MAX_CONFIDENCE,
    UNKNOWN_APP_CONFIDENCE,
)
from .interfaces import CapabilityCatalog
from .normalizer import extract_spreadsheet_id
from .templates import resolve_parameters
from .types import AutomationContext, FunctionDescriptor, FunctionSelection

logger = logging.getLogger(__name__)


# ============================================================================
# Scoring Rules
# ============================================================================

KEYWORD_HINT_WEIGHT = 15
ROLE_WEIGHT = 15
VERB_WEIGHT = 10
CATEGORY_WEIGHT = 5

TRIGGER_ROLE_TOKENS = ('search', 'read', 'get')
ACTION_ROLE_TOKENS = ('send', 'create', 'append')

VERBS = ('send', 'create', 'update', 'read', 'search', 'delete', 'add', 'remove', 'track', 'monitor')

FALLBACK_FUNCTION_ID = 'process_data'


def _any_token(path: str, tokens: Sequence[str]) -> Dict[str, Any]:
    return {'path': path, 'op': 'contains_any', 'value': list(tokens)}


def _all_tokens(path: str, tokens: Sequence[str]) -> Dict[str, Any]:
    return {'operator': 'AND', 'clauses': [{'path': path, 'op': 'contains', 'value': t} for t in tokens]}


@dataclass(frozen=True)
class IntentRule:
    """Bonus for functions of one app when the context carries a given intent."""
    intent: str
    app_name: str
    condition: Mapping[str, Any]
    bonus: int
    reason: str


DEFAULT_INTENT_RULES: Tuple[IntentRule, ...] = (
    IntentRule('email_auto_reply', 'Gmail',
               {'path': 'function_id', 'op': '==', 'value': 'set_auto_reply'},
               50, 'auto-reply intent - perfect match'),
    IntentRule('email_auto_reply', 'Gmail',
               {'path': 'function_id', 'op': 'contains', 'value': 'reply'},
               30, 'reply functionality for auto-responder'),
    IntentRule('email_tracking', 'Gmail',
               _any_token('function_id', ('search', 'read')),
               20, 'email tracking intent'),
    IntentRule('lead_followup', 'Gmail',
               _any_token('function_id', ('send', 'reply')),
               20, 'lead followup intent'),
    IntentRule('reporting_automation', 'Google Sheets',
               _any_token('function_id', ('read', 'create_chart')),
               20, 'reporting intent'),
)

# App -> (function when the app is the trigger, function when it is an action)
DEFAULT_FUNCTIONS: Dict[str, Tuple[str, str]] = {
    'Gmail': ('search_emails', 'send_email'),
    'Google Sheets': ('read_range', 'append_row'),
    'Google Drive': ('upload_file', 'upload_file'),
    'Google Calendar': ('create_event', 'create_event'),
    'Salesforce': ('search_leads', 'create_lead'),
    'HubSpot': ('search_contacts', 'create_contact'),
    'Slack': ('get_user_info', 'send_message'),
    'Stripe': ('list_payments', 'create_payment_intent'),
    'Shopify': ('list_orders', 'create_order'),
    'Asana': ('get_project_tasks', 'create_task'),
    'Trello': ('create_board', 'create_card'),
}


def score_function(
    descriptor: FunctionDescriptor,
    context: AutomationContext,
    intent_rules: Sequence[IntentRule] = DEFAULT_INTENT_RULES,
) -> Tuple[int, List[str]]:
    """
    Score one catalog function against the automation context.

    Returns:
        Tuple of (score, ordered list of matched reasons)
    """
    prompt = context.prompt.lower()
    function_id = descriptor.function_id
    app_name = descriptor.app_name
    facts = {
        'function_id': function_id,
        'app_name': app_name,
        'category': descriptor.category,
        'intent': context.intent,
    }

    score = 0
    reasons: List[str] = []

    for hint in descriptor.keyword_hints:
        if hint.lower() in prompt:
            score += KEYWORD_HINT_WEIGHT
            reasons.append(f'matches "{hint}"')

    for rule in intent_rules:
        if rule.intent == context.intent and rule.app_name == app_name and evaluate_condition(dict(rule.condition), facts):
            score += rule.bonus
            reasons.append(rule.reason)

    if context.trigger_app == app_name and evaluate_condition(_any_token('function_id', TRIGGER_ROLE_TOKENS), facts):
        score += ROLE_WEIGHT
        reasons.append('trigger app - should read/search')

    is_last_action = bool(context.action_apps) and context.action_apps[-1] == app_name
    if is_last_action and evaluate_condition(_any_token('function_id', ACTION_ROLE_TOKENS), facts):
        score += ROLE_WEIGHT
        reasons.append('action app - should create/send')

    for verb in VERBS:
        if verb in prompt and verb in function_id:
            score += VERB_WEIGHT
            reasons.append(f'{verb} action detected')

    if 'automation' in context.intent and descriptor.category == 'Automation':
        score += CATEGORY_WEIGHT
        reasons.append('automation category match')

    return score, reasons


# ============================================================================
# Parameter Rules
# ============================================================================

ParameterRule = Callable[[AutomationContext, Mapping[str, Any]], Dict[str, Any]]

PARAMETER_RULES: Dict[Tuple[str, str], ParameterRule] = {}


def parameter_rule(app_name: str, function_id: str):
    """Register a best-guess parameter builder for (app, function)."""
    def decorator(fn: ParameterRule) -> ParameterRule:
        PARAMETER_RULES[(app_name, function_id)] = fn
        return fn
    return decorator


@parameter_rule('Gmail', 'search_emails')
def _gmail_search_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    query = answers.get('search_query') or 'is:unread'

    if 'customer' in prompt:
        query += ' label:customers'
    if 'lead' in prompt:
        query += ' label:leads'
    if 'support' in prompt:
        query += ' label:support'
    if 'important' in prompt:
        query += ' is:important'
    from_match = re.search(r'\bfrom\s+([^\s]+)', prompt)
    if from_match:
        query += f' from:{from_match.group(1)}'

    if 'recent' in prompt:
        date_range = 'newer_than:7d'
    elif 'today' in prompt:
        date_range = 'newer_than:1d'
    else:
        date_range = ''

    return {
        'query': query,
        'maxResults': 100 if 'all' in prompt.split() else 50,
        'dateRange': date_range,
    }


@parameter_rule('Gmail', 'send_email')
def _gmail_send_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    return {
        'to': '{{answers.recipient_email}}',
        'subject': 'Follow-up Required' if 'follow' in prompt else 'Automated Notification',
        'body': answers.get('email_content') or answers.get('message_template') or '{{answers.email_content}}',
    }


@parameter_rule('Gmail', 'set_auto_reply')
def _gmail_auto_reply_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        'message': answers.get('email_content') or
        'Thank you for your email. I have received your message and will respond within 24 hours.',
        'restrictToContacts': False,
    }


@parameter_rule('Google Sheets', 'append_row')
def _sheets_append_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    columns = ['Date']
    for keyword, column in (('email', 'Email'), ('name', 'Name'), ('company', 'Company'),
                            ('phone', 'Phone'), ('status', 'Status'), ('amount', 'Amount')):
        if keyword in prompt:
            columns.append(column)

    return {
        'spreadsheetId': extract_spreadsheet_id(answers.get('spreadsheet_url')) or '{{answers.spreadsheet_url}}',
        'sheetName': '{{answers.sheet_name}}',
        'range': 'A:Z',
        'columns': columns,
    }


@parameter_rule('Google Sheets', 'read_range')
def _sheets_read_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    return {
        'spreadsheetId': extract_spreadsheet_id(answers.get('spreadsheet_url')) or '{{answers.spreadsheet_url}}',
        'range': 'A:Z' if 'all' in prompt.split() else 'A1:G100',
        'majorDimension': 'ROWS',
    }


@parameter_rule('Slack', 'send_message')
def _slack_send_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    channel = answers.get('slack_channel')
    if not channel:
        channel = '#general'
        if 'team' in prompt:
            channel = '#team'
        if 'alert' in prompt:
            channel = '#alerts'
        if 'sales' in prompt:
            channel = '#sales'
    elif not str(channel).startswith('#'):
        channel = f'#{channel}'

    return {
        'channel': channel,
        'text': answers.get('message_template') or 'Generated from automation workflow',
        'webhookUrl': '{{answers.slack_webhook_url}}',
    }


@parameter_rule('Google Calendar', 'create_event')
def _calendar_create_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        'calendarId': 'primary',
        'title': '{{answers.event_title}}',
        'durationMinutes': 30,
    }


@parameter_rule('HubSpot', 'create_contact')
def _hubspot_contact_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        'email': '{{answers.contact_email}}',
        'lifecyclestage': 'lead',
    }


@parameter_rule('Asana', 'create_task')
def _asana_task_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        'name': 'Auto-generated Task',
        'projectId': '{{answers.project_id}}',
        'description': 'Generated by automation',
    }


@parameter_rule('Trello', 'move_card')
def _trello_move_params(context: AutomationContext, answers: Mapping[str, Any]) -> Dict[str, Any]:
    prompt = context.prompt.lower()
    target_list = 'in-progress'
    if 'complete' in prompt:
        target_list = 'done'
    if 'review' in prompt:
        target_list = 'review'
    return {'cardId': '{{answers.card_id}}', 'listId': target_list, 'position': 'top'}


# ============================================================================
# Context Analysis
# ============================================================================

# Ordered: the first matching intent wins
INTENT_KEYWORDS: Tuple[Tuple[str, Dict[str, Any]], ...] = (
    ('email_auto_reply', _any_token('prompt', ('auto reply', 'automatic reply', 'mail responder', 'email responder'))),
    ('email_tracking', _all_tokens('prompt', ('track', 'email'))),
    ('lead_followup', _all_tokens('prompt', ('follow', 'lead'))),
    ('reporting_automation', _any_token('prompt', ('report', 'dashboard'))),
    ('notification_automation', _any_token('prompt', ('notify', 'alert'))),
    ('data_sync_automation', _any_token('prompt', ('sync', 'update'))),
    ('crm_automation', _any_token('prompt', ('crm', 'sales'))),
    ('marketing_automation', _any_token('prompt', ('marketing', 'campaign'))),
    ('support_automation', _any_token('prompt', ('support', 'ticket'))),
)

DEFAULT_INTENT = 'custom_automation'

# Explicit "when ..." phrasing that names the trigger app
TRIGGER_PHRASES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r'when.*gmail|when.*email'), 'Gmail'),
    (re.compile(r'when.*salesforce|when.*lead'), 'Salesforce'),
    (re.compile(r'when.*hubspot|when.*contact'), 'HubSpot'),
    (re.compile(r'when.*slack|when.*message'), 'Slack'),
    (re.compile(r'when.*form|when.*submission'), 'Google Forms'),
)


def detect_intent(prompt: str) -> str:
    facts = {'prompt': prompt.lower()}
    for intent, condition in INTENT_KEYWORDS:
        if evaluate_condition(condition, facts):
            return intent
    return DEFAULT_INTENT


def analyze_context(prompt: str, detected_apps: Sequence[str]) -> AutomationContext:
    """
    Derive intent, trigger app and ordered action apps from a prompt and the
    applications detected in it.
    """
    lowered = prompt.lower()
    intent = detect_intent(prompt)

    trigger_app = detected_apps[0] if detected_apps else ''

    for pattern, app_name in TRIGGER_PHRASES:
        if app_name in detected_apps and pattern.search(lowered):
            trigger_app = app_name
            break
    else:
        for app_name in detected_apps:
            if re.search(rf'when.*{re.escape(app_name.lower())}', lowered):
                trigger_app = app_name
                break

    action_apps = [app for app in detected_apps if app != trigger_app]

    return AutomationContext(
        intent=intent,
        trigger_app=trigger_app,
        action_apps=tuple(action_apps),
        prompt=prompt,
    )


# ============================================================================
# Resolver
# ============================================================================

class FunctionResolver:
    """Selects exactly one catalog function per application."""

    def __init__(
        self,
        catalog: CapabilityCatalog,
        intent_rules: Sequence[IntentRule] = DEFAULT_INTENT_RULES,
        default_functions: Optional[Mapping[str, Tuple[str, str]]] = None,
        parameter_rules: Optional[Mapping[Tuple[str, str], ParameterRule]] = None,
    ):
        self.catalog = catalog
        self.intent_rules = tuple(intent_rules)
        self.default_functions = dict(DEFAULT_FUNCTIONS if default_functions is None else default_functions)
        self.parameter_rules = PARAMETER_RULES if parameter_rules is None else parameter_rules

    def select(
        self,
        app_name: str,
        context: AutomationContext,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> FunctionSelection:
        """
        Pick the best-matching function of app_name for the context.

        Args:
            app_name: Application to resolve
            context: Automation context (intent, trigger/action apps, prompt)
            answers: Canonical answers used to fill parameters

        Returns:
            FunctionSelection with confidence in [0, 0.98]
        """
        answers = answers or {}
        descriptors = self.catalog.list_functions(app_name)

        if not descriptors:
            logger.warning(f"No catalog functions for app '{app_name}', using {FALLBACK_FUNCTION_ID}")
            return FunctionSelection(
                app_name=app_name,
                function_id=FALLBACK_FUNCTION_ID,
                confidence=UNKNOWN_APP_CONFIDENCE,
                rationale=['app functions not available in catalog'],
                resolved_parameters={},
            )

        best: Optional[FunctionDescriptor] = None
        best_score = -1
        best_reasons: List[str] = []

        for descriptor in descriptors:
            score, reasons = score_function(descriptor, context, self.intent_rules)
            # Strictly greater keeps the earliest descriptor on ties
            if score > best_score:
                best, best_score, best_reasons = descriptor, score, reasons

        if best_score == 0:
            return self._default_selection(app_name, context, answers, descriptors)

        selection = FunctionSelection(
            app_name=app_name,
            function_id=best.function_id,
            confidence=min(MAX_CONFIDENCE, best_score / CONFIDENCE_NORMALIZER),
            rationale=best_reasons,
            resolved_parameters=self.resolve_parameters(best, context, answers),
            score=best_score,
        )
        logger.info(
            f"Selected {app_name}.{selection.function_id} "
            f"(score={best_score}, confidence={selection.confidence:.2f})"
        )
        return selection

    def _default_selection(
        self,
        app_name: str,
        context: AutomationContext,
        answers: Mapping[str, Any],
        descriptors: Sequence[FunctionDescriptor],
    ) -> FunctionSelection:
        is_trigger = context.trigger_app == app_name
        defaults = self.default_functions.get(app_name)

        descriptor = None
        if defaults:
            function_id = defaults[0] if is_trigger else defaults[1]
            descriptor = self.catalog.get_function(app_name, function_id)
        else:
            function_id = descriptors[0].function_id
            descriptor = descriptors[0]

        logger.info(f"No scoring match for {app_name}, using default {function_id}")

        parameters = self.resolve_parameters(descriptor, context, answers) if descriptor else {}
        return FunctionSelection(
            app_name=app_name,
            function_id=function_id,
            confidence=DEFAULT_SELECTION_CONFIDENCE,
            rationale=['default function for app type'],
            resolved_parameters=parameters,
        )

    def resolve_parameters(
        self,
        descriptor: FunctionDescriptor,
        context: AutomationContext,
        answers: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Fill parameters from the per-(app, function) rule and the canonical
        answers. Required schema fields with no value become
        {{answers.<field>}} placeholders.
        """
        rule = self.parameter_rules.get((descriptor.app_name, descriptor.function_id))
        params = rule(context, answers) if rule else {}

        for field_name in descriptor.required_fields:
            if field_name not in params:
                params[field_name] = f'{{{{answers.{field_name}}}}}'

        template_context = {
            'answers': dict(answers),
            'context': {
                'intent': context.intent,
                'trigger_app': context.trigger_app,
                'action_apps': list(context.action_apps),
            },
        }
        return resolve_parameters(params, template_context)
