"""
Deterministic local analyzer.

Terminal step of the provider fallback chain: keyword matching against the
capability catalog. It always returns a payload in the same shape a provider
would, and never raises.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from .interfaces import CapabilityCatalog
from .resolver import TRIGGER_ROLE_TOKENS, analyze_context
from .types import InputKind, NluTask, QuestionCategory

logger = logging.getLogger(__name__)

LOCAL_PROVIDER = "local"

BASE_CONFIDENCE = 0.3
PER_APP_CONFIDENCE = 0.1
MAX_LOCAL_CONFIDENCE = 0.6

TRIGGER_CHOICES = [
    'Every 5 minutes',
    'Every 15 minutes',
    'Every hour',
    'Daily',
    'Email received',
    'Form submission',
]


def detect_apps(prompt: str, catalog: CapabilityCatalog) -> List[str]:
    """
    Find catalog applications mentioned in the prompt.

    An app matches when its name, or any keyword hint of its functions,
    occurs in the lower-cased prompt. Results are ordered by first
    occurrence in the prompt, ties by catalog order.
    """
    lowered = prompt.lower()
    found = []

    for order, app_name in enumerate(catalog.list_apps()):
        positions = []
        name_pos = lowered.find(app_name.lower())
        if name_pos >= 0:
            positions.append(name_pos)
        for descriptor in catalog.list_functions(app_name):
            for hint in descriptor.keyword_hints:
                pos = lowered.find(hint.lower())
                if pos >= 0:
                    positions.append(pos)
        if positions:
            found.append((min(positions), order, app_name))

    found.sort()
    return [app_name for _, _, app_name in found]


def _is_answered(answers: Mapping[str, Any], field_name: str) -> bool:
    value = answers.get(field_name)
    return value is not None and str(value).strip() != ''


class LocalAnalyzer:
    """Rule-based stand-in for the external NLU providers."""

    def __init__(self, catalog: CapabilityCatalog):
        self.catalog = catalog

    def run(
        self,
        task: NluTask,
        prompt: str,
        answers: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        if task == NluTask.INTENT_ANALYSIS:
            return self.analyze_intent(prompt)
        return self.generate_questions(prompt, answers or {})

    def analyze_intent(self, prompt: str) -> Dict[str, Any]:
        apps = detect_apps(prompt, self.catalog)
        context = analyze_context(prompt, apps)
        confidence = min(MAX_LOCAL_CONFIDENCE, BASE_CONFIDENCE + PER_APP_CONFIDENCE * len(apps))

        logger.info(
            f"Local analysis: intent={context.intent}, trigger={context.trigger_app or '-'}, "
            f"actions={list(context.action_apps)}"
        )
        return {
            'intent': context.intent,
            'triggerApp': context.trigger_app,
            'actionApps': list(context.action_apps),
            'confidence': confidence,
        }

    def generate_questions(self, prompt: str, answers: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Fallback clarification questions. Question ids are raw keys the
        answer normalizer maps onto canonical fields; questions whose
        canonical field is already answered are skipped.
        """
        apps = detect_apps(prompt, self.catalog)
        context = analyze_context(prompt, apps)
        questions = []

        if not _is_answered(answers, 'trigger'):
            questions.append({
                'id': 'schedule_config',
                'promptText': 'How often should this automation run?',
                'inputKind': InputKind.CHOICE.value,
                'category': QuestionCategory.TRIGGER.value,
                'required': True,
                'choices': list(TRIGGER_CHOICES),
            })

        if context.trigger_app and not _is_answered(answers, 'search_query'):
            reads = any(
                any(token in d.function_id for token in TRIGGER_ROLE_TOKENS)
                for d in self.catalog.list_functions(context.trigger_app)
            )
            if reads:
                questions.append({
                    'id': 'search_query',
                    'promptText': f'Which {context.trigger_app} items should be included? '
                                  f'Describe a filter or search query.',
                    'inputKind': InputKind.TEXT.value,
                    'category': QuestionCategory.FILTER.value,
                    'required': True,
                })

        for app_name in context.action_apps:
            lowered = app_name.lower()
            if 'sheet' in lowered and not _is_answered(answers, 'spreadsheet_url'):
                questions.append({
                    'id': 'spreadsheet_url',
                    'promptText': f'Which spreadsheet should {app_name} write to? Paste its URL.',
                    'inputKind': InputKind.TEXT.value,
                    'category': QuestionCategory.DESTINATION.value,
                    'required': True,
                })
            elif 'slack' in lowered and not _is_answered(answers, 'slack_channel'):
                questions.append({
                    'id': 'slack_channel',
                    'promptText': 'Which Slack channel should receive the notifications?',
                    'inputKind': InputKind.TEXT.value,
                    'category': QuestionCategory.DESTINATION.value,
                    'required': True,
                })

        logger.info(f"Local analyzer produced {len(questions)} questions")
        return {'questions': questions}
