"""
Provider orchestration for natural-language understanding tasks.

Providers are tried sequentially in ascending cost order, each model variant
of a provider before the next provider. Every attempt has a bounded timeout
and its raw text must decode as strict JSON and validate against the task's
schema. When every attempt fails the deterministic local analyzer answers,
so the orchestrator as a whole never fails.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx
import jsonschema

from .config import PROVIDER_TIMEOUT_SECONDS, default_providers
from .errors import AllProvidersExhausted, MalformedProviderResponse, ProviderFailure
from .interfaces import CapabilityCatalog, ProviderTransport
from .local_analyzer import LOCAL_PROVIDER, LocalAnalyzer
from .normalizer import AnswerNormalizer
from .types import (
    AttemptEvent,
    ClarificationQuestion,
    InputKind,
    IntentAnalysis,
    NluTask,
    ProviderConfig,
    QuestionCategory,
    RequestConfig,
    TaskOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_CONFIDENCE = 0.8


# ============================================================================
# Response Schemas
# ============================================================================

INTENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["intent", "triggerApp", "actionApps"],
    "properties": {
        "intent": {"type": "string", "minLength": 1},
        "triggerApp": {"type": "string", "minLength": 1},
        "actionApps": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
}

QUESTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "promptText", "inputKind", "category"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "promptText": {"type": "string", "minLength": 1},
        "inputKind": {"enum": [k.value for k in InputKind]},
        "category": {"enum": [c.value for c in QuestionCategory]},
        "required": {"type": "boolean"},
        "choices": {"type": "array", "items": {"type": "string"}, "minItems": 1},
    },
    # choices present iff the question is a choice question
    "if": {"properties": {"inputKind": {"const": "choice"}}},
    "then": {"required": ["choices"]},
    "else": {"not": {"required": ["choices"]}},
}

QUESTIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["questions"],
    "properties": {
        "questions": {"type": "array", "items": QUESTION_SCHEMA},
    },
}

TASK_SCHEMAS: Dict[NluTask, Dict[str, Any]] = {
    NluTask.INTENT_ANALYSIS: INTENT_SCHEMA,
    NluTask.QUESTION_GENERATION: QUESTIONS_SCHEMA,
}


# ============================================================================
# Task Prompts
# ============================================================================

INTENT_SYSTEM_PROMPT = """You analyze automation requests.
Respond with a single JSON object and nothing else (no markdown, no code fences):
{"intent": "<snake_case intent>", "triggerApp": "<app>", "actionApps": ["<app>", ...], "confidence": <0..1>}
triggerApp and actionApps must be names from the list of available apps."""

QUESTIONS_SYSTEM_PROMPT = """You write clarification questions for automation requests.
Respond with a single JSON object and nothing else (no markdown, no code fences):
{"questions": [{"id": "<snake_case field>", "promptText": "<question>", "inputKind": "choice"|"text",
"category": "trigger"|"filter"|"destination"|"permission", "required": true, "choices": ["..."]}]}
Include "choices" only for inputKind "choice". Do not ask about fields that are already answered."""


def build_task_prompt(
    task: NluTask,
    prompt: str,
    apps: Sequence[str],
    answers: Optional[Mapping[str, Any]] = None
) -> Tuple[str, str]:
    """Return (system_prompt, task_prompt) for an NLU task."""
    if task == NluTask.INTENT_ANALYSIS:
        return INTENT_SYSTEM_PROMPT, (
            f"Automation request: {prompt}\n"
            f"Available apps: {', '.join(apps)}"
        )

    answered = ', '.join(sorted(answers or {})) or 'none'
    return QUESTIONS_SYSTEM_PROMPT, (
        f"Automation request: {prompt}\n"
        f"Available apps: {', '.join(apps)}\n"
        f"Already answered fields: {answered}"
    )


def decode_response(
    task: NluTask,
    raw_text: str,
    provider: str,
    variant: Optional[str] = None
) -> Dict[str, Any]:
    """
    Strictly decode provider text for a task.

    No fence stripping or substring scraping: the text must be a JSON object
    that validates against the task schema.

    Raises:
        MalformedProviderResponse: On invalid JSON or schema mismatch
    """
    try:
        data = json.loads(raw_text)
    except (TypeError, ValueError) as e:
        raise MalformedProviderResponse(provider, f"response is not strict JSON: {e}", variant)

    try:
        jsonschema.validate(data, TASK_SCHEMAS[task])
    except jsonschema.ValidationError as e:
        raise MalformedProviderResponse(provider, f"schema mismatch: {e.message}", variant)

    return data


def question_from_dict(data: Mapping[str, Any]) -> ClarificationQuestion:
    choices = data.get('choices')
    return ClarificationQuestion(
        id=data['id'],
        prompt_text=data['promptText'],
        input_kind=InputKind(data['inputKind']),
        category=QuestionCategory(data['category']),
        required=data.get('required', True),
        choices=list(choices) if choices is not None else None,
    )


# ============================================================================
# Orchestrator
# ============================================================================

class ProviderOrchestrator:
    """
    Runs NLU tasks through the cost-ordered provider chain.

    Credentials only arrive through the per-call RequestConfig; nothing
    process-wide is read or written here.
    """

    def __init__(
        self,
        transport: ProviderTransport,
        catalog: CapabilityCatalog,
        providers: Optional[Sequence[ProviderConfig]] = None,
        local_analyzer: Optional[LocalAnalyzer] = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        on_attempt: Optional[Callable[[AttemptEvent], None]] = None,
    ):
        self.transport = transport
        self.catalog = catalog
        # sorted() is stable, so equal-cost providers keep their configured order
        self.providers = sorted(providers if providers is not None else default_providers(),
                                key=lambda p: p.unit_cost)
        self.local_analyzer = local_analyzer or LocalAnalyzer(catalog)
        self.timeout = timeout
        self.on_attempt = on_attempt
        self.normalizer = AnswerNormalizer()

    async def run_task(
        self,
        task: NluTask,
        prompt: str,
        request_config: Optional[RequestConfig] = None,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> TaskOutcome:
        """
        Run one NLU task. Never raises on provider failures.

        Args:
            task: Which NLU task to run
            prompt: The user's automation request
            request_config: Request-scoped credentials and timeout
            answers: Canonical answers gathered so far (question generation)

        Returns:
            TaskOutcome with the decoded payload and the attempt ledger
        """
        request_config = request_config or RequestConfig()

        try:
            payload, provider_name, attempts = await self._run_chain(task, prompt, request_config, answers)
        except AllProvidersExhausted as e:
            logger.warning(
                f"All providers failed for {task.value} after {len(e.attempts)} attempts, "
                f"using local analyzer"
            )
            payload = self.local_analyzer.run(task, prompt, answers)
            return TaskOutcome(task=task, payload=payload, provider=LOCAL_PROVIDER, attempts=e.attempts)

        return TaskOutcome(task=task, payload=payload, provider=provider_name, attempts=attempts)

    async def _run_chain(
        self,
        task: NluTask,
        prompt: str,
        request_config: RequestConfig,
        answers: Optional[Mapping[str, Any]],
    ) -> Tuple[Dict[str, Any], str, List[AttemptEvent]]:
        system_prompt, task_prompt = build_task_prompt(task, prompt, self.catalog.list_apps(), answers)
        timeout = request_config.timeout or self.timeout
        attempts: List[AttemptEvent] = []

        for provider in self.providers:
            if not request_config.api_key_for(provider.name):
                self._record(attempts, provider.name, None, 'failure', 0, 'no API key supplied for this request')
                continue

            for variant in provider.variants or (None,):
                start = time.monotonic()
                try:
                    raw_text = await asyncio.wait_for(
                        self.transport.call(provider, variant, system_prompt, task_prompt, request_config),
                        timeout=timeout,
                    )
                    payload = decode_response(task, raw_text, provider.name, variant)
                    if task == NluTask.INTENT_ANALYSIS:
                        self._check_apps(payload, provider.name, variant)
                except asyncio.TimeoutError:
                    error = f"timed out after {timeout}s"
                except ProviderFailure as e:
                    error = e.reason
                except Exception as e:
                    logger.exception(f"Unexpected error from {provider.name}/{variant or '-'}")
                    error = f"unexpected error: {e}"
                else:
                    self._record(attempts, provider.name, variant, 'success', _elapsed_ms(start))
                    return payload, provider.name, attempts

                self._record(attempts, provider.name, variant, 'failure', _elapsed_ms(start), error)

        raise AllProvidersExhausted(attempts)

    def _check_apps(self, payload: Dict[str, Any], provider: str, variant: Optional[str]) -> None:
        known = set(self.catalog.list_apps())
        unknown = [app for app in [payload['triggerApp'], *payload['actionApps']] if app not in known]
        if unknown:
            raise MalformedProviderResponse(provider, f"unknown apps: {', '.join(unknown)}", variant)

    def _record(
        self,
        attempts: List[AttemptEvent],
        provider: str,
        variant: Optional[str],
        outcome: str,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        event = AttemptEvent(provider=provider, variant=variant, outcome=outcome,
                             latency_ms=latency_ms, error=error)
        attempts.append(event)

        if outcome == 'success':
            logger.info(f"Provider attempt {provider}/{variant or '-'}: success ({latency_ms}ms)")
        else:
            logger.warning(f"Provider attempt {provider}/{variant or '-'}: failure ({latency_ms}ms): {error}")

        if self.on_attempt:
            self.on_attempt(event)

    async def analyze_intent(
        self,
        prompt: str,
        request_config: Optional[RequestConfig] = None
    ) -> IntentAnalysis:
        """Intent, trigger app and action apps for a request."""
        outcome = await self.run_task(NluTask.INTENT_ANALYSIS, prompt, request_config)
        payload = outcome.payload

        trigger_app = payload['triggerApp']
        return IntentAnalysis(
            intent=payload['intent'],
            trigger_app=trigger_app,
            action_apps=[app for app in payload['actionApps'] if app != trigger_app],
            confidence=float(payload.get('confidence', DEFAULT_PROVIDER_CONFIDENCE)),
            provider=outcome.provider,
        )

    async def generate_questions(
        self,
        prompt: str,
        answers: Optional[Mapping[str, Any]] = None,
        request_config: Optional[RequestConfig] = None
    ) -> List[ClarificationQuestion]:
        """
        Clarification questions for a request.

        Questions whose canonical field is already answered are dropped, and a
        trigger question is always present while no trigger is known.
        """
        answers = answers or {}
        outcome = await self.run_task(NluTask.QUESTION_GENERATION, prompt, request_config, answers)

        questions = []
        for item in outcome.payload['questions']:
            if self.normalizer.canonical_key(item['id']) in answers:
                continue
            questions.append(question_from_dict(item))

        has_trigger = any(q.category == QuestionCategory.TRIGGER for q in questions)
        if 'trigger' not in answers and not has_trigger:
            fallback = self.local_analyzer.generate_questions(prompt, answers)['questions']
            questions[:0] = [question_from_dict(q) for q in fallback if q['category'] == QuestionCategory.TRIGGER.value]

        return questions


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# ============================================================================
# HTTP Transport
# ============================================================================

def _gemini_request(provider, variant, system_prompt, task_prompt, api_key):
    model = variant or (provider.variants[0] if provider.variants else '')
    url = provider.endpoint.format(model=model)
    body = {
        'contents': [{'parts': [{'text': f"{system_prompt}\n\n{task_prompt}"}]}],
        'generationConfig': {
            'temperature': 0.1,
            'maxOutputTokens': provider.max_tokens,
            'responseMimeType': 'application/json',
        },
    }
    return url, {'Content-Type': 'application/json'}, {'key': api_key}, body


def _gemini_text(data):
    return data['candidates'][0]['content']['parts'][0]['text']


def _openai_request(provider, variant, system_prompt, task_prompt, api_key):
    body = {
        'model': variant,
        'messages': [
            {'role': 'system', 'content': system_prompt},
            {'role': 'user', 'content': task_prompt},
        ],
        'max_tokens': provider.max_tokens,
        'temperature': 0.1,
        'response_format': {'type': 'json_object'},
    }
    headers = {'Content-Type': 'application/json', 'Authorization': f'Bearer {api_key}'}
    return provider.endpoint, headers, None, body


def _openai_text(data):
    return data['choices'][0]['message']['content']


def _claude_request(provider, variant, system_prompt, task_prompt, api_key):
    body = {
        'model': variant,
        'max_tokens': provider.max_tokens,
        'system': system_prompt,
        'messages': [{'role': 'user', 'content': task_prompt}],
    }
    headers = {
        'Content-Type': 'application/json',
        'x-api-key': api_key,
        'anthropic-version': '2023-06-01',
    }
    return provider.endpoint, headers, None, body


def _claude_text(data):
    return data['content'][0]['text']


# Wire format -> (request builder, response text extractor)
WIRE_FORMATS = {
    'gemini': (_gemini_request, _gemini_text),
    'openai': (_openai_request, _openai_text),
    'claude': (_claude_request, _claude_text),
}


class HttpProviderTransport(ProviderTransport):
    """ProviderTransport over httpx for the Gemini, OpenAI and Claude APIs."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS)

    async def call(
        self,
        provider: ProviderConfig,
        variant: Optional[str],
        system_prompt: str,
        task_prompt: str,
        request_config: RequestConfig,
    ) -> str:
        wire = WIRE_FORMATS.get(provider.kind)
        if wire is None:
            raise ProviderFailure(provider.name, f"unsupported wire format '{provider.kind}'", variant)
        build_request, extract_text = wire

        api_key = request_config.api_key_for(provider.name)
        if not api_key:
            raise ProviderFailure(provider.name, "no API key supplied for this request", variant)

        url, headers, params, body = build_request(provider, variant, system_prompt, task_prompt, api_key)

        try:
            response = await self._client.post(
                url,
                json=body,
                headers=headers,
                params=params,
                timeout=request_config.timeout or PROVIDER_TIMEOUT_SECONDS,
            )
        except httpx.TimeoutException:
            raise ProviderFailure(provider.name, "request timed out", variant)
        except httpx.HTTPError as e:
            raise ProviderFailure(provider.name, f"network error: {e}", variant)

        if not response.is_success:
            raise ProviderFailure(provider.name, f"HTTP {response.status_code}", variant)

        try:
            text = extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedProviderResponse(provider.name, f"unexpected response envelope: {e!r}", variant)

        if not isinstance(text, str):
            raise MalformedProviderResponse(provider.name, "response text is not a string", variant)

        return text

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpProviderTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
