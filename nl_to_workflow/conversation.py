"""
Conversation control for request resolution.

A session moves COLLECT_REQUIREMENTS -> CONFIRM_REQUIREMENTS -> GENERATE_SPEC
-> DONE. Session state is supplied by the caller on every turn; the
controller keeps nothing between turns.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import MAX_QUESTIONS_PER_TURN
from .errors import GuardrailViolation, MalformedAnswerMapping, ValidationIncomplete
from .guardrails import GuardrailValidator
from .interfaces import CapabilityCatalog
from .local_analyzer import LocalAnalyzer, detect_apps
from .normalizer import AnswerNormalizer, require_canonical
from .providers import ProviderOrchestrator, question_from_dict
from .resolver import FunctionResolver, analyze_context
from .synthesizer import WorkflowSynthesizer
from .templates import find_placeholders
from .types import (
    AutomationContext,
    ClarificationQuestion,
    ConversationSession,
    DraftNode,
    InputKind,
    MissingField,
    Phase,
    QuestionCategory,
    RequestConfig,
    TurnResult,
)

logger = logging.getLogger(__name__)

AFFIRMATIVE_PATTERN = re.compile(r'^(ok|yes|confirm)', re.IGNORECASE)

# Canonical fields that must be resolved before synthesis
REQUIRED_CANONICAL_FIELDS = ('trigger',)

# Reported when no catalog application could be identified for the request
TRIGGER_APP_FIELD = 'trigger_app'

FILTER_FIELD_TOKENS = ('query', 'filter', 'search', 'label')
TRIGGER_FIELD_TOKENS = ('trigger', 'schedule', 'frequency')


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return not find_placeholders(value)


def derive_missing_fields(
    draft_nodes: Sequence[DraftNode],
    answers: Mapping[str, Any]
) -> List[MissingField]:
    """
    Required node fields with no value.

    A field is satisfied by an answer keyed "{nodeId}.{field}" or by a
    non-blank inline parameter on the node. Unresolved {{...}} placeholders
    do not count as values.
    """
    missing = []
    for node in draft_nodes:
        for field_name in node.required_fields:
            if _has_value(answers.get(f"{node.id}.{field_name}")):
                continue
            if _has_value(node.parameters.get(field_name)):
                continue
            missing.append(MissingField(
                node_id=node.id,
                field=field_name,
                prompt=f"Please provide {field_name} for {node.label or node.type}",
                declared_type=node.declared_types.get(field_name),
            ))
    return missing


def check_complete(draft_nodes: Sequence[DraftNode], answers: Mapping[str, Any]) -> None:
    """
    Raises:
        ValidationIncomplete: If any required node field is missing
    """
    missing = derive_missing_fields(draft_nodes, answers)
    if missing:
        raise ValidationIncomplete(missing)


def question_for_field(missing: MissingField) -> ClarificationQuestion:
    lowered = missing.field.lower()
    if any(token in lowered for token in TRIGGER_FIELD_TOKENS):
        category = QuestionCategory.TRIGGER
    elif any(token in lowered for token in FILTER_FIELD_TOKENS):
        category = QuestionCategory.FILTER
    else:
        category = QuestionCategory.DESTINATION

    return ClarificationQuestion(
        id=missing.answer_key,
        prompt_text=missing.prompt,
        input_kind=InputKind.TEXT,
        category=category,
        required=True,
    )


class ConversationController:
    """
    Drives a session through the requirement-gathering state machine.

    advance() performs exactly one transition and never calls a provider.
    handle_turn() runs the NLU tasks a turn needs and then advances until
    the session waits for the user or finishes.
    """

    def __init__(
        self,
        catalog: CapabilityCatalog,
        orchestrator: Optional[ProviderOrchestrator] = None,
        resolver: Optional[FunctionResolver] = None,
        synthesizer: Optional[WorkflowSynthesizer] = None,
        guardrails: Optional[GuardrailValidator] = None,
        normalizer: Optional[AnswerNormalizer] = None,
        max_questions: int = MAX_QUESTIONS_PER_TURN,
    ):
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.local_analyzer = orchestrator.local_analyzer if orchestrator else LocalAnalyzer(catalog)
        self.resolver = resolver or FunctionResolver(catalog)
        self.synthesizer = synthesizer or WorkflowSynthesizer(catalog, self.resolver)
        self.guardrails = guardrails or GuardrailValidator()
        self.normalizer = normalizer or AnswerNormalizer()
        self.max_questions = max_questions

    def start_session(
        self,
        original_request: str,
        session_id: Optional[str] = None,
        draft_nodes: Optional[Sequence[DraftNode]] = None,
    ) -> ConversationSession:
        session = ConversationSession(id=session_id or str(uuid.uuid4()), original_request=original_request)
        if draft_nodes is not None:
            session.draft_nodes = list(draft_nodes)
            session.caller_drafts = True
        return session

    def merge_answers(self, session: ConversationSession, raw_answers: Mapping[str, Any]) -> Dict[str, str]:
        """Normalize raw answers into the session's canonical answers."""
        merged = dict(session.canonical_answers)
        merged.update(raw_answers)
        session.canonical_answers = self.normalizer.normalize(merged)
        return session.canonical_answers

    def _transition(self, session: ConversationSession, next_phase: Phase, missing_count: int) -> None:
        logger.info(f"Phase {session.phase.value} -> {next_phase.value} (missing={missing_count})")
        session.phase = next_phase

    def _local_context(self, session: ConversationSession) -> AutomationContext:
        apps = detect_apps(session.original_request, self.catalog)
        return analyze_context(session.original_request, apps)

    # ========================================================================
    # State machine
    # ========================================================================

    def advance(self, session: ConversationSession, user_message: Optional[str] = None) -> TurnResult:
        """
        Perform one transition from the session's current phase.

        Args:
            session: Caller-supplied session (mutated in place)
            user_message: Free text from the user (used by CONFIRM_REQUIREMENTS)

        Returns:
            TurnResult describing what the caller should do next
        """
        if session.phase == Phase.COLLECT_REQUIREMENTS:
            return self._collect(session)
        if session.phase == Phase.CONFIRM_REQUIREMENTS:
            return self._confirm(session, user_message)
        if session.phase == Phase.GENERATE_SPEC:
            return self._generate(session)
        return TurnResult(session=session, artifact=session.result_artifact)

    def _collect(self, session: ConversationSession) -> TurnResult:
        missing = derive_missing_fields(session.draft_nodes, session.canonical_answers)

        if missing:
            questions = [question_for_field(m) for m in missing[:self.max_questions]]
            session.pending_questions = questions
            self._transition(session, Phase.COLLECT_REQUIREMENTS, len(missing))
            return TurnResult(session=session, needs_questions=True, questions=questions, missing_fields=missing)

        session.pending_questions = []
        self._transition(session, Phase.CONFIRM_REQUIREMENTS, 0)
        return TurnResult(session=session, awaiting_confirmation=True)

    def _confirm(self, session: ConversationSession, user_message: Optional[str]) -> TurnResult:
        if user_message and AFFIRMATIVE_PATTERN.match(user_message.strip()):
            self._transition(session, Phase.GENERATE_SPEC, 0)
            return TurnResult(session=session)

        # Anything else is an edit request; the caller has merged new answers
        missing = derive_missing_fields(session.draft_nodes, session.canonical_answers)
        self._transition(session, Phase.COLLECT_REQUIREMENTS, len(missing))
        return TurnResult(session=session)

    def _generate(self, session: ConversationSession) -> TurnResult:
        answers = session.canonical_answers

        try:
            check_complete(session.draft_nodes, answers)
            require_canonical(answers, REQUIRED_CANONICAL_FIELDS)
            context = session.context or self._local_context(session)
            if not any(context.data_flow):
                raise MalformedAnswerMapping(TRIGGER_APP_FIELD)
            artifact = self.synthesizer.synthesize(context, answers)
            self.guardrails.enforce(artifact)
        except ValidationIncomplete as e:
            # Stay put; the caller merges the answers and generation is retried
            questions = [question_for_field(m) for m in e.missing[:self.max_questions]]
            session.pending_questions = questions
            self._transition(session, Phase.GENERATE_SPEC, len(e.missing))
            return TurnResult(session=session, needs_questions=True, questions=questions, missing_fields=e.missing)
        except MalformedAnswerMapping as e:
            logger.warning(f"Cannot generate: {e}")
            self._transition(session, Phase.GENERATE_SPEC, 1)
            return TurnResult(
                session=session,
                error='MalformedAnswerMapping',
                error_detail={'field': e.field, 'detail': str(e)},
            )
        except GuardrailViolation as e:
            self._transition(session, Phase.GENERATE_SPEC, 0)
            return TurnResult(session=session, error='GuardrailViolation', error_detail=e.to_dict())

        session.result_artifact = artifact
        session.pending_questions = []
        self._transition(session, Phase.DONE, 0)
        return TurnResult(session=session, artifact=artifact)

    # ========================================================================
    # Turns
    # ========================================================================

    async def _ensure_context(
        self,
        session: ConversationSession,
        request_config: Optional[RequestConfig]
    ) -> None:
        if session.context is not None:
            return
        if self.orchestrator is not None:
            analysis = await self.orchestrator.analyze_intent(session.original_request, request_config)
            session.context = analysis.to_context(session.original_request)
        else:
            session.context = self._local_context(session)

    async def _general_questions(
        self,
        session: ConversationSession,
        request_config: Optional[RequestConfig]
    ) -> List[ClarificationQuestion]:
        answers = session.canonical_answers
        if self.orchestrator is not None:
            return await self.orchestrator.generate_questions(session.original_request, answers, request_config)
        payload = self.local_analyzer.generate_questions(session.original_request, answers)
        return [question_from_dict(q) for q in payload['questions']]

    async def handle_turn(
        self,
        session: ConversationSession,
        user_message: Optional[str] = None,
        answers: Optional[Mapping[str, Any]] = None,
        request_config: Optional[RequestConfig] = None,
    ) -> TurnResult:
        """
        Process one user turn.

        Args:
            session: Caller-supplied session (mutated in place)
            user_message: Free text, such as a confirmation
            answers: Raw answers to the previous turn's questions
            request_config: Request-scoped provider credentials

        Returns:
            TurnResult once the session needs user input or is finished
        """
        if answers:
            self.merge_answers(session, answers)

        await self._ensure_context(session, request_config)

        if not session.caller_drafts:
            session.draft_nodes = self.synthesizer.draft_nodes(session.context, session.canonical_answers)

        if session.phase == Phase.COLLECT_REQUIREMENTS and 'trigger' not in session.canonical_answers:
            general = await self._general_questions(session, request_config)
            missing = derive_missing_fields(session.draft_nodes, session.canonical_answers)
            questions = (general + [question_for_field(m) for m in missing])[:self.max_questions]
            if questions:
                session.pending_questions = questions
                self._transition(session, Phase.COLLECT_REQUIREMENTS, len(missing))
                return TurnResult(session=session, needs_questions=True, questions=questions, missing_fields=missing)

        message = user_message
        while True:
            result = self.advance(session, message)
            message = None
            if result.needs_questions or result.awaiting_confirmation or result.error:
                return result
            if session.phase == Phase.DONE:
                return result
            if session.phase == Phase.COLLECT_REQUIREMENTS and user_message is not None:
                # Edit request: re-check requirements once, then wait for the user
                return self.advance(session)

    async def resolve_request(
        self,
        original_request: str,
        canonical_answers: Optional[Mapping[str, Any]] = None,
        draft_nodes: Optional[Sequence[DraftNode]] = None,
        request_config: Optional[RequestConfig] = None,
        confirmed: bool = True,
    ) -> TurnResult:
        """
        One-shot resolution of a request.

        Returns questions while information is missing, otherwise the
        accepted artifact, or a structured error when generation fails.
        With confirmed=True the confirmation step is taken on the caller's
        behalf.
        """
        session = self.start_session(original_request, draft_nodes=draft_nodes)
        if canonical_answers:
            self.merge_answers(session, canonical_answers)

        result = await self.handle_turn(session, request_config=request_config)
        if result.awaiting_confirmation and confirmed:
            result = await self.handle_turn(session, user_message='confirm', request_config=request_config)
        return result
