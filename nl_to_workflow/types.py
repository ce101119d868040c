"""
Data types for request resolution.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


class Phase(str, Enum):
    """Conversation phase. Advances COLLECT -> CONFIRM -> GENERATE -> DONE."""
    COLLECT_REQUIREMENTS = "COLLECT_REQUIREMENTS"
    CONFIRM_REQUIREMENTS = "CONFIRM_REQUIREMENTS"
    GENERATE_SPEC = "GENERATE_SPEC"
    DONE = "DONE"


class InputKind(str, Enum):
    CHOICE = "choice"
    TEXT = "text"


class QuestionCategory(str, Enum):
    TRIGGER = "trigger"
    FILTER = "filter"
    DESTINATION = "destination"
    PERMISSION = "permission"


class ValidationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class NluTask(str, Enum):
    """Natural-language-understanding tasks the orchestrator can run."""
    INTENT_ANALYSIS = "intent_analysis"
    QUESTION_GENERATION = "question_generation"


# Generic field type reported on every missing-field record
GENERIC_FIELD_TYPE = "string"


@dataclass
class ClarificationQuestion:
    """A structured prompt issued back to the user."""
    id: str
    prompt_text: str
    input_kind: InputKind
    category: QuestionCategory
    required: bool = True
    choices: Optional[List[str]] = None  # Present iff input_kind is CHOICE

    def __post_init__(self):
        if self.input_kind == InputKind.CHOICE and not self.choices:
            raise ValueError(f"Question '{self.id}' is a choice question without choices")
        if self.input_kind == InputKind.TEXT and self.choices is not None:
            raise ValueError(f"Question '{self.id}' is a text question but has choices")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'promptText': self.prompt_text,
            'inputKind': self.input_kind.value,
            'required': self.required,
            'category': self.category.value,
        }
        if self.choices is not None:
            data['choices'] = list(self.choices)
        return data


@dataclass(frozen=True)
class FunctionDescriptor:
    """One function of an application, as published by the capability catalog."""
    app_name: str
    function_id: str
    display_name: str
    description: str = ""
    keyword_hints: Tuple[str, ...] = ()
    category: str = "General"
    parameter_schema: Mapping[str, Any] = field(default_factory=dict)
    output_type: Optional[str] = None

    @property
    def required_fields(self) -> List[str]:
        return list(self.parameter_schema.get('required', []) or [])

    def declared_type(self, field_name: str) -> Optional[str]:
        properties = self.parameter_schema.get('properties', {}) or {}
        spec = properties.get(field_name)
        if isinstance(spec, dict):
            return spec.get('type')
        return None


@dataclass
class FunctionSelection:
    """The single function chosen for one application in a synthesis run."""
    app_name: str
    function_id: str
    confidence: float
    rationale: List[str] = field(default_factory=list)
    resolved_parameters: Dict[str, Any] = field(default_factory=dict)
    score: int = 0


@dataclass(frozen=True)
class AutomationContext:
    """What the resolver needs to know about the automation being built."""
    intent: str
    trigger_app: str
    action_apps: Tuple[str, ...]
    prompt: str

    @property
    def data_flow(self) -> List[str]:
        return [self.trigger_app, *self.action_apps]


@dataclass
class IntentAnalysis:
    """Result of the intent-analysis NLU task."""
    intent: str
    trigger_app: str
    action_apps: List[str]
    confidence: float
    provider: str = "local"

    def to_context(self, prompt: str) -> AutomationContext:
        return AutomationContext(
            intent=self.intent,
            trigger_app=self.trigger_app,
            action_apps=tuple(self.action_apps),
            prompt=prompt,
        )


@dataclass
class DraftNode:
    """A node of the draft graph inspected for missing required fields."""
    id: str
    type: str
    label: Optional[str] = None
    app_name: Optional[str] = None
    function_id: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    required_fields: List[str] = field(default_factory=list)
    declared_types: Dict[str, str] = field(default_factory=dict)


@dataclass
class MissingField:
    """A required node field with no value in the answers or the node itself."""
    node_id: str
    field: str
    prompt: str
    field_type: str = GENERIC_FIELD_TYPE
    declared_type: Optional[str] = None

    @property
    def answer_key(self) -> str:
        return f"{self.node_id}.{self.field}"


@dataclass
class WorkflowNode:
    id: str
    app_name: str
    function_id: str
    parameters: Dict[str, Any]
    position: Tuple[int, int]
    label: Optional[str] = None
    confidence: float = 0.0
    required_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'appName': self.app_name,
            'functionId': self.function_id,
            'parameters': self.parameters,
            'layoutPosition': {'x': self.position[0], 'y': self.position[1]},
            'label': self.label,
            'confidence': self.confidence,
        }


@dataclass
class WorkflowEdge:
    source: str
    target: str
    data_type: str = "data"

    def to_dict(self) -> Dict[str, Any]:
        return {'source': self.source, 'target': self.target, 'dataType': self.data_type}


@dataclass
class WorkflowArtifact:
    """The synthesized graph plus rendered source, the pipeline's final product."""
    nodes: List[WorkflowNode]
    edges: List[WorkflowEdge]
    rendered_script: str
    validation_status: ValidationStatus = ValidationStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [n.to_dict() for n in self.nodes],
            'edges': [e.to_dict() for e in self.edges],
            'renderedScript': self.rendered_script,
            'validationStatus': self.validation_status.value,
        }


@dataclass
class ConversationSession:
    """
    Per-request conversation state.

    The caller persists and replays it across turns; nothing here is held
    server-side between turns.
    """
    id: str
    original_request: str
    phase: Phase = Phase.COLLECT_REQUIREMENTS
    canonical_answers: Dict[str, str] = field(default_factory=dict)
    pending_questions: List[ClarificationQuestion] = field(default_factory=list)
    result_artifact: Optional[WorkflowArtifact] = None
    context: Optional[AutomationContext] = None
    draft_nodes: List[DraftNode] = field(default_factory=list)
    caller_drafts: bool = False  # draft_nodes came from the caller; never rebuilt


@dataclass(frozen=True)
class ProviderConfig:
    """One external NLU provider in the fallback chain."""
    name: str
    kind: str  # Wire format: "gemini", "openai" or "claude"
    unit_cost: float
    endpoint: str
    variants: Tuple[str, ...] = ()  # Model variants tried in order
    max_tokens: int = 1000


@dataclass(frozen=True)
class RequestConfig:
    """
    Request-scoped settings, including credentials.

    Credentials are never read from or written to shared process state by
    the orchestrator; they only travel inside this object.
    """
    api_keys: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    request_id: Optional[str] = None

    def api_key_for(self, provider_name: str) -> Optional[str]:
        return self.api_keys.get(provider_name)

    @classmethod
    def with_shared_key(
        cls,
        api_key: str,
        providers: Sequence[ProviderConfig],
        **kwargs
    ) -> "RequestConfig":
        """Use one client-supplied key for every provider in this request only."""
        return cls(api_keys={p.name: api_key for p in providers}, **kwargs)

    @classmethod
    def from_env(
        cls,
        env_names: Mapping[str, str],
        **kwargs
    ) -> "RequestConfig":
        """Build a config by reading (never writing) provider keys from the environment."""
        keys = {}
        for provider_name, env_name in env_names.items():
            value = os.getenv(env_name)
            if value:
                keys[provider_name] = value
        return cls(api_keys=keys, **kwargs)


@dataclass
class AttemptEvent:
    """Diagnostic record of one provider attempt."""
    provider: str
    variant: Optional[str]
    outcome: str  # "success" or "failure"
    latency_ms: int
    error: Optional[str] = None


@dataclass
class TaskOutcome:
    """Decoded payload of an NLU task plus the attempt ledger."""
    task: NluTask
    payload: Dict[str, Any]
    provider: str
    attempts: List[AttemptEvent] = field(default_factory=list)

    @property
    def used_local_analyzer(self) -> bool:
        return self.provider == "local"


@dataclass
class Violation:
    """One forbidden-capability match in a rendered script."""
    rule: str
    category: str
    line: int
    excerpt: str

    def to_dict(self) -> Dict[str, Any]:
        return {'rule': self.rule, 'category': self.category, 'line': self.line, 'excerpt': self.excerpt}


@dataclass
class TurnResult:
    """What one conversation turn hands back to the caller."""
    session: ConversationSession
    needs_questions: bool = False
    questions: List[ClarificationQuestion] = field(default_factory=list)
    missing_fields: List[MissingField] = field(default_factory=list)
    awaiting_confirmation: bool = False
    artifact: Optional[WorkflowArtifact] = None
    error: Optional[str] = None
    error_detail: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.artifact is not None:
            return {'artifact': self.artifact.to_dict()}
        if self.error is not None:
            return {'error': self.error, 'detail': self.error_detail or {}}
        if self.needs_questions:
            return {'needsQuestions': True, 'questions': [q.to_dict() for q in self.questions]}
        return {
            'needsQuestions': False,
            'awaitingConfirmation': self.awaiting_confirmation,
            'phase': self.session.phase.value,
        }
