"""
nl_to_workflow - Natural language requests to validated automation workflows

Turns a free-text automation request into a node/edge workflow graph and a
rendered Google Apps Script program, asking clarification questions until
every required field is known and rejecting scripts that reach outside the
Apps Script runtime.
"""

__version__ = "0.1.0"

# Core types
from .types import (
    Phase,
    InputKind,
    QuestionCategory,
    ValidationStatus,
    NluTask,
    ClarificationQuestion,
    FunctionDescriptor,
    FunctionSelection,
    AutomationContext,
    IntentAnalysis,
    DraftNode,
    MissingField,
    WorkflowNode,
    WorkflowEdge,
    WorkflowArtifact,
    ConversationSession,
    ProviderConfig,
    RequestConfig,
    AttemptEvent,
    TaskOutcome,
    Violation,
    TurnResult,
)

# Errors
from .errors import (
    PipelineError,
    ProviderFailure,
    MalformedProviderResponse,
    AllProvidersExhausted,
    ValidationIncomplete,
    GuardrailViolation,
    MalformedAnswerMapping,
)

# Interfaces for extension
from .interfaces import CapabilityCatalog, ProviderTransport

# Catalog
from .catalog import (
    StaticCapabilityCatalog,
    CatalogHolder,
    load_catalog_file,
    load_catalog_from_supabase,
)

# Pipeline components
from .normalizer import AnswerNormalizer, normalize_answers
from .resolver import FunctionResolver, analyze_context
from .local_analyzer import LocalAnalyzer, detect_apps
from .providers import ProviderOrchestrator, HttpProviderTransport
from .synthesizer import WorkflowSynthesizer
from .guardrails import GuardrailValidator
from .conversation import ConversationController, derive_missing_fields

__all__ = [
    "__version__",
    # Types
    "Phase",
    "InputKind",
    "QuestionCategory",
    "ValidationStatus",
    "NluTask",
    "ClarificationQuestion",
    "FunctionDescriptor",
    "FunctionSelection",
    "AutomationContext",
    "IntentAnalysis",
    "DraftNode",
    "MissingField",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowArtifact",
    "ConversationSession",
    "ProviderConfig",
    "RequestConfig",
    "AttemptEvent",
    "TaskOutcome",
    "Violation",
    "TurnResult",
    # Errors
    "PipelineError",
    "ProviderFailure",
    "MalformedProviderResponse",
    "AllProvidersExhausted",
    "ValidationIncomplete",
    "GuardrailViolation",
    "MalformedAnswerMapping",
    # Interfaces
    "CapabilityCatalog",
    "ProviderTransport",
    # Catalog
    "StaticCapabilityCatalog",
    "CatalogHolder",
    "load_catalog_file",
    "load_catalog_from_supabase",
    # Components
    "AnswerNormalizer",
    "normalize_answers",
    "FunctionResolver",
    "analyze_context",
    "LocalAnalyzer",
    "detect_apps",
    "ProviderOrchestrator",
    "HttpProviderTransport",
    "WorkflowSynthesizer",
    "GuardrailValidator",
    "ConversationController",
    "derive_missing_fields",
]
