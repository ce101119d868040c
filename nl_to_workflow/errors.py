"""
Error taxonomy for the request-resolution pipeline.
"""

from typing import Any, Dict, List, Optional

from .types import AttemptEvent, MissingField, Violation


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ProviderFailure(PipelineError):
    """A single provider attempt failed (network, timeout, non-2xx, bad body)."""

    def __init__(self, provider: str, reason: str, variant: Optional[str] = None):
        self.provider = provider
        self.variant = variant
        self.reason = reason
        label = f"{provider}/{variant}" if variant else provider
        super().__init__(f"{label}: {reason}")


class MalformedProviderResponse(ProviderFailure):
    """Provider text was not strict JSON or did not match the task schema."""


class AllProvidersExhausted(PipelineError):
    """Every provider and variant failed; the local analyzer takes over."""

    def __init__(self, attempts: List[AttemptEvent]):
        self.attempts = attempts
        super().__init__(f"All {len(attempts)} provider attempts failed")


class ValidationIncomplete(PipelineError):
    """Required fields are still missing from the answers."""

    def __init__(self, missing: List[MissingField]):
        self.missing = missing
        fields = ', '.join(m.answer_key for m in missing)
        super().__init__(f"Missing required fields: {fields}")


class GuardrailViolation(PipelineError):
    """The rendered script uses a forbidden capability."""

    def __init__(self, violations: List[Violation]):
        self.violations = violations
        rules = sorted({v.rule for v in violations})
        self.detail = f"Generated script uses forbidden capabilities: {', '.join(rules)}"
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'detail': self.detail,
            'violations': [v.to_dict() for v in self.violations],
        }


class MalformedAnswerMapping(PipelineError):
    """A canonical field is still unresolved after normalization and defaulting."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Canonical field '{field}' could not be resolved from the answers")
