"""
Process-wide settings.

Values are read from the environment once at import and are never written
back. Credentials are not configured here; they travel per request in
RequestConfig.
"""

import os
from typing import Dict, List

from .types import ProviderConfig

# Provider calls
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("NL_TO_WORKFLOW_PROVIDER_TIMEOUT", "15"))

# Conversation
MAX_QUESTIONS_PER_TURN = int(os.getenv("NL_TO_WORKFLOW_MAX_QUESTIONS_PER_TURN", "2"))

# Function resolution
CONFIDENCE_NORMALIZER = 25.0
MAX_CONFIDENCE = 0.98
DEFAULT_SELECTION_CONFIDENCE = 0.6
UNKNOWN_APP_CONFIDENCE = 0.3

# Graph layout (pixels)
LAYOUT_ORIGIN_X = 100
LAYOUT_ORIGIN_Y = 100
LAYOUT_STEP_X = 220
LAYOUT_STEP_Y = 120

# Supabase catalog source
CATALOG_SCHEMA = os.getenv("NL_TO_WORKFLOW_CATALOG_SCHEMA", "automations")
CATALOG_TABLE = os.getenv("NL_TO_WORKFLOW_CATALOG_TABLE", "capability_catalog")

# Environment variable names RequestConfig.from_env() reads keys from
PROVIDER_KEY_ENV: Dict[str, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "claude": "CLAUDE_API_KEY",
}


def default_providers() -> List[ProviderConfig]:
    """Provider chain used when the caller does not supply one."""
    return [
        ProviderConfig(
            name="gemini",
            kind="gemini",
            unit_cost=0.0001,
            endpoint="https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
            variants=("gemini-2.0-flash-exp", "gemini-1.5-flash-8b", "gemini-1.5-flash"),
        ),
        ProviderConfig(
            name="openai",
            kind="openai",
            unit_cost=0.00015,
            endpoint="https://api.openai.com/v1/chat/completions",
            variants=("gpt-4o-mini-2024-07-18",),
        ),
        ProviderConfig(
            name="claude",
            kind="claude",
            unit_cost=0.00025,
            endpoint="https://api.anthropic.com/v1/messages",
            variants=("claude-3-5-haiku-20241022",),
        ),
    ]
