"""
Abstract collaborator interfaces for nl_to_workflow.
"""

from .catalog import CapabilityCatalog
from .llm_provider import ProviderTransport

__all__ = [
    'CapabilityCatalog',
    'ProviderTransport',
]
