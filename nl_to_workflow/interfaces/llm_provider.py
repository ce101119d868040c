"""
Provider transport interface for natural-language understanding calls.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..types import ProviderConfig, RequestConfig


class ProviderTransport(ABC):
    """
    Abstract interface for sending one task prompt to one provider.

    The transport only moves text. JSON decoding, schema validation and
    error classification belong to the orchestrator.
    """

    @abstractmethod
    async def call(
        self,
        provider: ProviderConfig,
        variant: Optional[str],
        system_prompt: str,
        task_prompt: str,
        request_config: RequestConfig,
    ) -> str:
        """
        Issue one request and return the model's raw text.

        Args:
            provider: Provider configuration (endpoint, wire format)
            variant: Model variant to use, or None for the provider default
            system_prompt: Instructions describing the expected JSON
            task_prompt: The user-facing task text
            request_config: Request-scoped credentials and limits

        Returns:
            Raw response text

        Raises:
            ProviderFailure: On network errors or non-success status
        """
        pass
