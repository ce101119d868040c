"""
Capability catalog interface.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import FunctionDescriptor


class CapabilityCatalog(ABC):
    """
    Read-only registry of application -> available automation functions.

    Implementations must answer synchronously (or from a fast cache) and
    must never be mutated by the pipeline.
    """

    @abstractmethod
    def list_functions(self, app_name: str) -> List[FunctionDescriptor]:
        """
        List the functions of an application, in catalog order.

        Args:
            app_name: Application name (e.g., "Gmail", "Google Sheets")

        Returns:
            Function descriptors; empty if the application is unknown
        """
        pass

    @abstractmethod
    def list_apps(self) -> List[str]:
        """
        List every application in the catalog, in catalog order.
        """
        pass

    def has_app(self, app_name: str) -> bool:
        return app_name in self.list_apps()

    def get_function(self, app_name: str, function_id: str) -> Optional[FunctionDescriptor]:
        for descriptor in self.list_functions(app_name):
            if descriptor.function_id == function_id:
                return descriptor
        return None
