"""
Guardrail validation of rendered scripts.

Plain text pattern matching over the whole script, comments and string
literals included. The only sanctioned external call is UrlFetchApp.fetch(.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import GuardrailViolation
from .types import ValidationStatus, Violation, WorkflowArtifact

logger = logging.getLogger(__name__)

ALLOWED_NETWORK_CALL = 'UrlFetchApp.fetch('


@dataclass(frozen=True)
class GuardrailRule:
    name: str
    category: str
    pattern: re.Pattern
    allowed: Optional[str] = None  # Exact match text exempt from this rule


FORBIDDEN_RULES: Sequence[GuardrailRule] = (
    # Foreign module imports
    GuardrailRule('require', 'module_import', re.compile(r'\brequire\s*\(')),
    GuardrailRule('es_import', 'module_import', re.compile(r'^\s*import\b|\bimport\s*\(')),

    # Foreign package managers
    GuardrailRule('package_manager', 'package_manager',
                  re.compile(r'\b(?:npm|yarn|pnpm|pip)\s+(?:install|add|i)\b')),

    # Unrestricted network calls
    GuardrailRule('network_call', 'network', re.compile(r'(?:[\w$]+\s*\.\s*)?\bfetch\s*\('),
                  allowed=ALLOWED_NETWORK_CALL),
    GuardrailRule('xml_http_request', 'network', re.compile(r'\bXMLHttpRequest\b')),
    GuardrailRule('axios', 'network', re.compile(r'\baxios\b')),

    # Foreign process and environment access
    GuardrailRule('process_access', 'process', re.compile(r'\bprocess\s*\.\s*\w+')),
    GuardrailRule('child_process', 'process', re.compile(r'\bchild_process\b')),
    GuardrailRule('spawn', 'process', re.compile(r'\bspawn\s*\(')),

    # Foreign synchronous I/O
    GuardrailRule('fs_access', 'sync_io', re.compile(r'\bfs\s*\.\s*\w+')),
    GuardrailRule('sync_io', 'sync_io', re.compile(r'\b\w+Sync\s*\(')),
)


class GuardrailValidator:
    """Rejects scripts that use capabilities outside the Apps Script runtime."""

    def __init__(self, rules: Sequence[GuardrailRule] = FORBIDDEN_RULES):
        self.rules = tuple(rules)

    def scan(self, script: str) -> List[Violation]:
        """Every forbidden match in the script, in line order."""
        violations = []
        for line_number, line in enumerate(script.splitlines(), start=1):
            for rule in self.rules:
                for match in rule.pattern.finditer(line):
                    if rule.allowed is not None and match.group(0) == rule.allowed:
                        continue
                    violations.append(Violation(
                        rule=rule.name,
                        category=rule.category,
                        line=line_number,
                        excerpt=match.group(0),
                    ))
        return violations

    def is_safe(self, script: str) -> bool:
        return not self.scan(script)

    def enforce(self, artifact: WorkflowArtifact) -> WorkflowArtifact:
        """
        Mark the artifact ACCEPTED, or REJECTED with its script cleared.

        Raises:
            GuardrailViolation: If any forbidden pattern matches
        """
        violations = self.scan(artifact.rendered_script)

        if violations:
            artifact.validation_status = ValidationStatus.REJECTED
            artifact.rendered_script = ''
            rules = sorted({v.rule for v in violations})
            logger.warning(f"Guardrail rejected script: {len(violations)} violations ({', '.join(rules)})")
            raise GuardrailViolation(violations)

        artifact.validation_status = ValidationStatus.ACCEPTED
        return artifact
