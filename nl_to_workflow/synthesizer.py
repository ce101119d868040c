"""
Workflow synthesis.

Turns an automation context plus canonical answers into the node/edge graph
and the rendered Apps Script program.
"""

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import LAYOUT_ORIGIN_X, LAYOUT_ORIGIN_Y, LAYOUT_STEP_X, LAYOUT_STEP_Y
from .fragments import FRAGMENTS, FragmentGenerator, render_fragment, step_function_name
from .interfaces import CapabilityCatalog
from .normalizer import DEFAULT_TRIGGER
from .resolver import FunctionResolver
from .types import (
    AutomationContext,
    DraftNode,
    FunctionSelection,
    WorkflowArtifact,
    WorkflowEdge,
    WorkflowNode,
)

logger = logging.getLogger(__name__)

ENTRY_FUNCTION = 'main'

# Apps Script only accepts these intervals for clock triggers
ALLOWED_MINUTE_INTERVALS = (1, 5, 10, 15, 30)
ALLOWED_HOUR_INTERVALS = (1, 2, 4, 6, 8, 12)

# Function id token -> edge data type, first match wins
DATA_TYPE_TOKENS: Tuple[Tuple[str, str], ...] = (
    ('email', 'emails'),
    ('row', 'rows'),
    ('range', 'rows'),
    ('event', 'event'),
    ('file', 'file'),
    ('message', 'message'),
    ('contact', 'contacts'),
    ('lead', 'leads'),
)


def slugify(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-') or 'app'


def layout_position(index: int) -> Tuple[int, int]:
    """Deterministic zig-zag grid position of the node at index."""
    return (
        LAYOUT_ORIGIN_X + index * LAYOUT_STEP_X,
        LAYOUT_ORIGIN_Y + (index % 2) * LAYOUT_STEP_Y,
    )


def infer_data_type(function_id: str, output_type: Optional[str] = None) -> str:
    if output_type:
        return output_type
    for token, data_type in DATA_TYPE_TOKENS:
        if token in function_id:
            return data_type
    return 'data'


def node_answer_overrides(node_id: str, answers: Mapping[str, Any]) -> Dict[str, Any]:
    """Answers keyed "{node_id}.{field}", as a field -> value map."""
    prefix = f"{node_id}."
    return {
        key[len(prefix):]: value
        for key, value in answers.items()
        if key.startswith(prefix) and value is not None and str(value).strip() != ''
    }


# ============================================================================
# Trigger Installation
# ============================================================================

def _nearest_interval(value: int, allowed_values) -> int:
    return min(allowed_values, key=lambda allowed: (abs(allowed - value), allowed))


def trigger_installation(descriptor: Optional[str]) -> List[str]:
    """
    Apps Script statements that install the trigger for a canonical trigger
    descriptor. Unrecognized descriptors install the default 15-minute clock.
    """
    text = (descriptor or DEFAULT_TRIGGER).lower()
    builder = f"ScriptApp.newTrigger('{ENTRY_FUNCTION}')"

    if 'spreadsheet edit' in text:
        return [f"{builder}.forSpreadsheet(SpreadsheetApp.getActive()).onEdit().create();"]
    if 'form submission' in text:
        return [f"{builder}.forForm(FormApp.getActiveForm()).onFormSubmit().create();"]
    if 'webhook' in text:
        return ["console.log('Deploy as a web app; requests to ' + ScriptApp.getService().getUrl() + ' run main()');"]
    if 'email received' in text:
        # No mailbox push trigger in Apps Script; poll instead
        return [f"{builder}.timeBased().everyMinutes(5).create();"]

    match = re.search(r'every (\d+) minutes?', text)
    if match:
        minutes = _nearest_interval(int(match.group(1)), ALLOWED_MINUTE_INTERVALS)
        return [f"{builder}.timeBased().everyMinutes({minutes}).create();"]

    match = re.search(r'every (\d+) hours?', text)
    if match:
        hours = _nearest_interval(int(match.group(1)), ALLOWED_HOUR_INTERVALS)
        return [f"{builder}.timeBased().everyHours({hours}).create();"]
    if 'every hour' in text or 'hourly' in text:
        return [f"{builder}.timeBased().everyHours(1).create();"]

    if 'daily' in text or 'every day' in text:
        return [f"{builder}.timeBased().everyDays(1).atHour(9).create();"]

    return [f"{builder}.timeBased().everyMinutes(15).create();"]


# ============================================================================
# Synthesizer
# ============================================================================

class WorkflowSynthesizer:
    """Builds WorkflowArtifacts from resolved function selections."""

    def __init__(
        self,
        catalog: CapabilityCatalog,
        resolver: Optional[FunctionResolver] = None,
        fragments: Optional[Dict[Tuple[str, str], FragmentGenerator]] = None,
    ):
        self.catalog = catalog
        self.resolver = resolver or FunctionResolver(catalog)
        self.fragments = FRAGMENTS if fragments is None else fragments

    def _plan(
        self,
        context: AutomationContext,
        answers: Mapping[str, Any]
    ) -> List[Tuple[str, FunctionSelection]]:
        """(node id, selection) for every app of the flow, trigger first."""
        apps = [app for app in context.data_flow if app]
        plan = []
        for index, app_name in enumerate(apps):
            node_id = f"{slugify(app_name)}-{index}"
            plan.append((node_id, self.resolver.select(app_name, context, answers)))
        return plan

    def build_nodes(self, context: AutomationContext, answers: Mapping[str, Any]) -> List[WorkflowNode]:
        nodes = []
        for index, (node_id, selection) in enumerate(self._plan(context, answers)):
            descriptor = self.catalog.get_function(selection.app_name, selection.function_id)

            parameters = dict(selection.resolved_parameters)
            parameters.update(node_answer_overrides(node_id, answers))

            nodes.append(WorkflowNode(
                id=node_id,
                app_name=selection.app_name,
                function_id=selection.function_id,
                parameters=parameters,
                position=layout_position(index),
                label=descriptor.display_name if descriptor else f"{selection.app_name} {selection.function_id}",
                confidence=selection.confidence,
                required_fields=descriptor.required_fields if descriptor else [],
            ))
        return nodes

    def draft_nodes(self, context: AutomationContext, answers: Mapping[str, Any]) -> List[DraftNode]:
        """The planned nodes as drafts, for missing-field checks."""
        drafts = []
        for node in self.build_nodes(context, answers):
            descriptor = self.catalog.get_function(node.app_name, node.function_id)
            declared = {}
            if descriptor:
                for field_name in descriptor.required_fields:
                    declared_type = descriptor.declared_type(field_name)
                    if declared_type:
                        declared[field_name] = declared_type

            drafts.append(DraftNode(
                id=node.id,
                type=f"{slugify(node.app_name)}.{node.function_id}",
                label=node.label,
                app_name=node.app_name,
                function_id=node.function_id,
                parameters=dict(node.parameters),
                required_fields=list(node.required_fields),
                declared_types=declared,
            ))
        return drafts

    def build_edges(self, nodes: List[WorkflowNode]) -> List[WorkflowEdge]:
        edges = []
        for previous, current in zip(nodes, nodes[1:]):
            descriptor = self.catalog.get_function(previous.app_name, previous.function_id)
            output_type = descriptor.output_type if descriptor else None
            edges.append(WorkflowEdge(
                source=previous.id,
                target=current.id,
                data_type=infer_data_type(previous.function_id, output_type),
            ))
        return edges

    def render_script(self, nodes: List[WorkflowNode], trigger: Optional[str]) -> str:
        """
        Compose the program skeleton: header, configuration, one step
        function per node, the main() entry point with error handling and
        the trigger installation routine.
        """
        trigger = trigger or DEFAULT_TRIGGER
        steps = ' -> '.join(re.sub(r'[^\w-]', '_', node.id) for node in nodes) or '(none)'
        config = json.dumps({'trigger': trigger, 'steps': [node.id for node in nodes]}, indent=2)

        # Only sanitized node ids go in the header; the trigger text lives in CONFIG
        sections = [
            '\n'.join([
                '/**',
                ' * Generated automation',
                f' * Steps: {steps}',
                ' */',
            ]),
            f"var CONFIG = {config};",
        ]
        sections.extend(render_fragment(node, self.fragments) for node in nodes)

        main_lines = [
            f"function {ENTRY_FUNCTION}() {{",
            "  try {",
            "    var data = null;",
        ]
        main_lines.extend(f"    data = {step_function_name(node)}(data);" for node in nodes)
        main_lines.extend([
            "    console.log('Automation completed: ' + CONFIG.steps.length + ' steps');",
            "    return data;",
            "  } catch (error) {",
            "    console.error('Automation failed: ' + error.message);",
            "    throw error;",
            "  }",
            "}",
        ])
        sections.append('\n'.join(main_lines))

        setup_lines = [
            "function setupTriggers() {",
            "  ScriptApp.getProjectTriggers().forEach(function(trigger) {",
            f"    if (trigger.getHandlerFunction() === '{ENTRY_FUNCTION}') {{",
            "      ScriptApp.deleteTrigger(trigger);",
            "    }",
            "  });",
        ]
        setup_lines.extend(f"  {line}" for line in trigger_installation(trigger))
        setup_lines.append("}")
        sections.append('\n'.join(setup_lines))

        return '\n\n'.join(sections) + '\n'

    def synthesize(self, context: AutomationContext, answers: Mapping[str, Any]) -> WorkflowArtifact:
        """
        Build the artifact for a context. The artifact is PENDING until the
        guardrail validator has checked it.
        """
        nodes = self.build_nodes(context, answers)
        edges = self.build_edges(nodes)
        script = self.render_script(nodes, answers.get('trigger'))

        logger.info(f"Synthesized workflow with {len(nodes)} nodes and {len(edges)} edges")
        return WorkflowArtifact(nodes=nodes, edges=edges, rendered_script=script)
