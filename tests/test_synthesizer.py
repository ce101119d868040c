"""Tests for workflow synthesis and script rendering."""

import pytest

from nl_to_workflow.fragments import render_fragment, step_function_name, stub_fragment
from nl_to_workflow.guardrails import GuardrailValidator
from nl_to_workflow.synthesizer import (
    WorkflowSynthesizer,
    infer_data_type,
    layout_position,
    slugify,
    trigger_installation,
)
from nl_to_workflow.types import AutomationContext, ValidationStatus, WorkflowEdge, WorkflowNode


CONTEXT = AutomationContext(
    intent='email_tracking',
    trigger_app='Gmail',
    action_apps=('Google Sheets',),
    prompt='track emails and log them to a spreadsheet',
)

ANSWERS = {
    'trigger': 'On a time-based trigger every hour',
    'spreadsheet_url': 'https://docs.google.com/spreadsheets/d/sheet123/edit',
    'google-sheets-1.sheetName': 'Inbox Log',
}


class TestLayoutAndEdges:
    """Tests for grid layout and edge data types."""

    def test_layout_is_zigzag_grid(self):
        assert [layout_position(i) for i in range(4)] == [(100, 100), (320, 220), (540, 100), (760, 220)]

    @pytest.mark.parametrize("function_id,output_type,expected", [
        ('search_emails', None, 'emails'),
        ('read_range', None, 'rows'),
        ('create_event', None, 'event'),
        ('do_thing', None, 'data'),
        ('search_emails', 'threads', 'threads'),
    ])
    def test_infer_data_type(self, function_id, output_type, expected):
        assert infer_data_type(function_id, output_type) == expected

    def test_slugify(self):
        assert slugify('Google Sheets') == 'google-sheets'
        assert slugify('  ') == 'app'


class TestWorkflowSynthesizer:
    """Tests for WorkflowSynthesizer.synthesize."""

    def test_nodes_in_flow_order(self, catalog):
        artifact = WorkflowSynthesizer(catalog).synthesize(CONTEXT, ANSWERS)

        assert [(n.id, n.app_name, n.function_id) for n in artifact.nodes] == [
            ('gmail-0', 'Gmail', 'search_emails'),
            ('google-sheets-1', 'Google Sheets', 'append_row'),
        ]
        assert [n.position for n in artifact.nodes] == [(100, 100), (320, 220)]
        assert artifact.nodes[0].label == 'Search Emails'
        assert artifact.validation_status == ValidationStatus.PENDING

    def test_node_answers_override_parameters(self, catalog):
        artifact = WorkflowSynthesizer(catalog).synthesize(CONTEXT, ANSWERS)

        sheet = artifact.nodes[1]
        assert sheet.parameters['sheetName'] == 'Inbox Log'
        assert sheet.parameters['spreadsheetId'] == 'sheet123'

    def test_edges_carry_previous_output_type(self, catalog):
        artifact = WorkflowSynthesizer(catalog).synthesize(CONTEXT, ANSWERS)
        assert artifact.edges == [WorkflowEdge('gmail-0', 'google-sheets-1', 'emails')]

    def test_script_skeleton(self, catalog):
        script = WorkflowSynthesizer(catalog).synthesize(CONTEXT, ANSWERS).rendered_script

        assert script.startswith('/**')
        assert 'var CONFIG = {' in script
        assert 'function step_gmail_0(input) {' in script
        assert 'function step_google_sheets_1(input) {' in script
        assert script.index('data = step_gmail_0(data);') < script.index('data = step_google_sheets_1(data);')
        assert 'function main() {' in script
        assert '} catch (error) {' in script
        assert "ScriptApp.newTrigger('main').timeBased().everyHours(1).create();" in script
        assert '"sheetName": "Inbox Log"' in script

    def test_rendered_script_passes_guardrails(self, catalog):
        context = AutomationContext(
            intent='notification_automation',
            trigger_app='Gmail',
            action_apps=('Google Sheets', 'Slack'),
            prompt='track emails, log them to a spreadsheet and notify slack',
        )
        script = WorkflowSynthesizer(catalog).synthesize(context, ANSWERS).rendered_script

        assert 'UrlFetchApp.fetch(' in script
        assert GuardrailValidator().scan(script) == []

    def test_unknown_app_renders_stub(self, catalog):
        context = AutomationContext(intent='custom_automation', trigger_app='Gmail',
                                    action_apps=('Notion',), prompt='track emails into notion')

        artifact = WorkflowSynthesizer(catalog).synthesize(context, ANSWERS)

        notion = artifact.nodes[1]
        assert notion.function_id == 'process_data'
        assert notion.label == 'Notion process_data'
        assert 'function step_notion_1(input) {' in artifact.rendered_script
        assert GuardrailValidator().scan(artifact.rendered_script) == []

    def test_draft_nodes_match_synthesized_ids(self, catalog):
        drafts = WorkflowSynthesizer(catalog).draft_nodes(CONTEXT, {})

        assert [d.id for d in drafts] == ['gmail-0', 'google-sheets-1']
        assert drafts[0].type == 'gmail.search_emails'
        assert drafts[1].required_fields == ['spreadsheetId']
        assert drafts[1].parameters['spreadsheetId'] == '{{answers.spreadsheet_url}}'
        assert drafts[1].declared_types == {'spreadsheetId': 'string'}

    def test_header_carries_no_answer_text(self, catalog):
        trigger = "On a time-based trigger weekly */ var leaked = eval('1+1'); /*"
        node = WorkflowNode(id='odd*/id', app_name='Notion', function_id='process_data',
                            parameters={}, position=(100, 100))

        script = WorkflowSynthesizer(catalog).render_script([node], trigger)

        header = script[:script.index('*/') + 2]
        assert header == '/**\n * Generated automation\n * Steps: odd__id\n */'
        assert 'leaked' not in header
        assert '"trigger": "On a time-based trigger weekly */ var leaked = eval(\'1+1\'); /*"' in script

    def test_deterministic(self, catalog):
        synthesizer = WorkflowSynthesizer(catalog)
        assert synthesizer.synthesize(CONTEXT, ANSWERS) == synthesizer.synthesize(CONTEXT, ANSWERS)


class TestTriggerInstallation:
    """Tests for trigger_installation."""

    @pytest.mark.parametrize("descriptor,expected", [
        (None, ".timeBased().everyMinutes(15).create();"),
        ('On a time-based trigger every 5 minutes', ".timeBased().everyMinutes(5).create();"),
        ('On a time-based trigger every 7 minutes', ".timeBased().everyMinutes(5).create();"),
        ('On a time-based trigger every 6 hours', ".timeBased().everyHours(6).create();"),
        ('On a time-based trigger every 3 hours', ".timeBased().everyHours(2).create();"),
        ('On a time-based trigger every 24 hours', ".timeBased().everyHours(12).create();"),
        ('On a time-based trigger every hour', ".timeBased().everyHours(1).create();"),
        ('On a time-based trigger daily', ".timeBased().everyDays(1).atHour(9).create();"),
        ('On spreadsheet edit', ".forSpreadsheet(SpreadsheetApp.getActive()).onEdit().create();"),
        ('On form submission', ".forForm(FormApp.getActiveForm()).onFormSubmit().create();"),
        ('On email received', ".timeBased().everyMinutes(5).create();"),
        ('On a time-based trigger every Tuesday', ".timeBased().everyMinutes(15).create();"),
    ])
    def test_descriptors(self, descriptor, expected):
        lines = trigger_installation(descriptor)
        assert lines == ["ScriptApp.newTrigger('main')" + expected]

    def test_webhook(self):
        lines = trigger_installation('On webhook received')
        assert 'ScriptApp.getService().getUrl()' in lines[0]


class TestFragments:
    """Tests for the fragment registry."""

    def test_step_names(self):
        node = WorkflowNode(id='google-sheets-1', app_name='Google Sheets', function_id='append_row',
                            parameters={}, position=(0, 0))
        assert step_function_name(node) == 'step_google_sheets_1'

    def test_parameters_embedded_as_json(self):
        node = WorkflowNode(id='gmail-0', app_name='Gmail', function_id='send_email',
                            parameters={'to': "o'brien@example.com", 'subject': 'Hi "there"', 'body': 'x'},
                            position=(0, 0))
        rendered = render_fragment(node)
        assert '"subject": "Hi \\"there\\""' in rendered
        assert '"to": "o\'brien@example.com"' in rendered

    def test_stub_never_carries_node_text(self):
        node = WorkflowNode(id='evil-0', app_name='process.env', function_id='fetch(x)',
                            parameters={'cmd': 'require("fs")'}, position=(0, 0))

        rendered = stub_fragment(node)

        assert rendered.startswith('function step_evil_0(input) {')
        assert 'process' not in rendered
        assert GuardrailValidator().scan(rendered) == []

    def test_custom_registry(self):
        node = WorkflowNode(id='gmail-0', app_name='Gmail', function_id='search_emails',
                            parameters={}, position=(0, 0))
        assert render_fragment(node, registry={}) == stub_fragment(node)
