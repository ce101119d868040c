"""Tests for the conversation state machine and request resolution."""

import json
import logging

import pytest

from nl_to_workflow.conversation import (
    ConversationController,
    check_complete,
    derive_missing_fields,
    question_for_field,
)
from nl_to_workflow.errors import ValidationIncomplete
from nl_to_workflow.types import (
    DraftNode,
    InputKind,
    MissingField,
    Phase,
    QuestionCategory,
    ValidationStatus,
)


SHEET_URL = 'https://docs.google.com/spreadsheets/d/sheet123/edit'


def mail_draft():
    return [DraftNode(id='mail-1', type='gmail.search_emails', label='Read mail', required_fields=['query'])]


@pytest.fixture
def controller(catalog):
    return ConversationController(catalog)


class TestMissingFields:
    """Tests for missing-field derivation."""

    def test_missing_required_field(self):
        missing = derive_missing_fields(mail_draft(), {})

        assert missing == [MissingField(node_id='mail-1', field='query', prompt='Please provide query for Read mail')]
        assert missing[0].answer_key == 'mail-1.query'

    def test_answer_or_inline_parameter_satisfies(self):
        assert derive_missing_fields(mail_draft(), {'mail-1.query': 'label:leads'}) == []

        inline = [DraftNode(id='mail-1', type='gmail.search_emails', parameters={'query': 'is:unread'},
                            required_fields=['query'])]
        assert derive_missing_fields(inline, {}) == []

    @pytest.mark.parametrize("value", ['', '   ', None, '{{answers.search_query}}'])
    def test_blank_or_placeholder_is_missing(self, value):
        assert len(derive_missing_fields(mail_draft(), {'mail-1.query': value})) == 1

    def test_prompt_falls_back_to_type(self):
        drafts = [DraftNode(id='n1', type='slack.send_message', required_fields=['channel'])]
        assert derive_missing_fields(drafts, {})[0].prompt == 'Please provide channel for slack.send_message'

    def test_check_complete(self):
        check_complete(mail_draft(), {'mail-1.query': 'x'})
        with pytest.raises(ValidationIncomplete) as exc_info:
            check_complete(mail_draft(), {})
        assert [m.field for m in exc_info.value.missing] == ['query']

    @pytest.mark.parametrize("field_name,category", [
        ('query', QuestionCategory.FILTER),
        ('schedule', QuestionCategory.TRIGGER),
        ('spreadsheetId', QuestionCategory.DESTINATION),
    ])
    def test_question_for_field(self, field_name, category):
        question = question_for_field(MissingField(node_id='n1', field=field_name, prompt='p'))

        assert question.id == f'n1.{field_name}'
        assert question.input_kind == InputKind.TEXT
        assert question.category == category


class TestAdvance:
    """Tests for single-step transitions."""

    def test_collect_asks_for_missing_field(self, controller):
        session = controller.start_session('Read my mail', draft_nodes=mail_draft())

        result = controller.advance(session)

        assert result.needs_questions
        assert [q.id for q in result.questions] == ['mail-1.query']
        assert session.phase == Phase.COLLECT_REQUIREMENTS

    def test_collect_to_confirm(self, controller, caplog):
        session = controller.start_session('Read my mail', draft_nodes=mail_draft())
        controller.merge_answers(session, {'mail-1.query': 'label:leads'})

        with caplog.at_level(logging.INFO, logger='nl_to_workflow.conversation'):
            result = controller.advance(session)

        assert result.awaiting_confirmation
        assert session.phase == Phase.CONFIRM_REQUIREMENTS
        assert 'Phase COLLECT_REQUIREMENTS -> CONFIRM_REQUIREMENTS (missing=0)' in caplog.text

    def test_question_cap(self, catalog):
        controller = ConversationController(catalog, max_questions=2)
        drafts = [DraftNode(id='n1', type='x.y', required_fields=['a', 'b', 'c'])]
        session = controller.start_session('x', draft_nodes=drafts)

        result = controller.advance(session)

        assert len(result.questions) == 2
        assert len(result.missing_fields) == 3

    @pytest.mark.parametrize("message", ['Yes, looks good', 'ok', 'CONFIRM'])
    def test_affirmative_confirms(self, controller, message):
        session = controller.start_session('Read my mail', draft_nodes=mail_draft())
        session.phase = Phase.CONFIRM_REQUIREMENTS

        controller.advance(session, message)

        assert session.phase == Phase.GENERATE_SPEC

    def test_other_message_returns_to_collect(self, controller):
        session = controller.start_session('Read my mail', draft_nodes=mail_draft())
        session.phase = Phase.CONFIRM_REQUIREMENTS

        controller.advance(session, 'change the label')

        assert session.phase == Phase.COLLECT_REQUIREMENTS

    def test_generate_to_done(self, controller):
        session = controller.start_session('When I receive an email, log it to a spreadsheet',
                                           draft_nodes=mail_draft())
        controller.merge_answers(session, {
            'mail-1.query': 'label:leads',
            'trigger': 'every 15 minutes',
            'spreadsheet_url': SHEET_URL,
        })
        session.phase = Phase.GENERATE_SPEC

        result = controller.advance(session)

        assert session.phase == Phase.DONE
        assert result.artifact is session.result_artifact
        assert result.artifact.validation_status == ValidationStatus.ACCEPTED

    def test_generate_with_missing_field_stays_in_generate(self, controller):
        session = controller.start_session('When I receive an email, log it to a spreadsheet',
                                           draft_nodes=mail_draft())
        controller.merge_answers(session, {'trigger': 'daily', 'spreadsheet_url': SHEET_URL})
        session.phase = Phase.GENERATE_SPEC

        result = controller.advance(session)

        assert session.phase == Phase.GENERATE_SPEC
        assert result.needs_questions
        assert [q.id for q in result.questions] == ['mail-1.query']
        assert session.result_artifact is None

        # Answering the question and retrying finishes generation
        controller.merge_answers(session, {'mail-1.query': 'label:leads'})
        result = controller.advance(session)

        assert session.phase == Phase.DONE
        assert result.artifact.validation_status == ValidationStatus.ACCEPTED

    def test_request_without_known_apps_is_malformed_mapping(self, controller):
        session = controller.start_session('water the plants', draft_nodes=[])
        controller.merge_answers(session, {'trigger': 'daily'})
        session.phase = Phase.GENERATE_SPEC

        result = controller.advance(session)

        assert result.error == 'MalformedAnswerMapping'
        assert result.error_detail['field'] == 'trigger_app'
        assert result.artifact is None
        assert session.phase == Phase.GENERATE_SPEC

    def test_guardrail_rejection_stays_in_generate(self, controller):
        session = controller.start_session('When I receive an email, log it to a spreadsheet',
                                           draft_nodes=mail_draft())
        controller.merge_answers(session, {
            'mail-1.query': 'x',
            'trigger': 'daily',
            'search_query': 'process.env.SECRET',
        })
        session.phase = Phase.GENERATE_SPEC

        result = controller.advance(session)

        assert session.phase == Phase.GENERATE_SPEC
        assert result.error == 'GuardrailViolation'
        assert session.result_artifact is None
        payload = result.to_dict()
        assert payload['detail']['violations'][0]['rule'] == 'process_access'
        assert 'renderedScript' not in json.dumps(payload)

    def test_missing_trigger_is_malformed_mapping(self, controller):
        session = controller.start_session('Read my mail', draft_nodes=mail_draft())
        controller.merge_answers(session, {'mail-1.query': 'x'})
        session.phase = Phase.GENERATE_SPEC

        result = controller.advance(session)

        assert result.error == 'MalformedAnswerMapping'
        assert result.error_detail['field'] == 'trigger'
        assert session.phase == Phase.GENERATE_SPEC


class TestHandleTurn:
    """Tests for multi-turn handling without external providers."""

    @pytest.mark.asyncio
    async def test_vague_request_needs_trigger_question(self, controller):
        session = controller.start_session('automate my emails')

        result = await controller.handle_turn(session)

        assert result.needs_questions
        triggers = [q for q in result.questions if q.category == QuestionCategory.TRIGGER]
        assert len(triggers) == 1
        assert triggers[0].input_kind == InputKind.CHOICE
        assert session.context.trigger_app == 'Gmail'

    @pytest.mark.asyncio
    async def test_conversation_to_done(self, controller):
        session = controller.start_session('automate my emails')
        await controller.handle_turn(session)

        result = await controller.handle_turn(
            session, answers={'schedule_config': 'Every hour', 'search_query': 'label:inbox'}
        )
        assert result.awaiting_confirmation
        assert session.canonical_answers['trigger'] == 'On a time-based trigger every hour'

        result = await controller.handle_turn(session, user_message='ok')

        assert session.phase == Phase.DONE
        assert result.artifact.validation_status == ValidationStatus.ACCEPTED
        assert 'everyHours(1)' in result.artifact.rendered_script
        assert '"query": "label:inbox"' in result.artifact.rendered_script

    @pytest.mark.asyncio
    async def test_edit_request_waits_for_confirmation_again(self, controller):
        session = controller.start_session('automate my emails')
        await controller.handle_turn(session, answers={'schedule_config': 'daily'})
        assert session.phase == Phase.CONFIRM_REQUIREMENTS

        result = await controller.handle_turn(session, user_message='use label:vip instead',
                                              answers={'search_query': 'label:vip'})

        assert result.awaiting_confirmation
        assert session.phase == Phase.CONFIRM_REQUIREMENTS
        assert session.canonical_answers['search_query'] == 'label:vip'


class TestResolveRequest:
    """End-to-end one-shot resolution."""

    @pytest.mark.asyncio
    async def test_email_to_spreadsheet(self, controller):
        result = await controller.resolve_request(
            'When I receive an email, log it to a spreadsheet',
            canonical_answers={'trigger': 'every 15 minutes', 'spreadsheet_url': SHEET_URL},
        )

        artifact = result.artifact
        assert artifact is not None
        assert artifact.validation_status == ValidationStatus.ACCEPTED
        assert [(n.app_name, n.function_id) for n in artifact.nodes] == [
            ('Gmail', 'search_emails'),
            ('Google Sheets', 'append_row'),
        ]
        assert [n.position for n in artifact.nodes] == [(100, 100), (320, 220)]
        assert artifact.edges[0].data_type == 'emails'
        assert 'everyMinutes(15)' in artifact.rendered_script
        assert artifact.nodes[1].parameters['spreadsheetId'] == 'sheet123'

    @pytest.mark.asyncio
    async def test_comment_breaking_trigger_stays_in_config(self, controller):
        trigger = "weekly */ var leaked = eval('1+1'); /*"

        result = await controller.resolve_request(
            'When I receive an email, log it to a spreadsheet',
            canonical_answers={'trigger': trigger, 'spreadsheet_url': SHEET_URL},
        )

        script = result.artifact.rendered_script
        header = script[:script.index('*/') + 2]
        assert header.endswith(' */')
        assert 'leaked' not in header
        # The only copy of the trigger text is a JSON string literal inside CONFIG
        assert script.count('leaked') == 1
        assert json.dumps(result.session.canonical_answers['trigger']) in script

    @pytest.mark.asyncio
    async def test_unconfirmed_request_waits(self, controller):
        result = await controller.resolve_request(
            'When I receive an email, log it to a spreadsheet',
            canonical_answers={'trigger': 'daily', 'spreadsheet_url': SHEET_URL},
            confirmed=False,
        )

        assert result.awaiting_confirmation
        assert result.artifact is None

    @pytest.mark.asyncio
    async def test_missing_information_returns_questions(self, controller):
        result = await controller.resolve_request('When I receive an email, log it to a spreadsheet')

        assert result.needs_questions
        # General questions first, capped per turn
        assert [q.id for q in result.questions] == ['schedule_config', 'search_query']
        assert [m.answer_key for m in result.missing_fields] == ['google-sheets-1.spreadsheetId']
