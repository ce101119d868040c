"""Tests for guardrail validation of rendered scripts."""

import pytest

from nl_to_workflow.errors import GuardrailViolation
from nl_to_workflow.guardrails import GuardrailValidator
from nl_to_workflow.types import ValidationStatus, WorkflowArtifact


SAFE_SCRIPT = """
function step_slack_0(input) {
  var params = {"channel": "#ops"};
  UrlFetchApp.fetch(params.webhookUrl, {method: 'post'});
  var rows = SpreadsheetApp.openById('abc').getSheets()[0].getDataRange().getValues();
  return rows;
}
"""


class TestScan:
    """Tests for GuardrailValidator.scan."""

    def test_safe_script(self):
        validator = GuardrailValidator()
        assert validator.scan(SAFE_SCRIPT) == []
        assert validator.is_safe(SAFE_SCRIPT)

    @pytest.mark.parametrize("line,rule", [
        ("var fs = require('fs');", 'require'),
        ("import axios from 'axios';", 'es_import'),
        ("const mod = await import('./x.js');", 'es_import'),
        ("// run npm install lodash first", 'package_manager'),
        ("fetch('https://example.com');", 'network_call'),
        ("window.fetch('https://example.com');", 'network_call'),
        ("UrlFetchApp .fetch('https://example.com');", 'network_call'),
        ("var xhr = new XMLHttpRequest();", 'xml_http_request'),
        ("var key = process.env.SECRET;", 'process_access'),
        ("spawn('ls');", 'spawn'),
        ("var data = fs.readFileSync('/etc/passwd');", 'fs_access'),
        ("execSync('ls');", 'sync_io'),
    ])
    def test_forbidden_patterns(self, line, rule):
        violations = GuardrailValidator().scan(line)
        assert rule in [v.rule for v in violations]

    def test_comments_and_strings_are_scanned(self):
        script = "// remember to require('fs') later\nvar s = 'process.env';"

        violations = GuardrailValidator().scan(script)

        assert [(v.rule, v.line) for v in violations] == [('require', 1), ('process_access', 2)]

    def test_every_match_is_reported(self):
        violations = GuardrailValidator().scan("var data = fs.readFileSync('/etc/passwd');")

        assert sorted(v.rule for v in violations) == ['fs_access', 'sync_io']
        assert all(v.line == 1 for v in violations)

    def test_excerpt_is_matched_text_only(self):
        violations = GuardrailValidator().scan("var secretToken = 'abc'; var key = process.env.SECRET;")

        assert len(violations) == 1
        assert violations[0].excerpt == 'process.env'
        assert violations[0].category == 'process'


class TestEnforce:
    """Tests for GuardrailValidator.enforce."""

    def test_accepts_safe_artifact(self):
        artifact = WorkflowArtifact(nodes=[], edges=[], rendered_script=SAFE_SCRIPT)

        result = GuardrailValidator().enforce(artifact)

        assert result.validation_status == ValidationStatus.ACCEPTED
        assert result.rendered_script == SAFE_SCRIPT

    def test_rejects_and_clears_script(self, caplog):
        artifact = WorkflowArtifact(nodes=[], edges=[], rendered_script="require('child_process');")

        with pytest.raises(GuardrailViolation) as exc_info:
            GuardrailValidator().enforce(artifact)

        assert artifact.validation_status == ValidationStatus.REJECTED
        assert artifact.rendered_script == ''
        detail = exc_info.value.to_dict()
        assert 'child_process' in detail['detail']
        assert {v['rule'] for v in detail['violations']} == {'require', 'child_process'}
        assert 'Guardrail rejected script' in caplog.text
