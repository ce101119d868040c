"""Shared fixtures for nl_to_workflow tests."""

import pytest

from nl_to_workflow.catalog import StaticCapabilityCatalog


SAMPLE_CATALOG = {
    "version": "2025.01",
    "apps": {
        "Gmail": [
            {
                "function_id": "search_emails",
                "display_name": "Search Emails",
                "keyword_hints": ["email", "inbox", "track"],
                "category": "Email",
                "parameter_schema": {
                    "required": ["query"],
                    "properties": {"query": {"type": "string"}, "maxResults": {"type": "integer"}},
                },
                "output_type": "emails",
            },
            {
                "function_id": "send_email",
                "display_name": "Send Email",
                "keyword_hints": ["send email", "reply"],
                "category": "Email",
                "parameter_schema": {
                    "required": ["to", "subject", "body"],
                    "properties": {"to": {"type": "string"}},
                },
            },
            {
                "function_id": "set_auto_reply",
                "display_name": "Set Auto Reply",
                "keyword_hints": ["auto reply", "out of office"],
                "category": "Automation",
                "parameter_schema": {"required": ["message"]},
            },
        ],
        "Google Sheets": [
            {
                "function_id": "read_range",
                "display_name": "Read Range",
                "keyword_hints": ["read sheet"],
                "category": "Data",
                "parameter_schema": {"required": ["spreadsheetId", "range"]},
                "output_type": "rows",
            },
            {
                "function_id": "append_row",
                "display_name": "Append Row",
                "keyword_hints": ["spreadsheet", "sheet", "log"],
                "category": "Data",
                "parameter_schema": {
                    "required": ["spreadsheetId"],
                    "properties": {"spreadsheetId": {"type": "string"}},
                },
            },
        ],
        "Slack": [
            {
                "function_id": "get_user_info",
                "display_name": "Get User Info",
                "keyword_hints": [],
                "category": "Communication",
                "parameter_schema": {"required": ["user"]},
            },
            {
                "function_id": "send_message",
                "display_name": "Send Message",
                "keyword_hints": ["slack", "notify"],
                "category": "Communication",
                "parameter_schema": {"required": ["channel", "text"]},
            },
        ],
    },
}


@pytest.fixture
def catalog():
    return StaticCapabilityCatalog.from_dict(SAMPLE_CATALOG)
