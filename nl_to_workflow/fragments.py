"""
Code-fragment registry for Apps Script rendering.

Each (application, functionId) maps to a pure generator that turns one
workflow node into a self-contained step function. Step functions take the
previous step's output and return their own. Parameter values are embedded
as JSON literals, never spliced into code.
"""

import json
import logging
import re
from string import Template
from typing import Callable, Dict, Optional, Tuple

from .types import WorkflowNode

logger = logging.getLogger(__name__)

FragmentGenerator = Callable[[WorkflowNode], str]

FRAGMENTS: Dict[Tuple[str, str], FragmentGenerator] = {}


def fragment(app_name: str, function_id: str):
    """Register a fragment generator for (app, function)."""
    def decorator(fn: FragmentGenerator) -> FragmentGenerator:
        FRAGMENTS[(app_name, function_id)] = fn
        return fn
    return decorator


def step_function_name(node: WorkflowNode) -> str:
    return 'step_' + re.sub(r'\W', '_', node.id)


def js_literal(value) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def _render(template: str, node: WorkflowNode) -> str:
    return Template(template).substitute(
        name=step_function_name(node),
        params=js_literal(node.parameters).replace('\n', '\n  '),
    ).strip()


def render_fragment(
    node: WorkflowNode,
    registry: Optional[Dict[Tuple[str, str], FragmentGenerator]] = None
) -> str:
    """Render one node, using the stub fragment when nothing is registered."""
    registry = FRAGMENTS if registry is None else registry
    generator = registry.get((node.app_name, node.function_id))
    if generator is None:
        logger.debug(f"No fragment for {node.app_name}.{node.function_id}, using stub")
        return stub_fragment(node)
    return generator(node)


def stub_fragment(node: WorkflowNode) -> str:
    # Only the sanitized step name is interpolated, so the stub cannot carry
    # catalog or user text into the script.
    return _render('''
function $name(input) {
  // No generator registered for this step; data passes through unchanged
  console.log('Pass-through step executed');
  return input;
}
''', node)


# ============================================================================
# Gmail
# ============================================================================

@fragment('Gmail', 'search_emails')
def gmail_search_emails(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var query = params.query + (params.dateRange ? ' ' + params.dateRange : '');
  var threads = GmailApp.search(query, 0, params.maxResults || 50);
  var emails = [];
  threads.forEach(function(thread) {
    thread.getMessages().forEach(function(message) {
      emails.push({
        id: message.getId(),
        from: message.getFrom(),
        subject: message.getSubject(),
        date: message.getDate().toISOString(),
        snippet: message.getPlainBody().substring(0, 500)
      });
    });
  });
  console.log('Found ' + emails.length + ' emails');
  return emails;
}
''', node)


@fragment('Gmail', 'send_email')
def gmail_send_email(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  GmailApp.sendEmail(params.to, params.subject, params.body);
  console.log('Email sent to ' + params.to);
  return input;
}
''', node)


@fragment('Gmail', 'set_auto_reply')
def gmail_set_auto_reply(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var threads = GmailApp.search('is:unread in:inbox', 0, 50);
  threads.forEach(function(thread) {
    thread.reply(params.message);
    thread.markRead();
  });
  console.log('Auto-replied to ' + threads.length + ' threads');
  return threads.length;
}
''', node)


# ============================================================================
# Google Sheets
# ============================================================================

@fragment('Google Sheets', 'append_row')
def sheets_append_row(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var spreadsheet = SpreadsheetApp.openById(params.spreadsheetId);
  var sheet = spreadsheet.getSheetByName(params.sheetName) || spreadsheet.getSheets()[0];
  var items = Array.isArray(input) ? input : [input || {}];
  var columns = params.columns || ['Date'];
  items.forEach(function(item) {
    sheet.appendRow(columns.map(function(column) {
      if (column === 'Date') {
        return new Date();
      }
      var value = item[column.toLowerCase()];
      return value === undefined ? '' : value;
    }));
  });
  console.log('Appended ' + items.length + ' rows');
  return items;
}
''', node)


@fragment('Google Sheets', 'read_range')
def sheets_read_range(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var sheet = SpreadsheetApp.openById(params.spreadsheetId).getSheets()[0];
  var values = sheet.getRange(params.range).getValues();
  var headers = values.shift() || [];
  return values.map(function(row) {
    var record = {};
    headers.forEach(function(header, i) {
      record[header] = row[i];
    });
    return record;
  });
}
''', node)


# ============================================================================
# Slack
# ============================================================================

@fragment('Slack', 'send_message')
def slack_send_message(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var text = params.text;
  if (Array.isArray(input)) {
    text += ' (' + input.length + ' items)';
  }
  UrlFetchApp.fetch(params.webhookUrl, {
    method: 'post',
    contentType: 'application/json',
    payload: JSON.stringify({ channel: params.channel, text: text })
  });
  return input;
}
''', node)


# ============================================================================
# Google Calendar
# ============================================================================

@fragment('Google Calendar', 'create_event')
def calendar_create_event(node: WorkflowNode) -> str:
    return _render('''
function $name(input) {
  var params = $params;
  var calendar = params.calendarId === 'primary'
    ? CalendarApp.getDefaultCalendar()
    : CalendarApp.getCalendarById(params.calendarId);
  var start = new Date();
  var end = new Date(start.getTime() + (params.durationMinutes || 30) * 60000);
  var event = calendar.createEvent(params.title, start, end);
  return { eventId: event.getId() };
}
''', node)
