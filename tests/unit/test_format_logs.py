"""Unit tests for the log pretty-printer."""

import json
import re

from scripts.format_logs import Colors, format_log_line, risk_color

ANSI = re.compile(r'\x1b\[[0-9;]*m')


def plain(text: str) -> str:
  return ANSI.sub('', text)


def test_structured_log_line_shows_message_and_context():
  line = json.dumps({
    'timestamp': '2026-03-01T12:00:05.123456Z',
    'level': 'INFO',
    'message': 'Recorded event',
    'module': 'ingestion_service',
    'function': 'record_event',
    'request_id': 'req-1',
    'client_id': 'c1',
    'event_type': 'page_view',
  })

  output = plain(format_log_line(line))

  assert output.startswith('12:00:05 │ INFO    │ Recorded event')
  assert 'request_id: req-1' in output
  assert 'event_type: page_view' in output
  assert 'module' not in output


def test_log_event_line_shows_event_name():
  line = json.dumps({'level': 'INFO', 'event': 'ingest.duplicate_event', 'event_id': 'evt-1'})

  output = plain(format_log_line(line))

  assert '[ingest.duplicate_event]' in output
  assert 'event_id: evt-1' in output


def test_uvicorn_access_line_is_reformatted():
  line = 'INFO:     127.0.0.1:52133 - "POST /api/track-event HTTP/1.1" 200 OK'

  assert plain(format_log_line(line)) == '127.0.0.1:52133 POST /api/track-event → 200 OK'


def test_other_lines_pass_through_dimmed():
  assert plain(format_log_line('plain text\n')) == 'plain text'
  assert format_log_line('   \n') == ''
  assert plain(format_log_line('{not json')) == '{not json'


def test_risk_scores_use_risk_level_bands():
  assert risk_color(0.1) == Colors.BRIGHT_GREEN
  assert risk_color(0.5) == Colors.BRIGHT_YELLOW
  assert risk_color(0.9) == Colors.BRIGHT_RED
