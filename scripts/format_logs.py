#!/usr/bin/env python3
"""Pretty-print ChurnGuard server logs (JSON lines) with colors.

Usage:
    uvicorn churnguard_server.app:app 2>&1 | python scripts/format_logs.py
"""

import json
import re
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    WHITE = '\033[37m'
    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_BLUE = '\033[94m'
    BRIGHT_MAGENTA = '\033[95m'
    BRIGHT_CYAN = '\033[96m'
    BRIGHT_WHITE = '\033[97m'

    BG_RED = '\033[41m'


# Shown first, in this order
IMPORTANT_FIELDS = ['request_id', 'correlation_id', 'client_id', 'user_id', 'event_type',
                    'endpoint', 'method', 'status_code', 'duration_ms', 'risk_score']
SKIP_FIELDS = {'timestamp', 'level', 'message', 'module', 'function', 'event'}


def format_timestamp(timestamp_str: str) -> str:
    """Format ISO timestamp to HH:MM:SS."""
    try:
        dt = datetime.fromisoformat(timestamp_str.replace('Z', '+00:00'))
        return f"{Colors.DIM}{dt.strftime('%H:%M:%S')}{Colors.RESET}"
    except ValueError:
        return f"{Colors.DIM}{timestamp_str}{Colors.RESET}"


def get_level_color(level: str) -> str:
    """Get color for log level."""
    level = level.upper()
    if level == 'ERROR':
        return f"{Colors.BG_RED}{Colors.WHITE}{Colors.BOLD}"
    elif level in ('WARNING', 'WARN'):
        return f"{Colors.BRIGHT_YELLOW}{Colors.BOLD}"
    elif level == 'INFO':
        return Colors.BRIGHT_CYAN
    elif level == 'DEBUG':
        return Colors.DIM
    return Colors.WHITE


def status_color(status: int) -> str:
    if 200 <= status < 300:
        return Colors.BRIGHT_GREEN
    if 400 <= status < 500:
        return Colors.BRIGHT_YELLOW
    return Colors.BRIGHT_RED


def risk_color(score: float) -> str:
    """Same bands as the prediction risk levels."""
    if score < 0.3:
        return Colors.BRIGHT_GREEN
    if score < 0.7:
        return Colors.BRIGHT_YELLOW
    return Colors.BRIGHT_RED


def format_field(field: str, value: Any) -> str:
    label = f"{Colors.DIM}{field}:{Colors.RESET}"
    try:
        if field == 'duration_ms':
            duration = float(value)
            color = Colors.BRIGHT_GREEN if duration < 100 else Colors.BRIGHT_YELLOW if duration < 1000 else Colors.BRIGHT_RED
            return f"{label} {color}{duration:.1f}ms{Colors.RESET}"
        if field == 'status_code':
            return f"{label} {status_color(int(value))}{value}{Colors.RESET}"
        if field == 'risk_score':
            return f"{label} {risk_color(float(value))}{value}{Colors.RESET}"
    except (TypeError, ValueError):
        pass

    str_value = str(value)
    if len(str_value) > 100:
        str_value = str_value[:97] + '...'
    return f"{label} {Colors.BRIGHT_WHITE}{str_value}{Colors.RESET}"


def format_json_log(log_dict: Dict[str, Any]) -> str:
    """Format a structured log entry or a `log_event` line."""
    parts = []

    if 'timestamp' in log_dict:
        parts.append(format_timestamp(str(log_dict['timestamp'])))

    if 'level' in log_dict:
        level = str(log_dict['level'])
        parts.append(f"{get_level_color(level)}{level:7s}{Colors.RESET}")

    if 'message' in log_dict:
        message = str(log_dict['message'])
        message = re.sub(r'\b(GET|POST|OPTIONS)\b',
                         f'{Colors.BOLD}{Colors.BRIGHT_MAGENTA}\\1{Colors.RESET}',
                         message)
        parts.append(message)
    elif 'event' in log_dict:
        parts.append(f"{Colors.BRIGHT_BLUE}[{log_dict['event']}]{Colors.RESET}")

    main_line = ' │ '.join(parts)

    context = [format_field(field, log_dict[field]) for field in IMPORTANT_FIELDS if field in log_dict]
    context.extend(
        format_field(key, value)
        for key, value in log_dict.items()
        if key not in SKIP_FIELDS and key not in IMPORTANT_FIELDS
    )

    if context:
        main_line += f"\n  {Colors.DIM}↳{Colors.RESET} " + f" {Colors.DIM}•{Colors.RESET} ".join(context)
    return main_line


def format_uvicorn_log(line: str) -> str:
    """Format uvicorn HTTP access logs."""
    # Match: INFO:     127.0.0.1:52133 - "POST /api/track-event HTTP/1.1" 200 OK
    match = re.match(r'^(INFO|WARNING|ERROR):\s+(.+?)\s+-\s+"(\w+)\s+(.+?)\s+HTTP/[\d.]+"?\s+(\d+)\s+(.+)$', line)
    if not match:
        return line

    _, client, method, path, status, status_text = match.groups()
    return (
        f"{Colors.DIM}{client}{Colors.RESET} {Colors.BOLD}{Colors.BRIGHT_MAGENTA}{method}{Colors.RESET} "
        f"{Colors.BRIGHT_BLUE}{path}{Colors.RESET} → {status_color(int(status))}{status} {status_text}{Colors.RESET}"
    )


def format_log_line(line: str) -> str:
    """Format a single log line with colors."""
    line = line.rstrip()
    if not line:
        return ''

    if line.startswith('{'):
        try:
            return format_json_log(json.loads(line))
        except json.JSONDecodeError:
            pass

    if line.startswith('INFO:     ') and ' - "' in line:
        return format_uvicorn_log(line)

    return f"{Colors.DIM}{line}{Colors.RESET}"


def main():
    """Read logs from stdin and write the formatted lines."""
    sys.stdout.reconfigure(line_buffering=True)

    try:
        for line in sys.stdin:
            formatted = format_log_line(line)
            if formatted:
                print(formatted, flush=True)
    except KeyboardInterrupt:
        pass
    except BrokenPipeError:
        # Reader went away (e.g. piped into `head`)
        sys.stderr.close()


if __name__ == '__main__':
    main()
