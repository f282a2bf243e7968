#!/usr/bin/env python3
"""
Render a notification text without sending it.

Usage:
    python scripts/preview_message.py --list
    python scripts/preview_message.py attendance_reminder '{"workerName": "Иван", "projectName": "ЖК Север", "time": "08:00"}'
    python scripts/preview_message.py security_alert '{"alertMessage": "Дверь склада открыта"}'

The second argument is the action's data object as JSON (defaults to {}).
"""
import json
import sys

from buildnotify.core.errors import UnsupportedAction
from buildnotify.core.formatters import format_message, list_actions


def main():
    args = sys.argv[1:]

    if not args or args[0] in ("--help", "-h"):
        print(__doc__)
        return

    if args[0] == "--list":
        for action in list_actions():
            print(action)
        return

    action = args[0]
    try:
        data = json.loads(args[1]) if len(args) > 1 else {}
    except json.JSONDecodeError as exc:
        print(f"Invalid JSON data: {exc}", file=sys.stderr)
        sys.exit(2)

    if not isinstance(data, dict):
        print("Data must be a JSON object", file=sys.stderr)
        sys.exit(2)

    try:
        print(format_message(action, data))
    except UnsupportedAction as exc:
        print(exc.detail, file=sys.stderr)
        print(f"Known actions: {', '.join(list_actions())}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
