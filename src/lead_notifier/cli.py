"""Operator command line for lead notifications.

Usage:
    lead-notifier health
    lead-notifier test-send --title "Ping" --message "Hello from ops"
    lead-notifier retry <log_id>
    lead-notifier analytics --period 7d
"""

import argparse
import asyncio
import json
import socket
import sys
from typing import Any, Callable, Coroutine, List, Optional

from pydantic import BaseModel, ValidationError

from lead_notifier.database.session import close_db, get_session_context
from lead_notifier.exceptions import APIException
from lead_notifier.models.console import SendTestNotificationRequest
from lead_notifier.services.console import ANALYTICS_PERIODS, NotificationConsoleService
from lead_notifier.utils.logging import setup_logging

CLI_USER_AGENT = "lead-notifier-cli"


def _print_json(payload: Any, stream=None) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    print(json.dumps(payload, indent=2, default=str), file=stream or sys.stdout)


async def _with_console(
    action: Callable[[NotificationConsoleService], Coroutine[Any, Any, Any]],
) -> Any:
    try:
        async with get_session_context() as session:
            return await action(NotificationConsoleService(session))
    finally:
        await close_db()


async def _health(args: argparse.Namespace) -> int:
    health = await _with_console(lambda console: console.health())
    _print_json(health)
    return 0 if health.overall_health == "healthy" else 1


async def _test_send(args: argparse.Namespace) -> int:
    additional_data = json.loads(args.data) if args.data else {}
    request = SendTestNotificationRequest(
        title=args.title,
        message=args.message,
        additional_data=additional_data,
    )
    result = await _with_console(
        lambda console: console.send_test_notification(
            request, host=args.host, user_agent=CLI_USER_AGENT
        )
    )
    _print_json(result)
    return 0


async def _retry(args: argparse.Namespace) -> int:
    result = await _with_console(
        lambda console: console.retry_notification(args.log_id, user_agent=CLI_USER_AGENT)
    )
    _print_json(result)
    return 0


async def _analytics(args: argparse.Namespace) -> int:
    result = await _with_console(lambda console: console.analytics(args.period))
    _print_json(result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lead-notifier",
        description="Inspect and re-drive lead submission push notifications",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    health = subparsers.add_parser("health", help="Test the OneSignal connection")
    health.set_defaults(handler=_health)

    test_send = subparsers.add_parser("test-send", help="Send an admin test notification")
    test_send.add_argument("--title", required=True, help="Notification title (max 255 chars)")
    test_send.add_argument("--message", required=True, help="Notification message (max 1000 chars)")
    test_send.add_argument("--data", help="Additional data as a JSON object")
    test_send.add_argument(
        "--host",
        default=socket.gethostname(),
        help="Host used for the admin-test@<host> audit email (default: this machine)",
    )
    test_send.set_defaults(handler=_test_send)

    retry = subparsers.add_parser("retry", help="Retry a failed or skipped notification")
    retry.add_argument("log_id", help="Notification log ID")
    retry.set_defaults(handler=_retry)

    analytics = subparsers.add_parser("analytics", help="Show delivery analytics")
    analytics.add_argument(
        "--period",
        choices=list(ANALYTICS_PERIODS),
        default="24h",
        help="Time window (default: 24h)",
    )
    analytics.set_defaults(handler=_analytics)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    if args.command == "test-send" and args.data:
        try:
            data = json.loads(args.data)
        except json.JSONDecodeError as e:
            parser.error(f"--data is not valid JSON: {e}")
        if not isinstance(data, dict):
            parser.error("--data must be a JSON object")

    try:
        return asyncio.run(args.handler(args))
    except APIException as e:
        _print_json(e.to_dict(), stream=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
