"""
smsrelay CLI
============

Usage:
    smsrelay decrypt <envelope> --password SECRET   # Decrypt a relayed envelope
    smsrelay classify --sender S --body B           # Show the filter decision
    smsrelay send --sender S --body B               # Relay a message now
    smsrelay status                                 # Show the masked relay topic
    smsrelay logs [--level ERROR] [--limit 20]      # Show the event log
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from .config import get_settings
from .contacts import display_name_for
from .crypto import DecryptionError, MessageCipher
from .delivery import DeliveryPipeline, RelayTarget
from .filters import ClassificationEngine
from .logbook import EventLog, LogLevel, format_timestamp
from .models import InboundMessage
from .notify import LoggingNotificationSink
from .store import CredentialStore, FilterConfigStore


def cmd_decrypt(args: argparse.Namespace) -> int:
    """Decrypt an envelope received from the relay."""
    try:
        plaintext = MessageCipher().decrypt(args.envelope, args.password)
    except DecryptionError as exc:
        print(f"Decryption failed: {exc}", file=sys.stderr)
        return 1

    if args.json:
        name, _, rest = plaintext.partition("|")
        body, _, device = rest.rpartition("|")
        print(json.dumps({"display_name": name, "message_body": body, "device_label": device}, indent=2))
    else:
        print(plaintext)
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    """Classify a message against the stored filters."""
    settings = get_settings()
    config = FilterConfigStore(settings.filters_path).get()
    result = ClassificationEngine().classify(args.sender, args.body, config)
    print(json.dumps(result.as_dict(), indent=2))
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    """Relay one message synchronously, bypassing the filters."""
    settings = get_settings()
    if not settings.secret_key:
        print("SMSRELAY_SECRET_KEY is not set", file=sys.stderr)
        return 2

    credentials = CredentialStore(settings.secret_key, settings.credentials_path)
    log = EventLog(capacity=settings.log_capacity, storage_path=settings.log_path)
    pipeline = DeliveryPipeline(
        log=log,
        notifier=LoggingNotificationSink(),
        device_label=settings.device_label,
        user_agent=settings.user_agent,
        timeout=settings.request_timeout,
        max_attempts=settings.max_attempts,
    )
    target = RelayTarget(
        topic=credentials.get_topic(),
        password=credentials.get_password(),
        endpoint_base=settings.endpoint_base,
    )
    message = InboundMessage(sender=args.sender, body=args.body)
    report = pipeline.deliver_now(message, display_name_for(None, args.sender), target)

    print(json.dumps([attempt.as_dict() for attempt in report.attempts], indent=2))
    if report.error is not None:
        print(f"Delivery failed: {report.error}", file=sys.stderr)
    return 0 if report.delivered else 1


def cmd_logs(args: argparse.Namespace) -> int:
    """Print the persisted event log, newest first."""
    settings = get_settings()
    log = EventLog(capacity=settings.log_capacity, storage_path=settings.log_path)
    level = LogLevel(args.level) if args.level else None
    entries = log.entries(level)[: args.limit]

    if not entries:
        print("No log entries")
        return 0

    for entry in entries:
        line = f"{format_timestamp(entry.timestamp)}  {entry.level.value:<7}  {entry.message}"
        if entry.details:
            line += f"  [{entry.details}]"
        print(line)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show whether relay credentials are configured, without revealing them."""
    settings = get_settings()
    if not settings.secret_key:
        print("SMSRELAY_SECRET_KEY is not set", file=sys.stderr)
        return 2

    credentials = CredentialStore(settings.secret_key, settings.credentials_path)
    print(f"Endpoint: {settings.endpoint_base}")
    print(f"Topic:    {credentials.masked_topic() or 'Not configured'}")
    print(f"Password: {'set' if credentials.get_password() else 'Not configured'}")
    return 0 if credentials.is_configured() else 1


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smsrelay",
        description="Encrypted SMS relay tooling",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a relayed envelope")
    decrypt.add_argument("envelope", help="base64 envelope as received from the relay")
    decrypt.add_argument("--password", required=True)
    decrypt.add_argument("--json", action="store_true", help="Split the payload into fields")
    decrypt.set_defaults(func=cmd_decrypt)

    classify = subparsers.add_parser("classify", help="Show the filter decision for a message")
    classify.add_argument("--sender", required=True)
    classify.add_argument("--body", required=True)
    classify.set_defaults(func=cmd_classify)

    send = subparsers.add_parser("send", help="Relay a message now")
    send.add_argument("--sender", required=True)
    send.add_argument("--body", required=True)
    send.set_defaults(func=cmd_send)

    status = subparsers.add_parser("status", help="Show relay credential status")
    status.set_defaults(func=cmd_status)

    logs = subparsers.add_parser("logs", help="Show the event log")
    logs.add_argument("--level", choices=[level.value for level in LogLevel])
    logs.add_argument("--limit", type=_positive_int, default=50)
    logs.set_defaults(func=cmd_logs)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
