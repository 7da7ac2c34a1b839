#!/usr/bin/env python3
"""
Dev helper: exercise a running Mail Bridge from the command line.

Calls one endpoint of the bridge with httpx and pretty-prints the JSON
response.

Usage
-----
# Liveness check against localhost:3000
python scripts/check_bridge.py health

# List folders
python scripts/check_bridge.py mailboxes

# Latest 5 messages of the Archive folder
python scripts/check_bridge.py emails --mailbox Archive --limit 5

# Search
python scripts/check_bridge.py search --query invoice --since 2026-01-01

# Send a message (prints the request only with --dry-run)
python scripts/check_bridge.py send --to someone@example.com --subject Hi --text Hello
python scripts/check_bridge.py send --to someone@example.com --subject Hi --dry-run

Environment / .env
------------------
BRIDGE_URL        Base URL of the bridge (default: http://localhost:3000).
BRIDGE_USERNAME   Mailbox username sent with every call.
BRIDGE_PASSWORD   Mailbox (app-specific) password sent with every call.

Both are read from a .env file in the project root or backend/ if present.
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Request builders
# ---------------------------------------------------------------------------

def _credentials(args) -> dict:
    return {"username": args.username, "password": args.password}


def _build_request(args) -> tuple[str, str, dict]:
    """
    Return (method, path, options) for the chosen subcommand.

    options holds either "params" (query string) or "json" (request body).
    """
    if args.command == "health":
        return "GET", "/health", {}

    if args.command == "mailboxes":
        return "GET", "/mailboxes", {"params": _credentials(args)}

    if args.command == "emails":
        params = {**_credentials(args), "mailbox": args.mailbox, "limit": args.limit}
        return "GET", "/emails", {"params": params}

    if args.command == "search":
        params = {**_credentials(args), "mailbox": args.mailbox, "limit": args.limit}
        for key in ("query", "to", "subject", "since", "before"):
            value = getattr(args, key)
            if value:
                params[key] = value
        if args.from_address:
            params["from"] = args.from_address
        return "GET", "/search", {"params": params}

    body = {
        **_credentials(args),
        "to": args.to,
        "subject": args.subject,
        "text": args.text,
    }
    if args.html:
        body["html"] = args.html
    if args.cc:
        body["cc"] = args.cc
    return "POST", "/send", {"json": body}


def _redacted(options: dict) -> dict:
    """Copy of the request options with the password masked."""
    shown = {}
    for key, values in options.items():
        values = dict(values)
        if values.get("password"):
            values["password"] = "********"
        shown[key] = values
    return shown


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if response.is_success else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="check_bridge.py",
        description=textwrap.dedent("""\
            Call a running Mail Bridge and print the response.

            Credentials default to BRIDGE_USERNAME / BRIDGE_PASSWORD from the
            environment or a .env file in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=os.getenv("BRIDGE_URL", "http://localhost:3000"),
        help="Bridge base URL (default: http://localhost:3000)",
    )
    parser.add_argument("--username", default=os.getenv("BRIDGE_USERNAME"))
    parser.add_argument("--password", default=os.getenv("BRIDGE_PASSWORD"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the request without sending it.",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("health", help="GET /health")
    sub.add_parser("mailboxes", help="GET /mailboxes")

    emails = sub.add_parser("emails", help="GET /emails")
    emails.add_argument("--mailbox", default="INBOX")
    emails.add_argument("--limit", type=int, default=20)

    search = sub.add_parser("search", help="GET /search")
    search.add_argument("--mailbox", default="INBOX")
    search.add_argument("--query")
    search.add_argument("--from", dest="from_address")
    search.add_argument("--to")
    search.add_argument("--subject")
    search.add_argument("--since", metavar="YYYY-MM-DD")
    search.add_argument("--before", metavar="YYYY-MM-DD")
    search.add_argument("--limit", type=int, default=50)

    send = sub.add_parser("send", help="POST /send")
    send.add_argument("--to", required=True)
    send.add_argument("--subject", required=True)
    send.add_argument("--text", default="")
    send.add_argument("--html")
    send.add_argument("--cc")

    return parser


def main() -> int:
    # scripts/ lives one level below the project root
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    args = _parser().parse_args()

    if args.command != "health" and not (args.username and args.password):
        print(
            "ERROR: No credentials found.\n"
            "Set BRIDGE_USERNAME and BRIDGE_PASSWORD in your environment or "
            ".env file, or pass --username/--password.",
            file=sys.stderr,
        )
        return 1

    method, path, options = _build_request(args)
    url = f"{args.url.rstrip('/')}{path}"

    print(f"{method} {url}")

    if args.dry_run:
        print("\n[DRY RUN] Request:")
        print(json.dumps(_redacted(options), indent=2))
        return 0

    try:
        response = httpx.request(method, url, timeout=120.0, **options)
    except httpx.HTTPError as e:
        print(f"\n[ERROR] Request failed: {e}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
