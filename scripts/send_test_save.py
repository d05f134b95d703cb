#!/usr/bin/env python3
"""
Dev helper: send a test save request to a running Data Extension relay.

Builds the same JSON body the content block sends and POSTs it to
/api/save-to-de. With no --field flags the block's default fields are used
with placeholder values.

Usage
-----
# Basic: default fields, targeting localhost:8000
python scripts/send_test_save.py

# Specific fields
python scripts/send_test_save.py --field subject="Hello" --field body="Hi there"

# Different email name / backend URL
python scripts/send_test_save.py --email-name "Spring Sale" --url http://staging.example.com

# Check the CORS preflight instead of saving
python scripts/send_test_save.py --preflight

# Print the body without sending it
python scripts/send_test_save.py --dry-run
"""

import argparse
import json
import sys
import textwrap

import httpx

# Fields the content block renders on first load
DEFAULT_FIELD_NAMES = ["subject", "preheader", "header", "body", "footer"]


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------

def _parse_field(raw: str) -> dict:
    """Turn ``name=value`` into {"name": ..., "value": ...}."""
    name, sep, value = raw.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {raw!r}")
    return {"name": name.strip(), "value": value}


def build_payload(email_name: str, fields: list[dict] | None) -> dict:
    if not fields:
        fields = [
            {"name": name, "value": f"Sample {name} text"}
            for name in DEFAULT_FIELD_NAMES
        ]
    return {"emailName": email_name, "fields": fields}


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    for header in ("access-control-allow-origin", "access-control-allow-methods",
                   "access-control-allow-headers"):
        if header in response.headers:
            print(f"  {header}: {response.headers[header]}")
    if not response.content:
        return
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    parser = argparse.ArgumentParser(
        prog="send_test_save.py",
        description="Send a test save request to the Data Extension relay.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_save.py
              python scripts/send_test_save.py --field subject=Hi --field body=Hello
              python scripts/send_test_save.py --preflight
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Relay base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--email-name",
        default="Test Email",
        help='Logical email name (default: "Test Email")',
    )
    parser.add_argument(
        "--field",
        dest="fields",
        action="append",
        type=_parse_field,
        metavar="NAME=VALUE",
        help="Field to save; repeat for several fields.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Request timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--preflight",
        action="store_true",
        help="Send a CORS preflight (OPTIONS) instead of a save.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload JSON without sending it.",
    )

    args = parser.parse_args()

    endpoint = f"{args.url.rstrip('/')}/api/save-to-de"
    payload = build_payload(args.email_name, args.fields)

    print(f"Endpoint  : {endpoint}")
    print(f"Email name: {payload['emailName']}")
    print(f"Fields    : {', '.join(f['name'] for f in payload['fields'])}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    try:
        if args.preflight:
            response = httpx.options(
                endpoint,
                headers={
                    "Origin": "https://content-builder.example.com",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "Content-Type",
                },
                timeout=args.timeout,
            )
        else:
            response = httpx.post(endpoint, json=payload, timeout=args.timeout)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the relay running? Start it with:\n"
            "  cd backend && uvicorn de_relay.main:app --reload",
            file=sys.stderr,
        )
        return 1
    except httpx.HTTPError as exc:
        print(f"\nERROR: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
