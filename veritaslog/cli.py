#!/usr/bin/env python3
"""
VeritasLog Command Line Interface

Offline tools; no network access, no keys.

Usage:
    veritaslog canonicalize --file <file>
    veritaslog commitment --file <file> --meta <file>
    veritaslog verify --file <file> --meta <file> --commitment <hex>
"""

import argparse
import json
import sys


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_text(path: str) -> str:
    """Read a file as UTF-8 text, keeping line endings as written."""
    with open(path, 'r', encoding='utf-8', newline='') as f:
        return f.read()


def cmd_canonicalize(args):
    """Print the canonical form of a log file."""
    from veritaslog import canonicalize

    payload = canonicalize(load_text(args.file))
    print(f"kind: {payload.kind.value}", file=sys.stderr)
    print(payload.data)
    return 0


def cmd_commitment(args):
    """Compute the commitment of a log file under the given metadata."""
    from veritaslog import LogBundle, LogMeta, bundle_commitment

    bundle = LogBundle.build(LogMeta.from_dict(load_json(args.meta)), load_text(args.file))
    if args.show_bundle:
        print(bundle.to_bytes().decode('utf-8'), file=sys.stderr)
    print(bundle_commitment(bundle))
    return 0


def cmd_verify(args):
    """Verify a log file against a registered commitment."""
    from veritaslog import verify_file

    result = verify_file(load_text(args.file), load_json(args.meta), args.commitment)
    if result.matched:
        print(f"✓ {result.message}")
        print(result.details)
        return 0
    print(f"✗ {result.message}")
    print(result.details)
    return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="veritaslog",
        description="VeritasLog CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  veritaslog canonicalize -f incident.log
  veritaslog commitment -f incident.log -m meta.json
  veritaslog verify -f incident.log -m meta.json -c 3f2a...
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # canonicalize
    canon_parser = subparsers.add_parser("canonicalize", help="Show canonical payload")
    canon_parser.add_argument("-f", "--file", required=True, help="Log file")

    # commitment
    commit_parser = subparsers.add_parser("commitment", help="Compute commitment hex")
    commit_parser.add_argument("-f", "--file", required=True, help="Log file")
    commit_parser.add_argument("-m", "--meta", required=True, help="Metadata JSON file")
    commit_parser.add_argument("--show-bundle", action="store_true", help="Print serialized bundle to stderr")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify file against commitment")
    verify_parser.add_argument("-f", "--file", required=True, help="Log file")
    verify_parser.add_argument("-m", "--meta", required=True, help="Metadata JSON file")
    verify_parser.add_argument("-c", "--commitment", required=True, help="Registered commitment (hex)")

    args = parser.parse_args(argv)

    from veritaslog.errors import VeritasLogError

    handlers = {
        "canonicalize": cmd_canonicalize,
        "commitment": cmd_commitment,
        "verify": cmd_verify,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return handler(args)
    except VeritasLogError as e:
        print(f"✗ {e.code}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
