from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from authstate.cipher import generate_secret
from authstate.config import ENV_FILE, ENV_SECRET
from authstate.errors import AuthStateError
from authstate.transfer import export_document, import_auth_state


logger = logging.getLogger("authtool")


def _resolve_secret(args: argparse.Namespace) -> str:
    secret = args.secret or os.environ.get(ENV_SECRET)
    if not secret:
        raise RuntimeError(f"Missing secret: pass --secret or set {ENV_SECRET}")
    return secret


def _resolve_file(args: argparse.Namespace) -> Path:
    path = args.file or os.environ.get(ENV_FILE)
    if not path:
        raise RuntimeError(f"Missing auth state file: pass --file or set {ENV_FILE}")
    return Path(path)


def _cmd_export(args: argparse.Namespace) -> int:
    doc = export_document(_resolve_file(args), _resolve_secret(args))
    text = json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False)
    if args.out:
        Path(args.out).write_text(text + "\n", encoding="utf-8")
        logger.info("Exported auth state to %s", args.out)
    else:
        print(text)
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    if args.input == "-":
        doc = json.load(sys.stdin)
    else:
        with open(args.input, "r", encoding="utf-8") as handle:
            doc = json.load(handle)
    path = _resolve_file(args)
    import_auth_state(path, _resolve_secret(args), doc)
    logger.info("Imported auth state into %s", path)
    return 0


def _cmd_keygen(_: argparse.Namespace) -> int:
    print(base64.b64encode(generate_secret()).decode("ascii"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authstate-tool", description="Export, import and key tools for encrypted auth state"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--file", help=f"auth state file (default: ${ENV_FILE})")
    common.add_argument("--secret", help=f"base64 secret (default: ${ENV_SECRET})")

    p_export = sub.add_parser("export", parents=[common], help="decrypt to a JSON document")
    p_export.add_argument("--out", help="write JSON here instead of stdout")
    p_export.set_defaults(func=_cmd_export)

    p_import = sub.add_parser("import", parents=[common], help="encrypt a JSON document")
    p_import.add_argument("--input", required=True, help="JSON document path, or - for stdin")
    p_import.set_defaults(func=_cmd_import)

    p_keygen = sub.add_parser("keygen", help="print a fresh base64 secret")
    p_keygen.set_defaults(func=_cmd_keygen)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    try:
        return args.func(args)
    except (AuthStateError, RuntimeError, ValueError, OSError) as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
