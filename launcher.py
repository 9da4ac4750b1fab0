#!/usr/bin/env python3
"""
BGP Filter Manager - Launcher

`serve` starts the API under uvicorn. `convert` re-exports pasted RouterOS
filter rules from a file without starting the server.
"""
import argparse
import os
import sys
from pathlib import Path

import uvicorn

BASE_DIR = Path(__file__).resolve().parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from bgp_filter_manager.filter_defaults import codec_options, merge_defaults  # noqa: E402
from bgp_filter_manager.mt_filter_gen.filter_parser import parse_text  # noqa: E402
from bgp_filter_manager.mt_filter_gen.filter_renderer import render_text  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="BGP filter manager for MikroTik RouterOS v7")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=os.getenv("BGP_FILTER_HOST", "127.0.0.1"))
    serve.add_argument("--port", type=int, default=int(os.getenv("BGP_FILTER_PORT", "8000")))

    convert = sub.add_parser("convert", help="Parse RouterOS filter rules and render them again")
    convert.add_argument("input", help="File with RouterOS commands, or - for stdin")
    convert.add_argument("--schema", choices=["chain", "asn"], default=None)

    args = parser.parse_args(argv)
    if not args.command:
        args = parser.parse_args(["serve", *(argv or [])])
    return args


def convert(input_path: str, schema=None) -> int:
    if input_path == "-":
        text = sys.stdin.read()
    else:
        path = Path(input_path)
        if not path.exists():
            print(f"[ERROR] Input file not found: {path}", file=sys.stderr)
            return 1
        text = path.read_text(encoding="utf-8")

    options = codec_options(merge_defaults({"schema": schema}))
    result = parse_text(text, **options)
    print(f"[PARSE] {result.message}", file=sys.stderr)
    if not result.imported_count:
        return 1
    sys.stdout.write(render_text(result.imported, None, **options))
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.command == "convert":
        return convert(args.input, args.schema)

    print(f"[MAIN] Starting BGP Filter Manager API on http://{args.host}:{args.port}", flush=True)
    uvicorn.run("bgp_filter_manager.fastapi_server:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
