"""Thin command-line entry point.

    dawnpipe run build          # resolve and run the build pipeline
    dawnpipe pipeline build     # print the merged step list
    dawnpipe config --audit     # show settings and where they came from
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dawnpipe.config import audit_lines, resolve_config, to_dict
from dawnpipe.context import Context
from dawnpipe.errors import DawnError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("dawnpipe")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    sub = parser.add_subparsers(dest="action", required=True)

    run = sub.add_parser("run", help="run the pipeline of a command")
    run.add_argument("cmd", nargs="?")
    run.add_argument("--cwd")
    run.add_argument("--timeout", type=float)

    pipe = sub.add_parser("pipeline", help="print the resolved pipeline")
    pipe.add_argument("cmd", nargs="?")
    pipe.add_argument("--cwd")

    conf = sub.add_parser("config", help="print resolved settings")
    conf.add_argument("--audit", action="store_true")
    return parser


def _printable(item: Any) -> Any:
    if callable(item):
        return f"<callable {getattr(item, '__qualname__', repr(item))}>"
    return item


async def _run(args: argparse.Namespace) -> int:
    ctx = Context(args.cmd, cwd=args.cwd)
    if args.action == "pipeline":
        pipeline = await ctx.load_pipeline()
        sys.stdout.write(json.dumps([_printable(i) for i in pipeline], indent=2, default=str) + "\n")
        return 0
    result = await ctx.run(timeout=args.timeout)
    if result is not None:
        sys.stdout.write(f"{result!r}\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    log = logging.getLogger("dawnpipe.cli")

    try:
        if args.action == "config":
            cfg, sources = resolve_config(explain=True)
            if args.audit:
                sys.stdout.write("\n".join(audit_lines(sources)) + "\n")
            else:
                sys.stdout.write(json.dumps(to_dict(cfg), indent=2) + "\n")
            return 0
        return asyncio.run(_run(args))
    except DawnError as e:
        log.error("%s", e)
        if e.hint:
            log.error("hint: %s", e.hint)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
