from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from typing import Any, Dict, List, Optional

from . import service
from .normalizer import parse_citation


def _read_citations(args: argparse.Namespace) -> List[str]:
    lines: List[str] = list(args.citation or [])
    if args.file:
        stream = sys.stdin if args.file == "-" else open(args.file, encoding="utf-8")
        try:
            lines.extend(line.rstrip("\n") for line in stream)
        finally:
            if stream is not sys.stdin:
                stream.close()
    return [c for c in lines if c.strip()]


def run_parse(args: argparse.Namespace) -> Dict[str, Any]:
    return parse_citation(args.citation).to_dict()


def run_verify(args: argparse.Namespace) -> List[Dict[str, Any]]:
    out = []
    for raw in _read_citations(args):
        result = service.verify_citation(raw, correlation_id=args.correlation_id)
        out.append({"citation": raw, **result.to_dict()})
    return out


def run_queue(args: argparse.Namespace) -> Dict[str, Any]:
    citations = _read_citations(args)
    correlation_id = args.correlation_id or uuid.uuid4().hex
    service.queue_verification(citations, correlation_id)
    return {"correlation_id": correlation_id, "queued": len(citations)}


def run_result(args: argparse.Namespace) -> List[Dict[str, Any]]:
    out = []
    for raw in _read_citations(args):
        result = service.get_queued_result(raw, args.correlation_id)
        out.append({"citation": raw, "result": result.to_dict() if result is not None else None})
    return out


def run_collect(args: argparse.Namespace) -> Dict[str, Any]:
    ranked = service.get_collector().collect_ranked(args.topic, args.field, args.level)
    return {
        "topic": args.topic,
        "count": len(ranked),
        "papers": [{"quality": c.confidence, "source": c.source, **c.record.to_dict()} for c in ranked],
    }


def run_init_tables(args: argparse.Namespace) -> Dict[str, Any]:
    from .dynamo.tables import ensure_tables
    return {"created": ensure_tables()}


def _add_citation_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("citation", nargs="*", help="Raw citation text (quote it)")
    parser.add_argument("--file", default=None, help="Read one citation per line ('-' for stdin)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Verify citations and collect papers for a topic")
    p.add_argument("--debug", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_parse = sub.add_parser("parse", help="Show how a citation string is parsed")
    p_parse.add_argument("citation")
    p_parse.set_defaults(func=run_parse)

    p_verify = sub.add_parser("verify", help="Verify citations synchronously")
    _add_citation_args(p_verify)
    p_verify.add_argument("--correlation-id", default=None)
    p_verify.set_defaults(func=run_verify)

    p_queue = sub.add_parser("queue", help="Queue citations for background verification")
    _add_citation_args(p_queue)
    p_queue.add_argument("--correlation-id", default=None, help="Defaults to a fresh random id")
    p_queue.set_defaults(func=run_queue)

    p_result = sub.add_parser("result", help="Read back results of a queued batch")
    _add_citation_args(p_result)
    p_result.add_argument("--correlation-id", required=True)
    p_result.set_defaults(func=run_result)

    p_collect = sub.add_parser("collect", help="Collect ranked papers for a research topic")
    p_collect.add_argument("--topic", required=True)
    p_collect.add_argument("--field", default="general")
    p_collect.add_argument("--level", default="undergraduate", help="Academic level (part of the cache key)")
    p_collect.set_defaults(func=run_collect)

    p_init = sub.add_parser("init-tables", help="Create the DynamoDB tables, TTLs and indexes")
    p_init.set_defaults(func=run_init_tables)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        for name in list(logging.root.manager.loggerDict):
            if name.startswith("citeresolve"):
                logging.getLogger(name).setLevel(logging.DEBUG)

    out = args.func(args)
    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
