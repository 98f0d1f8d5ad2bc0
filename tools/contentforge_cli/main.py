from __future__ import annotations

import argparse
import datetime as dt
import json
import sys

from modules.persistence.db import get_session
from modules.persistence import repos


def _iso(dtobj: dt.datetime | None) -> str | None:
    return dtobj.replace(tzinfo=dt.timezone.utc).isoformat().replace("+00:00", "Z") if dtobj else None


def _not_found() -> int:
    print(json.dumps({"error": {"code": "not_found", "message": "request not found"}}))
    return 2


def cmd_requests_list(args: argparse.Namespace) -> int:
    with get_session() as session:
        rows = repos.list_requests(session, status=args.status, limit=int(args.limit))
    out = [
        {
            "id": str(r.id),
            "uid": r.uid,
            "status": r.status,
            "number": r.number,
            "created_at": _iso(r.created_at),
            "updated_at": _iso(r.updated_at),
        }
        for r in rows
    ]
    print(json.dumps({"requests": out}, ensure_ascii=False))
    return 0


def cmd_requests_get(args: argparse.Namespace) -> int:
    with get_session() as session:
        req = repos.get_request(session, args.id)
        if not req:
            return _not_found()
        results = repos.list_results(session, req.id)
    payload = {
        "id": str(req.id),
        "uid": req.uid,
        "status": req.status,
        "template_id": str(req.template_id),
        "workspace_id": str(req.workspace_id),
        "user_id": str(req.user_id) if req.user_id else None,
        "created_at": _iso(req.created_at),
        "updated_at": _iso(req.updated_at),
        "summary": {"number": req.number, "completed": len(results)},
        "error_code": req.error_code,
        "error_message": req.error_message,
    }
    print(json.dumps(payload, ensure_ascii=False))
    return 0


def cmd_requests_results(args: argparse.Namespace) -> int:
    with get_session() as session:
        if not repos.get_request(session, args.id):
            return _not_found()
        rows = repos.list_results(session, args.id)
    out = [
        {
            "id": str(r.id),
            "item_index": r.item_index,
            "status": r.status,
            "word_count": r.word_count,
            "tokens_used": r.tokens_used,
            "body": r.body,
            "expires_at": _iso(r.expires_at),
        }
        for r in rows
    ]
    print(json.dumps({"results": out}, ensure_ascii=False))
    return 0


def cmd_requests_logs(args: argparse.Namespace) -> int:
    with get_session() as session:
        if not repos.get_request(session, args.id):
            return _not_found()
        tail = int(args.tail) if args.tail else None
        events = repos.iter_events(session, args.id, tail=tail)
    for e in events:
        payload = e.payload_json if isinstance(e.payload_json, dict) else {}
        line = {
            "ts": _iso(e.ts),
            "level": e.level,
            "code": e.code,
            "message": payload.get("message", e.code),
            "request_id": str(e.request_id),
        }
        if "item_index" in payload:
            line["item_index"] = payload["item_index"]
        sys.stdout.write(json.dumps(line) + "\n")
    return 0


def cmd_requests_run(args: argparse.Namespace) -> int:
    from services.worker.tasks.content import submit_content_request

    with get_session() as session:
        if not repos.get_request(session, args.id):
            return _not_found()
    try:
        out = submit_content_request(args.id, inline=not args.enqueue)
    except Exception as exc:  # noqa: BLE001
        code = getattr(exc, "code", "internal")
        print(json.dumps({"error": {"code": code, "message": str(exc)}}))
        return 3
    print(json.dumps(out, ensure_ascii=False))
    return 0


def cmd_requests_delete(args: argparse.Namespace) -> int:
    with get_session() as session:
        deleted = repos.delete_content_request(session, args.id)
    if not deleted:
        return _not_found()
    print(json.dumps({"deleted": args.id}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="contentforge", description="Content Forge operator CLI")
    sp = p.add_subparsers(dest="cmd")

    p_req = sp.add_parser("requests", help="Browse and run content requests")
    spr = p_req.add_subparsers(dest="subcmd")

    p_list = spr.add_parser("list", help="List recent requests")
    p_list.add_argument(
        "--status", choices=["queued", "processing", "completed", "denied", "failed"], default=None
    )
    p_list.add_argument("--limit", default=20, help="Number of requests (1..200)")
    p_list.set_defaults(func=cmd_requests_list)

    p_get = spr.add_parser("get", help="Get a request with its result summary")
    p_get.add_argument("id", help="Request UUID")
    p_get.set_defaults(func=cmd_requests_get)

    p_res = spr.add_parser("results", help="List results for a request")
    p_res.add_argument("id", help="Request UUID")
    p_res.set_defaults(func=cmd_requests_results)

    p_logs = spr.add_parser("logs", help="Request event log (NDJSON)")
    p_logs.add_argument("id", help="Request UUID")
    p_logs.add_argument("--tail", default=None, help="Last N events")
    p_logs.set_defaults(func=cmd_requests_logs)

    p_run = spr.add_parser("run", help="Execute a request inline (or enqueue it)")
    p_run.add_argument("id", help="Request UUID")
    p_run.add_argument("--enqueue", action="store_true", help="Send to the worker queue instead of running inline")
    p_run.set_defaults(func=cmd_requests_run)

    p_del = spr.add_parser("delete", help="Delete a request with its results and events")
    p_del.add_argument("id", help="Request UUID")
    p_del.set_defaults(func=cmd_requests_delete)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if not hasattr(ns, "func"):
        parser.print_help()
        return 1
    return int(ns.func(ns))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
