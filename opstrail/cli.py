from __future__ import annotations

import argparse
import json
from datetime import UTC, datetime
from typing import Any

from opstrail.core.config import settings
from opstrail.core.logging import configure_logging
from opstrail.models.events import EventFilter
from opstrail.runtime import Runtime, build_runtime
from opstrail.services.events.analytics import OpsAnalytics


def _emit(payload: dict[str, Any], *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
        return
    for key, value in payload.items():
        print(f"{key}: {value}")


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO-8601 timestamp: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _run_events_list(args: argparse.Namespace, runtime: Runtime) -> int:
    filters = EventFilter(
        event_type=args.event_type,
        correlation_id=args.correlation_id,
        request_id=args.request_id,
        tenant_id=args.tenant_id,
        actor_id=args.actor_id,
        name_contains=args.q,
        since=args.since,
        until=args.until,
    )
    limit = min(max(args.limit, 1), runtime.config.query_limit_max)
    order = "chronological" if args.chronological else "recent"
    events = runtime.event_store.query(filters, order=order, limit=limit)
    payload = {
        "count": len(events),
        "order": order,
        "events": [event.model_dump(mode="json") for event in events],
    }
    _emit(payload, as_json=args.output_json)
    return 0


def _run_events_show(args: argparse.Namespace, runtime: Runtime) -> int:
    event = runtime.event_store.get(args.id)
    if event is None:
        _emit({"status": "error", "error_code": "EVENT_NOT_FOUND", "event_id": args.id}, as_json=args.output_json)
        return 2
    related = runtime.event_store.related(event, limit=runtime.config.related_limit)
    payload = {
        "event": event.model_dump(mode="json"),
        "related_count": len(related),
        "related": [item.model_dump(mode="json") for item in related],
    }
    _emit(payload, as_json=args.output_json)
    return 0


def _run_stats(args: argparse.Namespace, runtime: Runtime) -> int:
    since = OpsAnalytics.window_start(args.window)
    rows = runtime.event_store.aggregate(EventFilter(since=since), group_by=args.group_by)
    payload = {
        "window": OpsAnalytics.resolve_window(args.window),
        "group_by": args.group_by,
        "stats": [row.model_dump() for row in rows],
    }
    _emit(payload, as_json=args.output_json)
    return 0


def _run_purge(args: argparse.Namespace, runtime: Runtime) -> int:
    if args.before is not None:
        deleted = runtime.event_store.purge(before=args.before)
        payload = {"status": "ok", "deleted": deleted, "before": args.before.isoformat()}
    else:
        cutoff = runtime.retention.cutoff()
        deleted = runtime.retention.run()
        if deleted is None:
            payload = {"status": "skipped", "reason": "RETENTION_DISABLED", "deleted": 0}
        else:
            payload = {"status": "ok", "deleted": deleted, "before": cutoff.isoformat()}
    _emit(payload, as_json=args.output_json)
    return 0


def _run_serve(args: argparse.Namespace, runtime: Runtime) -> int:
    import uvicorn

    from opstrail.main import create_application

    app = create_application(runtime=runtime)
    uvicorn.run(app, host=args.host, port=args.port, log_level=runtime.config.log_level.lower())
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="opstrail")
    parser.add_argument("--database-url", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    events = subparsers.add_parser("events")
    events_sub = events.add_subparsers(dest="events_command", required=True)

    events_list = events_sub.add_parser("list")
    events_list.add_argument("--event-type", default=None)
    events_list.add_argument("--correlation-id", default=None)
    events_list.add_argument("--request-id", default=None)
    events_list.add_argument("--tenant-id", default=None)
    events_list.add_argument("--actor-id", default=None)
    events_list.add_argument("--q", default=None)
    events_list.add_argument("--since", type=_parse_timestamp, default=None)
    events_list.add_argument("--until", type=_parse_timestamp, default=None)
    events_list.add_argument("--limit", type=int, default=settings.query_limit_default)
    events_list.add_argument("--chronological", action="store_true")
    events_list.add_argument("--output-json", action="store_true")
    events_list.set_defaults(handler=_run_events_list)

    events_show = events_sub.add_parser("show")
    events_show.add_argument("--id", type=int, required=True)
    events_show.add_argument("--output-json", action="store_true")
    events_show.set_defaults(handler=_run_events_show)

    stats = subparsers.add_parser("stats")
    stats.add_argument("--window", choices=sorted(OpsAnalytics.TIME_WINDOWS), default=OpsAnalytics.DEFAULT_WINDOW)
    stats.add_argument("--group-by", choices=["event_type", "name"], default="event_type")
    stats.add_argument("--output-json", action="store_true")
    stats.set_defaults(handler=_run_stats)

    purge = subparsers.add_parser("purge")
    purge.add_argument("--before", type=_parse_timestamp, default=None)
    purge.add_argument("--output-json", action="store_true")
    purge.set_defaults(handler=_run_purge)

    serve = subparsers.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(handler=_run_serve, output_json=False)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    runtime = build_runtime(database_url=args.database_url)
    return int(args.handler(args, runtime))


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
