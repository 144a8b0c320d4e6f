"""Operator helper for device schedules and status records.

    python -m hangar.schedule_tool show <dev_id>
    python -m hangar.schedule_tool set <dev_id> '[{"st": true, "dow": "0", "tm": "0800"}]'
    python -m hangar.schedule_tool clear <dev_id>
    python -m hangar.schedule_tool status <dev_id> <unix-seconds>
"""

import argparse
import asyncio
import json
import sys

from pydantic import TypeAdapter, ValidationError

from hangar.config import load_settings
from hangar.errors import GatewayError, ScheduleNotFound
from hangar.schemas import ScheduleEntry
from hangar.store import DeviceStateStore, create_redis


def _parse_schedule(raw: str) -> list[ScheduleEntry]:
    return TypeAdapter(list[ScheduleEntry]).validate_json(raw)


async def run(args: argparse.Namespace, store: DeviceStateStore) -> str:
    if args.action == "show":
        try:
            entries = await store.get_schedule(args.dev_id)
        except ScheduleNotFound:
            return f"No schedule stored for {args.dev_id}"
        return json.dumps([entry.model_dump() for entry in entries], indent=2)

    if args.action == "set":
        key = await store.put_schedule(args.dev_id, _parse_schedule(args.schedule))
        return f"Wrote {key}"

    if args.action == "clear":
        key = await store.put_schedule(args.dev_id, [])
        return f"Cleared {key}"

    record = await store.get_status(args.dev_id, args.received_at)
    if record is None:
        return f"No status record for {args.dev_id} at {args.received_at}"
    return record.model_dump_json(by_alias=True, indent=2)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hangar.schedule_tool")
    sub = parser.add_subparsers(dest="action", required=True)
    sub.add_parser("show").add_argument("dev_id")
    set_parser = sub.add_parser("set")
    set_parser.add_argument("dev_id")
    set_parser.add_argument("schedule", help="JSON array of {st, dow, tm} entries")
    sub.add_parser("clear").add_argument("dev_id")
    status_parser = sub.add_parser("status")
    status_parser.add_argument("dev_id")
    status_parser.add_argument("received_at", type=int)
    return parser


async def _main(args: argparse.Namespace) -> str:
    settings = load_settings()
    store = DeviceStateStore(create_redis(settings), status_ttl=settings.status_ttl_seconds)
    try:
        return await run(args, store)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        print(asyncio.run(_main(args)))
    except ValidationError as exc:
        print(f"ERROR: invalid schedule: {exc}", file=sys.stderr)
        return 2
    except GatewayError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
