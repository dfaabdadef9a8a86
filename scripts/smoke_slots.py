from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date

from slotwise.core.database import AsyncSessionLocal, init_models
from slotwise.scheduling.intervals import TimeWindow, day_bounds_utc, load_zone
from slotwise.services.slot_service import SlotService


async def run_smoke(
    event_type_id: str,
    start: date,
    end: date,
    timezone: str,
) -> None:
    await init_models()
    zone = load_zone(timezone)
    window = TimeWindow(day_bounds_utc(start, zone).start, day_bounds_utc(end, zone).end)

    async with AsyncSessionLocal() as session:
        slots = await SlotService(session).list_slots(event_type_id, window, timezone)

    print(json.dumps({
        "event_type_id": event_type_id,
        "timezone": timezone,
        "slots": [
            {
                "start": s.start.isoformat(),
                "time": s.local_time,
                "hosts": list(s.free_host_ids),
            }
            for s in slots
        ],
    }, indent=2))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List bookable slots for an event type against the DB.")
    parser.add_argument("--event-type-id", required=True, help="Event type UUID")
    parser.add_argument("--start", required=True, type=date.fromisoformat, help="First date (YYYY-MM-DD)")
    parser.add_argument("--end", required=True, type=date.fromisoformat, help="Last date (YYYY-MM-DD)")
    parser.add_argument("--timezone", default="UTC", help="Attendee IANA timezone")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(run_smoke(args.event_type_id, args.start, args.end, args.timezone))


if __name__ == "__main__":
    main()
