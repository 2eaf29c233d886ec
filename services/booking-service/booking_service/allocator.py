from dataclasses import dataclass
from datetime import datetime, timedelta

SLOT_DURATION = timedelta(minutes=30)


@dataclass(frozen=True)
class Slot:
    start_at: datetime
    end_at: datetime


def next_slot(latest_end: datetime | None, now: datetime, duration: timedelta = SLOT_DURATION) -> Slot:
    """
    Queue the new slot behind the latest paid slot of the resource, or start
    it now when the table is already free.
    """
    start_at = now
    if latest_end is not None and latest_end > now:
        start_at = latest_end
    return Slot(start_at=start_at, end_at=start_at + duration)
