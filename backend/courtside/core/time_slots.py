from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeSlot:
    """A half-open ``[start, end)`` range on a single day, as ``HH:MM`` strings."""

    start: str
    end: str
    price: Optional[int] = None

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"start": self.start, "end": self.end}
        if self.price is not None:
            payload["price"] = self.price
        return payload


def to_minutes(value: str) -> int:
    """
    Convert ``HH:MM`` to minutes since midnight.

    ``24:00`` is accepted as the end of the day (1440).
    """
    if not isinstance(value, str) or ":" not in value:
        raise ValueError(f"invalid time {value!r}: expected HH:MM")
    hours_part, _, minutes_part = value.partition(":")
    if not (hours_part.isdigit() and minutes_part.isdigit()) or len(minutes_part) != 2:
        raise ValueError(f"invalid time {value!r}: expected HH:MM")
    hours = int(hours_part)
    minutes = int(minutes_part)
    if minutes > 59:
        raise ValueError(f"invalid time {value!r}: minutes out of range")
    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        raise ValueError(f"invalid time {value!r}: outside 00:00..24:00")
    return total


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to ``HH:MM`` (1440 renders as ``24:00``)."""
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise ValueError(f"minutes out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _bounds(slot: Any) -> tuple[int, int]:
    if isinstance(slot, Mapping):
        return to_minutes(slot["start"]), to_minutes(slot["end"])
    return to_minutes(slot.start), to_minutes(slot.end)


def coerce_slot(slot: Any) -> TimeSlot:
    """Accept a TimeSlot, a mapping with start/end, or any object with start/end attributes."""
    if isinstance(slot, TimeSlot):
        return slot
    if isinstance(slot, Mapping):
        price = slot.get("price")
        return TimeSlot(start=slot["start"], end=slot["end"], price=price)
    return TimeSlot(start=slot.start, end=slot.end, price=getattr(slot, "price", None))


def overlaps(a: Any, b: Any) -> bool:
    """
    Strict overlap of two ranges: ``a.start < b.end and a.end > b.start``.

    Ranges that only touch (``18:00-19:00`` and ``19:00-20:00``) do not overlap.
    """
    a_start, a_end = _bounds(a)
    b_start, b_end = _bounds(b)
    return a_start < b_end and a_end > b_start


def slots_overlap_any(xs: Iterable[Any], ys: Iterable[Any]) -> bool:
    """True when any slot in ``xs`` overlaps any slot in ``ys``."""
    ys_list = list(ys)
    return any(overlaps(x, y) for x in xs for y in ys_list)


def validate_slots(slots: Sequence[Any]) -> List[TimeSlot]:
    """
    Normalize requested slots and reject malformed input.

    Each slot must have ``start < end`` and the slots must not overlap each other.
    Raises ValueError with a human-readable message.
    """
    normalized = [coerce_slot(slot) for slot in slots]
    for slot in normalized:
        if slot.start_minutes >= slot.end_minutes:
            raise ValueError(f"slot {slot.start}-{slot.end} must start before it ends")
        if slot.price is not None and slot.price < 0:
            raise ValueError(f"slot {slot.start}-{slot.end} has a negative price")

    for index, slot in enumerate(normalized):
        for other in normalized[index + 1 :]:
            if overlaps(slot, other):
                raise ValueError(
                    f"requested slots {slot.start}-{slot.end} and {other.start}-{other.end} overlap"
                )
    return normalized


def parse_slot_range(value: str) -> TimeSlot:
    """Parse ``"18:00-19:00"`` into a TimeSlot."""
    start, sep, end = value.strip().partition("-")
    if not sep:
        raise ValueError(f"invalid slot range {value!r}: expected HH:MM-HH:MM")
    slot = TimeSlot(start=start.strip(), end=end.strip())
    if slot.start_minutes >= slot.end_minutes:
        raise ValueError(f"slot {slot.start}-{slot.end} must start before it ends")
    return slot
