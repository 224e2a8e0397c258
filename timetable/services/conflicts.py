"""Service for detecting scheduling conflicts against resource occupancy."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping, Sequence

from timetable.domain.models import (
    Booking,
    ConflictResult,
    ResourceFlag,
    ResourceId,
    TimeRange,
)


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """Return True when two half-open ranges intersect.

    Overlap rule: ``a.start < b.end AND b.start < a.end``.
    Exact boundary touches (end == start) are NOT considered overlaps.
    """
    return a.start < b.end and b.start < a.end


class OccupancyIndex(Mapping[ResourceId, tuple[Booking, ...]]):
    """Resource id -> bookings already holding that resource.

    Immutable once built. Derived indexes (self-exclusion) are new objects.
    """

    def __init__(self, buckets: Mapping[ResourceId, Sequence[Booking]] | None = None) -> None:
        self._buckets: dict[ResourceId, tuple[Booking, ...]] = {
            resource: tuple(bookings) for resource, bookings in (buckets or {}).items()
        }

    def __getitem__(self, resource: ResourceId) -> tuple[Booking, ...]:
        return self._buckets[resource]

    def __iter__(self) -> Iterator[ResourceId]:
        return iter(self._buckets)

    def __len__(self) -> int:
        return len(self._buckets)

    def bucket(self, resource: ResourceId) -> tuple[Booking, ...]:
        return self._buckets.get(resource, ())

    def ranges(self, resource: ResourceId) -> list[TimeRange]:
        return [booking.range for booking in self.bucket(resource)]

    def has_owner(self, owner_event_id: str) -> bool:
        return any(
            booking.owner_event_id == owner_event_id
            for bucket in self._buckets.values()
            for booking in bucket
        )

    def __repr__(self) -> str:
        return f"OccupancyIndex({self._buckets!r})"


def build_index(bookings: Iterable[Booking]) -> OccupancyIndex:
    """Group bookings by resource, keeping their relative order."""
    buckets: dict[ResourceId, list[Booking]] = defaultdict(list)
    for booking in bookings:
        buckets[booking.resource].append(booking)
    return OccupancyIndex(buckets)


def exclude_own(index: OccupancyIndex, owner_event_id: str) -> OccupancyIndex:
    """Return a copy of *index* without any booking owned by *owner_event_id*."""
    return OccupancyIndex(
        {
            resource: [b for b in bucket if b.owner_event_id != owner_event_id]
            for resource, bucket in index.items()
        }
    )


def exclude_booking(index: OccupancyIndex, booking: Booking) -> OccupancyIndex:
    """Remove the booking being edited from *index*.

    Matches by owner id when the index knows it. Otherwise drops a single
    interval on the booking's resource whose (start, end) equals the
    booking's range; other identical intervals stay in place.
    """
    if booking.owner_event_id is not None and index.has_owner(booking.owner_event_id):
        return exclude_own(index, booking.owner_event_id)

    buckets: dict[ResourceId, list[Booking]] = {r: list(b) for r, b in index.items()}
    bucket = buckets.get(booking.resource, [])
    for position, candidate in enumerate(bucket):
        if candidate.range == booking.range:
            del bucket[position]
            break
    return OccupancyIndex(buckets)


def has_conflict(index: OccupancyIndex, resource: ResourceId, range: TimeRange) -> bool:
    """Return True if *resource* already holds a booking overlapping *range*."""
    return any(overlaps(booking.range, range) for booking in index.bucket(resource))


def find_conflicts(
    index: OccupancyIndex, resource: ResourceId, range: TimeRange
) -> ConflictResult:
    """Like :func:`has_conflict`, but report every overlapping booked range."""
    overlapping = overlapping_ranges(index.ranges(resource), range)
    return ConflictResult(
        resource=resource, conflicting=bool(overlapping), overlapping=overlapping
    )


def annotate_conflicts(
    index: OccupancyIndex, resources: Iterable[ResourceId], range: TimeRange
) -> list[ResourceFlag]:
    """Flag each candidate resource, non-conflicting options first.

    Picker hint only: the snapshot may be stale, so saving must re-check
    with :func:`has_conflict` against the freshest data.
    """
    flags = [
        ResourceFlag(resource=resource, conflicting=has_conflict(index, resource, range))
        for resource in resources
    ]
    return sorted(flags, key=lambda flag: flag.conflicting)


def overlapping_ranges(ranges: Iterable[TimeRange], range: TimeRange) -> list[TimeRange]:
    """Return the members of *ranges* that overlap *range*."""
    return [candidate for candidate in ranges if overlaps(candidate, range)]
