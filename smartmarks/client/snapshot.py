"""Ordered, de-duplicated view of a user's bookmarks.

A :class:`Snapshot` is immutable. The fold helpers return a new snapshot, or
the same object when the fold is a no-op, so callers can detect change with
``is``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from smartmarks.client.models import Record, RecordId


class Snapshot(Sequence):
    __slots__ = ("_records", "_index")

    def __init__(self, records: tuple[Record, ...] = ()):
        self._records = records
        self._index = {record.id: position for position, record in enumerate(records)}

    def __getitem__(self, position):
        return self._records[position]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __contains__(self, record) -> bool:
        if not isinstance(record, Record):
            return False
        return self.get(record.id) == record

    def __eq__(self, other) -> bool:
        if isinstance(other, Snapshot):
            return self._records == other._records
        return NotImplemented

    def __hash__(self):
        return hash(self._records)

    def __repr__(self) -> str:
        return f"Snapshot({list(self._records)!r})"

    def has(self, record_id: RecordId) -> bool:
        return record_id in self._index

    def get(self, record_id: RecordId) -> Record | None:
        position = self._index.get(record_id)
        return None if position is None else self._records[position]

    def ids(self) -> list[RecordId]:
        return [record.id for record in self._records]


EMPTY = Snapshot()


def _sort_key(record: Record):
    # Newest first, ties broken by id descending, as the backend lists them.
    return (record.created_at, record.id)


def _insert_position(records: Sequence[Record], record: Record) -> int:
    key = _sort_key(record)
    for position, existing in enumerate(records):
        if _sort_key(existing) < key:
            return position
    return len(records)


def insert_record(snapshot: Snapshot, record: Record) -> Snapshot:
    if snapshot.has(record.id):
        return snapshot
    records = list(snapshot)
    records.insert(_insert_position(records, record), record)
    return Snapshot(tuple(records))


def remove_record(snapshot: Snapshot, record_id: RecordId) -> Snapshot:
    if not snapshot.has(record_id):
        return snapshot
    return Snapshot(tuple(record for record in snapshot if record.id != record_id))


def from_records(records: Iterable[Record]) -> Snapshot:
    unique: dict[RecordId, Record] = {}
    for record in records:
        unique.setdefault(record.id, record)
    ordered = sorted(unique.values(), key=_sort_key, reverse=True)
    return Snapshot(tuple(ordered))
