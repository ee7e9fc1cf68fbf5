"""
Calendar Store - scheduled services and events, bucketed by date.

The index maps 'YYYY-MM-DD' to the entries on that day. An entry lives in
exactly one bucket; a bucket that empties is deleted, so "anything on this
day?" is a key-presence check. Every mutation builds the next index and
installs it with a single assignment, so readers never see a half-moved entry.
"""

import dataclasses
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from homecare.bus.events import EventBus, EVENT_ENTRY_RESCHEDULED
from homecare.config import config
from homecare.logging_config import log_call
from homecare.engine.store import MutationResult, SyncedStore
from homecare.models import (
    CalendarEntry, MarkedDate, KIND_EVENT, KIND_SERVICE, from_payload,
)
from homecare.net.dispatch import Dispatcher, Job
from homecare.net.errors import DecodeFailure, SyncError

logger = logging.getLogger(__name__)

CalendarIndex = Dict[str, List[CalendarEntry]]

SEARCH_FIELDS = ('name', 'provider', 'location', 'description')


def check_date(value: str) -> str:
    """Validate a YYYY-MM-DD key. Raises ValueError on anything else."""
    if not isinstance(value, str):
        raise ValueError(f"Calendar dates are YYYY-MM-DD strings, got {value!r}")
    date.fromisoformat(value)
    return value


def _in_range(day: str, start: Optional[str], end: Optional[str]) -> bool:
    return (start is None or day >= start) and (end is None or day <= end)


def _matches(entry: CalendarEntry, needle: str) -> bool:
    return any(needle in (getattr(entry, name) or '').lower() for name in SEARCH_FIELDS)


class CalendarStore(SyncedStore):
    """Date-keyed specialization of the resource store."""

    _pinned = ('date', 'kind')

    def __init__(self, client, dispatcher: Dispatcher, seed: Callable[[], CalendarIndex],
                 bus: Optional[EventBus] = None,
                 service_color: Optional[str] = None,
                 event_color: Optional[str] = None,
                 selected_text_color: Optional[str] = None):
        super().__init__('calendar', CalendarEntry, client, dispatcher, bus)
        self.seed = seed
        self.service_color = service_color or config.SERVICE_DOT_COLOR
        self.event_color = event_color or config.EVENT_DOT_COLOR
        self.selected_text_color = selected_text_color or config.SELECTED_TEXT_COLOR
        self._index: CalendarIndex = {}

    @property
    def data(self) -> Dict[str, tuple]:
        """Read-only copy of the index."""
        return {day: tuple(entries) for day, entries in self._index.items()}

    def snapshot(self) -> Dict[str, Any]:
        return {
            'data': self.data,
            'load_state': self.load_state,
            'error': self.error_message,
        }

    # -------------------------------------------------------------------------
    # Load
    # -------------------------------------------------------------------------

    def load(self, start: Optional[str] = None, end: Optional[str] = None) -> Job:
        """
        Fetch entries for [start, end] (inclusive, either side open).
        Buckets outside the range are left untouched, on success and on failure.
        """
        for bound in (start, end):
            if bound is not None:
                check_date(bound)
        params = {key: value for key, value in (('from', start), ('to', end)) if value}
        rev = self._begin_load()
        mark = self._mark()
        return self._submit(
            f"fetch calendar {start or '…'}..{end or '…'}",
            self.client.fetch_collection, self.resource_type, params or None,
            on_success=lambda payload: self._on_loaded(rev, mark, start, end, payload),
            on_failure=lambda exc: self._on_load_failed(rev, mark, start, end, exc),
        )

    def refresh(self, start: Optional[str] = None, end: Optional[str] = None) -> Job:
        return self.load(start, end)

    def _on_loaded(self, rev: int, mark: Dict[str, int], start, end, payload: Any) -> None:
        if not self._is_current_load(rev):
            return
        try:
            if not isinstance(payload, list):
                raise DecodeFailure(f"Expected a list of calendar entries, got {type(payload).__name__}")
            entries = [from_payload(CalendarEntry, item) for item in payload]
            for entry in entries:
                if not entry.date:
                    raise DecodeFailure(f"Calendar entry {entry.id} has no date")
                check_date(entry.date)
        except (DecodeFailure, ValueError) as e:
            error = e if isinstance(e, DecodeFailure) else DecodeFailure(str(e))
            self._on_load_failed(rev, mark, start, end, error)
            return

        fetched: CalendarIndex = {}
        for entry in entries:
            if _in_range(entry.date, start, end):
                fetched.setdefault(entry.date, []).append(entry)
            else:
                logger.debug(f"calendar: ignoring {entry.id} on {entry.date}, outside {start}..{end}")
        self._merge_range(start, end, fetched, mark)
        self._finish_load(sum(len(v) for v in fetched.values()))

    def _on_load_failed(self, rev: int, mark: Dict[str, int], start, end, exc: SyncError) -> None:
        if not self._is_current_load(rev):
            return
        seeded: CalendarIndex = {}
        for day, entries in self.seed().items():
            if _in_range(day, start, end):
                seeded[day] = [dataclasses.replace(e, date=day) for e in entries]
        self._merge_range(start, end, seeded, mark)
        self._degrade(exc, sum(len(v) for v in seeded.values()))

    def _merge_range(self, start, end, fresh: CalendarIndex, mark: Dict[str, int]) -> None:
        """
        Replace the buckets in range with fresh ones; keep the rest. Entries
        held locally stay where the user put them and their fresh copies are
        dropped.
        """
        held = self._held_locally(mark)
        fresh_ids = {e.id for entries in fresh.values() for e in entries}
        index: CalendarIndex = {}
        for day, entries in self._index.items():
            if _in_range(day, start, end):
                kept = [e for e in entries if e.id in held]
            else:
                # an id now reported inside the range has moved there
                kept = [e for e in entries if e.id in held or e.id not in fresh_ids]
            if kept:
                index[day] = kept
        for day, entries in fresh.items():
            arriving = [e for e in entries if e.id not in held]
            if arriving:
                index[day] = index.get(day, []) + arriving
        self._index = index

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @log_call
    def add_service(self, day: str, entry: CalendarEntry) -> MutationResult:
        """Append a service visit to day's bucket, creating the bucket if needed."""
        check_date(day)
        return self._create(dataclasses.replace(entry, kind=KIND_SERVICE, date=day))

    @log_call
    def add_event(self, day: str, entry: CalendarEntry) -> MutationResult:
        check_date(day)
        return self._create(dataclasses.replace(entry, kind=KIND_EVENT, date=day))

    @log_call
    def reschedule(self, entry_id: str, new_date: str, new_time: Optional[str]) -> MutationResult:
        """
        Move an entry to new_date at new_time. The entry is found by id across
        all buckets; the old bucket is pruned if this empties it.
        """
        check_date(new_date)
        local = self._lookup(entry_id)
        if local is None:
            return self._missing('reschedule', entry_id)

        moved = dataclasses.replace(local, date=new_date, time=new_time)
        self._swap(entry_id, moved)
        self._touch(entry_id, ('date', 'time'))
        result = MutationResult('reschedule', entry_id, record=moved)
        logger.info(f"calendar: {entry_id} rescheduled {local.date} {local.time} -> {new_date} {new_time}")
        self._emit(EVENT_ENTRY_RESCHEDULED, id=entry_id, from_date=local.date, to_date=new_date, time=new_time)

        self._sync_update(entry_id, {'date': new_date, 'time': new_time}, result)
        return result

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def entries_on(self, day: str) -> List[CalendarEntry]:
        return list(self._index.get(day, []))

    def has_activity(self, day: str) -> bool:
        return day in self._index

    def get_marked_dates(self, selected_date: Optional[str] = None) -> Dict[str, MarkedDate]:
        """
        Rebuild the calendar markings from the whole index.
        A day with any service gets the service color; event-only days get the
        event color. The selected date (if any) is highlighted even when empty.
        """
        marked: Dict[str, MarkedDate] = {}
        for day, entries in self._index.items():
            has_service = any(e.kind == KIND_SERVICE for e in entries)
            marked[day] = MarkedDate(
                marked=True,
                dot_color=self.service_color if has_service else self.event_color,
            )
        if selected_date:
            marked[selected_date] = dataclasses.replace(
                marked.get(selected_date, MarkedDate()),
                selected=True,
                selected_color=self.service_color,
                selected_text_color=self.selected_text_color,
            )
        return marked

    def search(self, query: str) -> CalendarIndex:
        """
        Case-insensitive substring search over name, provider, location and
        description. Only matching entries are returned, grouped by day; a blank
        query matches nothing.
        """
        if not (query or '').strip():
            return {}
        needle = query.lower()
        results: CalendarIndex = {}
        for day, entries in self._index.items():
            hits = [e for e in entries if _matches(e, needle)]
            if hits:
                results[day] = hits
        return results

    def upcoming(self, today: Union[str, date], limit: Optional[int] = None) -> List[CalendarEntry]:
        """Service visits on or after today, soonest first."""
        today = today.isoformat() if isinstance(today, date) else check_date(today)
        visits = [
            e for day, entries in self._index.items() if day >= today
            for e in entries if e.kind == KIND_SERVICE
        ]
        visits.sort(key=lambda e: (e.date, e.time or ''))
        return visits[:limit] if limit is not None else visits

    # -------------------------------------------------------------------------
    # Storage hooks
    # -------------------------------------------------------------------------

    def _locate(self, entry_id: str):
        for day, entries in self._index.items():
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    return day, i
        return None

    def _lookup(self, entry_id):
        found = self._locate(entry_id)
        if found is None:
            return None
        day, i = found
        return self._index[day][i]

    def _insert(self, entry):
        index = dict(self._index)
        index[entry.date] = index.get(entry.date, []) + [entry]
        self._index = index
        return entry, []

    def _swap(self, entry_id, entry):
        day, i = self._locate(entry_id)
        index = dict(self._index)
        if entry.date == day:
            bucket = list(index[day])
            bucket[i] = entry
            index[day] = bucket
        else:
            remaining = index[day][:i] + index[day][i + 1:]
            if remaining:
                index[day] = remaining
            else:
                del index[day]
            index[entry.date] = index.get(entry.date, []) + [entry]
        self._index = index

    def _delete(self, entry_id):
        day, i = self._locate(entry_id)
        index = dict(self._index)
        remaining = index[day][:i] + index[day][i + 1:]
        if remaining:
            index[day] = remaining
        else:
            del index[day]
        self._index = index

    def _validate_patch(self, patch):
        if 'date' in patch:
            check_date(patch['date'])
        if 'kind' in patch and patch['kind'] not in (KIND_SERVICE, KIND_EVENT):
            raise ValueError(f"Unknown calendar entry kind {patch['kind']!r}")
