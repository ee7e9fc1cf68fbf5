"""
Resource Store - optimistic, in-memory mirror of one remote collection.

Every mutation is applied to local state first, in call order, and returned to
the caller synchronously. The matching network call runs through a dispatcher;
its completion is reconciled later:

  - success : server record merged in (unless a newer local change superseded it)
  - failure : optimistic state is kept, the error flag is raised
  - stale   : response tagged with an older revision than the record's current
              one, or a failure whose fields a newer call has already re-sent; ignored

Loads never raise. A failed fetch swaps in seed data and marks the store degraded.
A landing load keeps the local version of every record with unsynced changes.
"""

import dataclasses
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Set, Tuple, Type, TypeVar

from homecare.bus.events import (
    EventBus,
    EVENT_RESOURCE_LOADING, EVENT_RESOURCE_LOADED, EVENT_RESOURCE_DEGRADED,
    EVENT_RECORD_CREATED, EVENT_RECORD_UPDATED, EVENT_RECORD_REMOVED,
    EVENT_DEFAULT_CHANGED, EVENT_RECORD_SYNCED, EVENT_SYNC_FAILED,
)
from homecare.engine.policy import changed_ids, ensure_single_default, select_exclusive
from homecare.logging_config import log_call
from homecare.models import (
    LOAD_IDLE, LOAD_LOADING, LOAD_READY, LOAD_DEGRADED,
    STATUS_OPTIMISTIC, STATUS_SYNCED, STATUS_FAILED, STATUS_STALE,
    apply_patch, from_payload, to_payload,
)
from homecare.net.dispatch import Dispatcher, Job
from homecare.net.errors import DecodeFailure, ServerFault, SyncError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Locally synthesized ids; the server never issues ids with this prefix.
TEMP_ID_PREFIX = 'local-'

_local_seq = itertools.count(1)


def is_temporary(record_id: Optional[str]) -> bool:
    return bool(record_id) and record_id.startswith(TEMP_ID_PREFIX)


def _encode(value: Any) -> Any:
    """Make a patch value JSON-ready (nested dataclasses become dicts)."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


@dataclass
class MutationResult:
    """
    Outcome of one store mutation.
    status starts at 'optimistic' and moves to 'synced', 'failed' or 'stale'
    when the network half completes.
    """
    op: str
    record_id: Optional[str]
    status: str = STATUS_OPTIMISTIC
    record: Any = None
    error: Optional[BaseException] = None
    job: Optional[Job] = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


class SyncedStore:
    """
    Shared machinery for every store: load state, error flag, revisions,
    background submission and the create/update/remove reconciliation flow.

    Subclasses own the storage layout through four hooks:
        _lookup(id)          -> record or None
        _insert(record)      -> (stored record, ids of other records it changed)
        _swap(id, record)    -> replace record `id` in place, one state transition
        _delete(id)          -> drop record `id`
    """

    # Fields whose local value survives a server echo
    _pinned: Tuple[str, ...] = ()

    def __init__(self, resource_type: str, model: Type, client, dispatcher: Dispatcher,
                 bus: Optional[EventBus] = None):
        self.resource_type = resource_type
        self.model = model
        self.client = client
        self.dispatcher = dispatcher
        self.bus = bus if bus is not None else EventBus()

        self._load_state = LOAD_IDLE
        self._error: Optional[SyncError] = None
        self._load_rev = 0
        self._revisions: Dict[str, int] = {}
        # record id -> {field: revision that last wrote it locally}
        self._field_revs: Dict[str, Dict[str, int]] = {}
        # record id -> calls in flight for it
        self._unsynced: Dict[str, int] = {}
        self._in_flight = 0
        # temp id -> mutations waiting for the server id: [(op, result or None)]
        self._awaiting_create: Dict[str, List[Tuple[str, Optional[MutationResult]]]] = {}

    # -------------------------------------------------------------------------
    # Read state
    # -------------------------------------------------------------------------

    @property
    def load_state(self) -> str:
        return self._load_state

    @property
    def error(self) -> Optional[SyncError]:
        return self._error

    @property
    def error_message(self) -> Optional[str]:
        return self._error.user_message if self._error else None

    @property
    def pending(self) -> int:
        """Network calls submitted but not yet reconciled."""
        return self._in_flight

    def clear_error(self) -> None:
        self._error = None

    def get_by_id(self, record_id: str):
        """Pure lookup; None when absent."""
        return self._lookup(record_id)

    # -------------------------------------------------------------------------
    # Storage hooks
    # -------------------------------------------------------------------------

    def _lookup(self, record_id: str):
        raise NotImplementedError

    def _insert(self, record) -> Tuple[Any, List[str]]:
        raise NotImplementedError

    def _swap(self, record_id: str, record) -> None:
        raise NotImplementedError

    def _delete(self, record_id: str) -> None:
        raise NotImplementedError

    def _validate_patch(self, patch: Dict[str, Any]) -> None:
        """Reject patches the store cannot apply as a plain field merge."""

    def _sync_collateral(self, record_ids: List[str]) -> None:
        """Push changes an insert made to records other than the new one."""

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _temp_id(self) -> str:
        return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{next(_local_seq)}"

    def _bump(self, record_id: str) -> int:
        rev = self._revisions.get(record_id, 0) + 1
        self._revisions[record_id] = rev
        return rev

    def _touch(self, record_id: str, fields) -> int:
        """Bump the record and remember which fields this revision wrote."""
        rev = self._bump(record_id)
        written = self._field_revs.setdefault(record_id, {})
        for name in fields:
            written[name] = rev
        return rev

    def _superseded(self, record_id: str, fields, tag: Optional[int]) -> bool:
        """True when every field a call carried has been written again since it was sent."""
        if tag is None or self._revisions.get(record_id) == tag:
            return False
        written = self._field_revs.get(record_id, {})
        return bool(fields) and all(written.get(name, 0) > tag for name in fields)

    def _mark(self) -> Dict[str, int]:
        """Per-record revisions at the moment a load is submitted."""
        return dict(self._revisions)

    def _held_locally(self, mark: Dict[str, int]) -> Set[str]:
        """Ids whose local state a landing load must keep."""
        held = {record_id for record_id, rev in self._revisions.items() if mark.get(record_id) != rev}
        # temporary ids exist only here, whether the create is pending or failed
        held.update(record_id for record_id in self._revisions if is_temporary(record_id))
        held.update(self._unsynced)
        if held:
            logger.debug(f"{self.resource_type}: load keeps local {sorted(held)}")
        return held

    def _emit(self, event_name: str, **data) -> None:
        data['resource_type'] = self.resource_type
        self.bus.emit(event_name, data)

    def _reconcile(self, local, server):
        """Merge a server echo into the local record; pinned fields stay local."""
        pinned = {name: getattr(local, name) for name in self._pinned}
        return dataclasses.replace(server, **pinned) if pinned else server

    def _submit(self, description: str, fn: Callable, *args,
                on_success: Callable, on_failure: Callable, record_ids: Sequence[str] = ()) -> Job:
        self._in_flight += 1
        for record_id in record_ids:
            self._unsynced[record_id] = self._unsynced.get(record_id, 0) + 1

        def settle():
            self._in_flight -= 1
            for record_id in record_ids:
                left = self._unsynced.pop(record_id, 0) - 1
                if left > 0:
                    self._unsynced[record_id] = left

        def done(value):
            settle()
            on_success(value)

        def failed(exc):
            settle()
            on_failure(self._as_sync_error(exc))

        return self.dispatcher.submit(fn, *args, on_success=done, on_failure=failed, description=description)

    def _as_sync_error(self, exc: BaseException) -> SyncError:
        if isinstance(exc, SyncError):
            return exc
        logger.error(f"{self.resource_type}: unclassified {type(exc).__name__} from client: {exc}")
        return ServerFault(f"{type(exc).__name__}: {exc}")

    def _fail(self, results: Sequence[Optional[MutationResult]], exc: SyncError,
              op: str, record_id: Optional[str]) -> None:
        self._error = exc
        for result in results:
            if result is not None:
                result.status = STATUS_FAILED
                result.error = exc
        logger.error(f"{self.resource_type}: {op} {record_id} not synced ({exc.kind}): {exc}")
        self._emit(EVENT_SYNC_FAILED, op=op, id=record_id, kind=exc.kind, message=exc.user_message)

    def _missing(self, op: str, record_id: str) -> MutationResult:
        logger.warning(f"{self.resource_type}: {op} on unknown id {record_id!r}")
        return MutationResult(op, record_id, status=STATUS_FAILED, error=KeyError(record_id))

    def _begin_load(self) -> int:
        self._load_rev += 1
        self._load_state = LOAD_LOADING
        self._emit(EVENT_RESOURCE_LOADING, revision=self._load_rev)
        return self._load_rev

    def _is_current_load(self, rev: int) -> bool:
        if rev != self._load_rev:
            logger.debug(f"{self.resource_type}: discarding load #{rev}, superseded by #{self._load_rev}")
            return False
        return True

    def _finish_load(self, count: int) -> None:
        self._load_state = LOAD_READY
        self._error = None
        logger.info(f"{self.resource_type}: loaded {count} records")
        self._emit(EVENT_RESOURCE_LOADED, count=count)

    def _degrade(self, exc: SyncError, count: int) -> None:
        self._load_state = LOAD_DEGRADED
        self._error = exc
        logger.warning(f"{self.resource_type}: fetch failed ({exc.kind}: {exc}); using {count} seed records")
        self._emit(EVENT_RESOURCE_DEGRADED, count=count, kind=exc.kind, message=exc.user_message)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _create(self, draft) -> MutationResult:
        temp_id = self._temp_id()
        record, collateral = self._insert(dataclasses.replace(draft, id=temp_id))
        tag = self._bump(temp_id)
        self._awaiting_create[temp_id] = []

        result = MutationResult('create', temp_id, record=record)
        self._emit(EVENT_RECORD_CREATED, id=temp_id, record=record)

        payload = to_payload(dataclasses.replace(record, id=None))
        result.job = self._submit(
            f"create {self.resource_type} {temp_id}",
            self.client.create, self.resource_type, payload,
            on_success=lambda data: self._on_created(result, temp_id, tag, data),
            on_failure=lambda exc: self._on_create_failed(result, temp_id, exc),
            record_ids=(temp_id,),
        )
        if collateral:
            self._sync_collateral(collateral)
        return result

    def _on_created(self, result: MutationResult, temp_id: str, tag: int, data: Any) -> None:
        try:
            server = from_payload(self.model, data)
        except DecodeFailure as e:
            self._on_create_failed(result, temp_id, e)
            return

        deferred = self._awaiting_create.pop(temp_id, [])
        local = self._lookup(temp_id)
        result.record_id = server.id
        result.status = STATUS_SYNCED

        if local is None:
            # removed while the create was in flight
            result.record = server
            removals = [r for op, r in deferred if op == 'remove']
            if removals:
                self._push_remove(server.id, removals)
            return

        if self._revisions.get(temp_id) == tag:
            replacement = self._reconcile(local, server)
        else:
            # edited locally meanwhile: keep the edits, take only the id
            replacement = dataclasses.replace(local, id=server.id)
        self._swap(temp_id, replacement)
        self._revisions[server.id] = self._revisions.pop(temp_id, 0)
        self._field_revs[server.id] = self._field_revs.pop(temp_id, {})
        result.record = replacement
        logger.info(f"{self.resource_type}: {temp_id} confirmed as {server.id}")
        self._emit(EVENT_RECORD_SYNCED, op='create', temp_id=temp_id, id=server.id)

        if any(op == 'update' for op, _ in deferred):
            payload = to_payload(dataclasses.replace(replacement, id=None))
            self._push_update(server.id, payload, [r for op, r in deferred if op == 'update' and r is not None])

    def _on_create_failed(self, result: MutationResult, temp_id: str, exc: SyncError) -> None:
        deferred = self._awaiting_create.pop(temp_id, [])
        # keep the optimistic record; the user's input is not thrown away
        self._fail([result] + [r for _, r in deferred], exc, 'create', temp_id)

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    @log_call
    def update(self, record_id: str, patch: Dict[str, Any]) -> MutationResult:
        """Merge patch into the record now; sync in the background."""
        local = self._lookup(record_id)
        if local is None:
            return self._missing('update', record_id)
        self._validate_patch(patch)
        updated = apply_patch(local, patch)

        self._swap(record_id, updated)
        self._touch(record_id, patch)
        result = MutationResult('update', record_id, record=updated)
        self._emit(EVENT_RECORD_UPDATED, id=record_id, fields=sorted(patch))

        self._sync_update(record_id, {k: _encode(v) for k, v in patch.items()}, result)
        return result

    def _sync_update(self, record_id: str, payload: Dict[str, Any], result: Optional[MutationResult]) -> None:
        if record_id in self._awaiting_create:
            # no server id yet; replayed with the full record once the create lands
            self._awaiting_create[record_id].append(('update', result))
            return
        self._push_update(record_id, payload, [result] if result else [])

    def _push_update(self, record_id: str, payload: Dict[str, Any], results: List[MutationResult]) -> None:
        tag = self._revisions.get(record_id)
        job = self._submit(
            f"update {self.resource_type} {record_id}",
            self.client.update, self.resource_type, record_id, payload,
            on_success=lambda data: self._on_updated(results, record_id, tag, data),
            on_failure=lambda exc: self._on_update_failed(results, record_id, tag, tuple(payload), exc),
            record_ids=(record_id,),
        )
        for result in results:
            result.job = job

    def _on_updated(self, results: List[MutationResult], record_id: str, tag: int, data: Any) -> None:
        local = self._lookup(record_id)
        if local is None or self._revisions.get(record_id) != tag:
            logger.debug(f"{self.resource_type}: stale update echo for {record_id} (rev {tag})")
            for result in results:
                result.status = STATUS_STALE
            return
        try:
            server = from_payload(self.model, data)
        except DecodeFailure as e:
            self._fail(results, e, 'update', record_id)
            return

        merged = self._reconcile(local, server)
        self._swap(record_id, merged)
        for result in results:
            result.status = STATUS_SYNCED
            result.record = merged
        self._emit(EVENT_RECORD_SYNCED, op='update', id=record_id)

    def _on_update_failed(self, results: List[MutationResult], record_id: str, tag: int,
                          fields: Tuple[str, ...], exc: SyncError) -> None:
        if self._superseded(record_id, fields, tag):
            logger.debug(f"{self.resource_type}: failed update of {record_id} (rev {tag}) already re-sent")
            for result in results:
                result.status = STATUS_STALE
            return
        self._fail(results, exc, 'update', record_id)

    # -------------------------------------------------------------------------
    # Remove
    # -------------------------------------------------------------------------

    @log_call
    def remove(self, record_id: str) -> MutationResult:
        """Drop the record now. A failed delete does not bring it back."""
        local = self._lookup(record_id)
        if local is None:
            return self._missing('remove', record_id)

        self._delete(record_id)
        self._bump(record_id)
        result = MutationResult('remove', record_id, record=local)
        self._emit(EVENT_RECORD_REMOVED, id=record_id)

        if record_id in self._awaiting_create:
            self._awaiting_create[record_id].append(('remove', result))
        else:
            self._push_remove(record_id, [result])
        return result

    def _push_remove(self, record_id: str, results: List[MutationResult]) -> None:
        def removed(_):
            for result in results:
                result.status = STATUS_SYNCED
            self._emit(EVENT_RECORD_SYNCED, op='remove', id=record_id)

        job = self._submit(
            f"remove {self.resource_type} {record_id}",
            self.client.remove, self.resource_type, record_id,
            on_success=removed,
            on_failure=lambda exc: self._fail(results, exc, 'remove', record_id),
            record_ids=(record_id,),
        )
        for result in results:
            result.job = job


class ResourceStore(SyncedStore, Generic[T]):
    """
    One flat, ordered collection of records of a single type.

    Configured per resource type (see engine.registry); optional exclusive_flag
    names the boolean field of which at most one record may be True
    ('is_default' for addresses and payment methods, 'current' for plans).
    """

    def __init__(self, resource_type: str, model: Type[T], client, dispatcher: Dispatcher,
                 seed: Callable[[], List[T]], exclusive_flag: Optional[str] = None,
                 bus: Optional[EventBus] = None):
        super().__init__(resource_type, model, client, dispatcher, bus)
        self.seed = seed
        self.exclusive_flag = exclusive_flag
        self._pinned = (exclusive_flag,) if exclusive_flag else ()
        self._records: List[T] = []
        self._default_batch = 0

    @property
    def data(self) -> Tuple[T, ...]:
        """Read-only snapshot of the collection, in display order."""
        return tuple(self._records)

    def snapshot(self) -> Dict[str, Any]:
        """What a screen binding reads: data, load state and the user-facing error."""
        return {
            'data': self.data,
            'load_state': self.load_state,
            'error': self.error_message,
        }

    # -------------------------------------------------------------------------
    # Load
    # -------------------------------------------------------------------------

    def load(self) -> Job:
        """Fetch the collection in the background. Never raises."""
        rev = self._begin_load()
        mark = self._mark()
        return self._submit(
            f"fetch {self.resource_type}",
            self.client.fetch_collection, self.resource_type,
            on_success=lambda payload: self._on_loaded(rev, mark, payload),
            on_failure=lambda exc: self._on_load_failed(rev, mark, exc),
        )

    def refresh(self) -> Job:
        """Manual retry; the only retry path there is."""
        return self.load()

    def _on_loaded(self, rev: int, mark: Dict[str, int], payload: Any) -> None:
        if not self._is_current_load(rev):
            return
        try:
            if not isinstance(payload, list):
                raise DecodeFailure(f"Expected a list of {self.resource_type}, got {type(payload).__name__}")
            records = [from_payload(self.model, item) for item in payload]
        except DecodeFailure as e:
            self._on_load_failed(rev, mark, e)
            return
        if self.exclusive_flag:
            records = ensure_single_default(records, self.exclusive_flag)
        self._replace_all(records, mark)
        self._finish_load(len(records))

    def _on_load_failed(self, rev: int, mark: Dict[str, int], exc: SyncError) -> None:
        if not self._is_current_load(rev):
            return
        records = list(self.seed())
        self._replace_all(records, mark)
        self._degrade(exc, len(records))

    def _replace_all(self, records: List[T], mark: Dict[str, int]) -> None:
        """
        Install a fresh collection. Records held locally (see _held_locally)
        keep their local version in the server's position, or are appended
        when the server does not list them yet; held ids missing locally
        were removed and stay removed.
        """
        held = self._held_locally(mark)
        local = {r.id: r for r in self._records if r.id in held}
        merged = [local.get(r.id, r) for r in records if r.id not in held or r.id in local]
        listed = {r.id for r in merged}
        merged += [r for r in self._records if r.id in held and r.id not in listed]

        flag = self.exclusive_flag
        if flag:
            mine = [r.id for r in merged if r.id in held and getattr(r, flag)]
            merged = select_exclusive(merged, mine[-1], flag) if mine else ensure_single_default(merged, flag)
        self._records = merged

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @log_call
    def create(self, draft: T) -> MutationResult:
        """
        Append draft under a temporary id and return it immediately.
        On an exclusive-flag collection the new record becomes the default when it
        asks to be, or when no other record is.
        """
        return self._create(draft)

    @log_call
    def set_default(self, record_id: str) -> MutationResult:
        """Flag record_id and clear every other record, as one state transition."""
        flag = self.exclusive_flag
        if not flag:
            raise ValueError(f"'{self.resource_type}' has no exclusive flag; set_default is not available")
        try:
            updated = select_exclusive(self._records, record_id, flag)
        except KeyError:
            return self._missing('set_default', record_id)

        changed = changed_ids(self._records, updated, flag)
        self._records = updated
        result = MutationResult('set_default', record_id, record=self._lookup(record_id))
        if not changed:
            result.status = STATUS_SYNCED
            return result

        for changed_id in changed:
            self._touch(changed_id, (flag,))
        self._emit(EVENT_DEFAULT_CHANGED, id=record_id, changed=changed)
        self._push_flag_batch(changed, result)
        return result

    def _push_flag_batch(self, record_ids: List[str], result: Optional[MutationResult]) -> None:
        flag = self.exclusive_flag
        self._default_batch += 1
        batch = self._default_batch

        patches = []
        for record_id in record_ids:
            if record_id in self._awaiting_create:
                self._awaiting_create[record_id].append(('update', None))
                continue
            patches.append((record_id, {flag: getattr(self._lookup(record_id), flag)}))
        if not patches:
            return
        tags = {record_id: self._revisions.get(record_id) for record_id, _ in patches}

        def send(items):
            return [(record_id, self.client.update(self.resource_type, record_id, patch))
                    for record_id, patch in items]

        job = self._submit(
            f"set {flag} on {self.resource_type} x{len(patches)}",
            send, patches,
            on_success=lambda echoes: self._on_flag_batch(result, batch, tags, echoes),
            on_failure=lambda exc: self._on_flag_batch_failed(result, tags, exc),
            record_ids=list(tags),
        )
        if result is not None:
            result.job = job

    def _on_flag_batch(self, result: Optional[MutationResult], batch: int,
                       tags: Dict[str, int], echoes: List[Tuple[str, Any]]) -> None:
        if batch != self._default_batch:
            logger.debug(f"{self.resource_type}: discarding default batch #{batch}, superseded by #{self._default_batch}")
            if result is not None:
                result.status = STATUS_STALE
            return
        for record_id, data in echoes:
            local = self._lookup(record_id)
            if local is None or self._revisions.get(record_id) != tags[record_id]:
                continue
            try:
                server = from_payload(self.model, data)
            except DecodeFailure as e:
                self._fail([result], e, 'set_default', record_id)
                return
            self._swap(record_id, self._reconcile(local, server))
        if result is not None:
            result.status = STATUS_SYNCED
            result.record = self._lookup(result.record_id)
        self._emit(EVENT_RECORD_SYNCED, op='set_default', ids=sorted(tags))

    def _on_flag_batch_failed(self, result: Optional[MutationResult], tags: Dict[str, int],
                              exc: SyncError) -> None:
        flag = self.exclusive_flag
        if all(self._superseded(record_id, (flag,), tag) for record_id, tag in tags.items()):
            logger.debug(f"{self.resource_type}: failed {flag} batch for {sorted(tags)} already re-sent")
            if result is not None:
                result.status = STATUS_STALE
            return
        self._fail([result], exc, 'set_default', result.record_id if result else None)

    # -------------------------------------------------------------------------
    # Storage hooks
    # -------------------------------------------------------------------------

    def _index_of(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None

    def _lookup(self, record_id):
        i = self._index_of(record_id)
        return self._records[i] if i is not None else None

    def _insert(self, record):
        records = self._records + [record]
        flag = self.exclusive_flag
        if not flag:
            self._records = records
            return record, []

        someone_else = any(getattr(r, flag) for r in self._records)
        if getattr(record, flag) or not someone_else:
            updated = select_exclusive(records, record.id, flag)
            collateral = [i for i in changed_ids(records, updated, flag) if i != record.id]
        else:
            updated, collateral = records, []
        self._records = updated
        for record_id in collateral:
            self._touch(record_id, (flag,))
        return updated[-1], collateral

    def _swap(self, record_id, record):
        i = self._index_of(record_id)
        records = list(self._records)
        records[i] = record
        self._records = records

    def _delete(self, record_id):
        self._records = [r for r in self._records if r.id != record_id]

    def _validate_patch(self, patch):
        if self.exclusive_flag and self.exclusive_flag in patch:
            raise ValueError(f"Use set_default() to change '{self.exclusive_flag}' on {self.resource_type}")

    def _sync_collateral(self, record_ids):
        self._push_flag_batch(record_ids, None)
