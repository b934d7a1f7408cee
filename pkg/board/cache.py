"""
Optimistic client-side mirror of a user's board.

Every drag or edit is applied to the in-memory lists first and rendered
straight away; the matching API call then runs on a worker thread. Each
request walks through:

  APPLIED_LOCALLY → PENDING → CONFIRMED
                            ↘ REVERTING → IDLE

On rejection the affected scopes are re-fetched and replaced wholesale,
with debounced edits that are still waiting laid back on top. A confirmed
reorder only takes membership and order from the reply. Every request gets a monotonically increasing sequence number and each
scope remembers the newest one dispatched against it, so a late reply to
an older request can never overwrite newer local state.

Content edits (note text, task description, ...) are debounced per item:
a burst of edits becomes a single write of the merged latest values once
the item has been quiet for ``debounce_ms``.
"""
import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .client import ApiError, BoardClient
from .schema import TaskStatus

logger = logging.getLogger(__name__)

NOTES = "notes"
TASK_SCOPES = tuple(s.value for s in TaskStatus)


class SyncState(Enum):
    IDLE = "idle"
    APPLIED_LOCALLY = "applied_locally"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTING = "reverting"


@dataclass
class SyncRequest:
    """One dispatched mutation and where it is in its lifecycle."""
    seq: int
    label: str
    scopes: Tuple[str, ...]
    state: SyncState = SyncState.APPLIED_LOCALLY
    error: Optional[str] = None


class Debouncer:
    """Collapses rapid calls per key into one, fired after a quiet window."""

    def __init__(self, delay_ms: int = 600):
        self.delay = delay_ms / 1000.0
        self._lock = threading.Lock()
        self._timers: Dict[Any, threading.Timer] = {}
        self._fields: Dict[Any, Dict] = {}
        self._actions: Dict[Any, Callable[[Dict], None]] = {}

    def schedule(self, key, fields: Dict, action: Callable[[Dict], None]) -> None:
        """Merge ``fields`` into the pending write for ``key`` and restart its timer."""
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous:
                previous.cancel()
            self._fields.setdefault(key, {}).update(fields)
            self._actions[key] = action
            timer = threading.Timer(self.delay, self._fire, args=(key, None))
            timer.daemon = True
            # the timer checks its own identity so a superseded one is a no-op
            timer.args = (key, timer)
            self._timers[key] = timer
            timer.start()

    def _fire(self, key, timer) -> None:
        with self._lock:
            if self._timers.get(key) is not timer:
                return
            del self._timers[key]
            fields = self._fields.pop(key, {})
            action = self._actions.pop(key)
        action(fields)

    def cancel(self, key) -> None:
        with self._lock:
            timer = self._timers.pop(key, None)
            if timer:
                timer.cancel()
            self._fields.pop(key, None)
            self._actions.pop(key, None)

    def flush(self) -> None:
        """Fire every pending write now."""
        with self._lock:
            keys = list(self._timers)
            batch = []
            for key in keys:
                self._timers.pop(key).cancel()
                batch.append((self._actions.pop(key), self._fields.pop(key, {})))
        for action, fields in batch:
            action(fields)

    def pending(self) -> List:
        with self._lock:
            return list(self._timers)

    def pending_fields(self, key) -> Dict:
        """Merged fields still waiting to be written for ``key``."""
        with self._lock:
            return dict(self._fields.get(key, {}))


class BoardCache:
    """Optimistic mirror of sticky notes and the three task columns."""

    def __init__(self, client: BoardClient, debounce_ms: int = 600,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.client = client
        self.scopes: Dict[str, List[Dict]] = {NOTES: []}
        for status in TASK_SCOPES:
            self.scopes[status] = []
        self.history = deque(maxlen=200)
        self.last_error: Optional[str] = None
        self.subscribers: List[Callable] = []

        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._latest: Dict[str, int] = {}
        self._inflight: Dict[str, int] = {}
        self._dirty = set()
        self._futures = set()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="board-sync"
        )
        self._debouncer = Debouncer(debounce_ms)

    # ── Observers ────────────────────────────────────────────────────────

    def subscribe(self, callback: Callable) -> None:
        """Register ``callback(event, scope)``; called after every local change."""
        self.subscribers.append(callback)

    def _emit(self, event: str, scopes) -> None:
        for scope in scopes:
            for callback in self.subscribers:
                try:
                    callback(event, scope)
                except Exception as e:
                    logger.error(f"Error in {event} subscriber: {e}")

    # ── Reads ────────────────────────────────────────────────────────────

    def items(self, scope: str) -> List[Dict]:
        with self._lock:
            return [dict(i) for i in self.scopes[scope]]

    def _fetch_scope(self, scope: str) -> List[Dict]:
        if scope == NOTES:
            data = self.client.list_notes()
        else:
            data = self.client.list_tasks(status=scope)
        return sorted(data, key=lambda i: i.get("order", 0))

    def load(self) -> None:
        """Replace every scope with the server's state (blocking)."""
        for scope in self.scopes:
            fresh = self._fetch_scope(scope)
            with self._lock:
                self.scopes[scope] = fresh
        self._emit("loaded", list(self.scopes))

    # ── Request lifecycle ────────────────────────────────────────────────

    def _dispatch(self, label: str, scopes, call: Callable[[], Any],
                  on_success: Optional[Callable[[SyncRequest, Any], None]] = None) -> SyncRequest:
        """Send ``call`` in the background. Local state is already applied."""
        scopes = tuple(scopes)
        with self._lock:
            req = SyncRequest(seq=next(self._seq), label=label, scopes=scopes)
            for scope in scopes:
                self._latest[scope] = req.seq
                self._inflight[scope] = self._inflight.get(scope, 0) + 1
            self.history.append(req)
            req.state = SyncState.PENDING
            future = self._executor.submit(self._run, req, call, on_success)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return req

    def _forget(self, future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run(self, req: SyncRequest, call, on_success) -> None:
        try:
            result = call()
            with self._lock:
                if on_success:
                    on_success(req, result)
                req.state = SyncState.CONFIRMED
        except ApiError as e:
            self._revert(req, e.message)
            logger.warning(f"{req.label} (#{req.seq}) rejected: {e.message}; reverting")
        except Exception as e:
            self._revert(req, str(e) or "An error occurred")
            logger.error(f"{req.label} (#{req.seq}) failed: {e}; reverting", exc_info=True)
        else:
            self._emit("confirmed", req.scopes)
        finally:
            self._finish(req)

    def _revert(self, req: SyncRequest, message: str) -> None:
        with self._lock:
            req.state = SyncState.REVERTING
            req.error = message
            self.last_error = message
            self._dirty.update(req.scopes)

    def _finish(self, req: SyncRequest) -> None:
        """Refetch dirty scopes once nothing else is in flight for them."""
        with self._lock:
            for scope in req.scopes:
                self._inflight[scope] -= 1
            to_refresh = [
                (s, self._latest.get(s)) for s in req.scopes
                if s in self._dirty and self._inflight[s] == 0
            ]

        for scope, seen in to_refresh:
            try:
                fresh = self._fetch_scope(scope)
            except ApiError as e:
                logger.warning(f"Refetch of {scope} failed: {e.message}")
                continue
            with self._lock:
                # a newer mutation went out meanwhile; its own completion refetches
                if self._latest.get(scope) != seen or self._inflight[scope]:
                    continue
                self.scopes[scope] = self._with_pending_edits(scope, fresh)
                self._dirty.discard(scope)
            self._emit("reverted", [scope])

        if req.state is SyncState.REVERTING:
            req.state = SyncState.IDLE

    def _adopt(self, scope: str, req: SyncRequest, items: List[Dict]) -> None:
        """
        Take membership and order from a full-scope reply, unless a newer
        request has gone out since. Content of items already held locally
        stays local: it may carry edits still waiting in the debounce window
        or not yet written when the server built the reply.
        """
        if self._latest.get(scope) != req.seq or not isinstance(items, list):
            return
        local = {i["id"]: i for i in self.scopes[scope]}
        adopted = []
        for item in sorted(items, key=lambda i: i.get("order", 0)):
            mine = local.get(item.get("id"))
            if mine is not None:
                item = dict(item, **{k: v for k, v in mine.items() if k != "order"})
            adopted.append(item)
        self.scopes[scope] = adopted

    @staticmethod
    def _edit_key(scope: str, item_id: str):
        return (NOTES, item_id) if scope == NOTES else ("tasks", item_id)

    def _with_pending_edits(self, scope: str, items: List[Dict]) -> List[Dict]:
        """Re-apply debounced edits that have not been sent yet."""
        for item in items:
            fields = self._debouncer.pending_fields(self._edit_key(scope, item.get("id")))
            if fields:
                item.update(fields)
        return items

    @staticmethod
    def _renumber(items: List[Dict]) -> None:
        for index, item in enumerate(items):
            item["order"] = index

    def _find_task(self, task_id: str) -> Tuple[str, int]:
        for status in TASK_SCOPES:
            for index, task in enumerate(self.scopes[status]):
                if task["id"] == task_id:
                    return status, index
        raise KeyError(task_id)

    # ── Sticky notes ─────────────────────────────────────────────────────

    def move_note(self, from_index: int, to_index: int) -> Optional[SyncRequest]:
        with self._lock:
            notes = self.scopes[NOTES]
            if from_index == to_index or not 0 <= from_index < len(notes):
                return None
            moved = notes.pop(from_index)
            notes.insert(max(0, min(to_index, len(notes))), moved)
            self._renumber(notes)
            ids = [n["id"] for n in notes]
        self._emit("applied", [NOTES])
        return self._dispatch(
            "reorder notes", [NOTES],
            lambda: self.client.reorder_notes(ids),
            lambda req, result: self._adopt(NOTES, req, result),
        )

    def add_note(self, text: str = "", color: str = "yellow") -> SyncRequest:
        """Create on the server, then append locally (ids are server-assigned)."""
        def appended(req, created):
            notes = self.scopes[NOTES]
            notes.append(created)
            self._renumber(notes)
            if created.get("order") != len(notes) - 1:
                ids = [n["id"] for n in notes]
                self._dispatch(
                    "compact notes", [NOTES],
                    lambda: self.client.reorder_notes(ids),
                    lambda r, result: self._adopt(NOTES, r, result),
                )

        return self._dispatch(
            "create note", [NOTES],
            lambda: self.client.create_note(text=text, color=color),
            appended,
        )

    def remove_note(self, note_id: str) -> SyncRequest:
        """Drop locally, then delete and persist the compacted order."""
        self._debouncer.cancel(self._edit_key(NOTES, note_id))
        with self._lock:
            notes = [n for n in self.scopes[NOTES] if n["id"] != note_id]
            self._renumber(notes)
            self.scopes[NOTES] = notes
            ids = [n["id"] for n in notes]
        self._emit("applied", [NOTES])

        def call():
            self.client.delete_note(note_id)
            return self.client.reorder_notes(ids)

        return self._dispatch(
            "delete note", [NOTES], call,
            lambda req, result: self._adopt(NOTES, req, result),
        )

    def edit_note(self, note_id: str, **fields) -> None:
        """Apply now, persist after the debounce window."""
        with self._lock:
            for note in self.scopes[NOTES]:
                if note["id"] == note_id:
                    note.update(fields)
                    break
            else:
                raise KeyError(note_id)
        self._emit("applied", [NOTES])
        self._debouncer.schedule(
            self._edit_key(NOTES, note_id), fields,
            lambda merged: self._dispatch(
                "update note", [NOTES],
                lambda: self.client.update_note(note_id, **merged),
            ),
        )

    # ── Tasks ────────────────────────────────────────────────────────────

    def move_task(self, task_id: str, status: str, index: int) -> Optional[SyncRequest]:
        """Move across (or within) columns; both columns stay dense locally."""
        status = TaskStatus.from_str(status).value
        with self._lock:
            old_status, old_index = self._find_task(task_id)
            source = self.scopes[old_status]
            target = source if status == old_status else self.scopes[status]
            index = max(0, min(index, len(target) - (1 if target is source else 0)))
            if status == old_status and index == old_index:
                return None
            task = source.pop(old_index)
            task["status"] = status
            target.insert(index, task)
            self._renumber(source)
            self._renumber(target)
        scopes = (old_status,) if status == old_status else (old_status, status)
        self._emit("applied", scopes)
        return self._dispatch(
            "move task", scopes,
            lambda: self.client.move_task(task_id, status, index),
        )

    def reorder_tasks(self, status: str, from_index: int, to_index: int) -> Optional[SyncRequest]:
        status = TaskStatus.from_str(status).value
        with self._lock:
            column = self.scopes[status]
            if from_index == to_index or not 0 <= from_index < len(column):
                return None
            moved = column.pop(from_index)
            column.insert(max(0, min(to_index, len(column))), moved)
            self._renumber(column)
            ids = [t["id"] for t in column]
        self._emit("applied", [status])
        return self._dispatch(
            "reorder tasks", [status],
            lambda: self.client.reorder_tasks(status, ids),
            lambda req, result: self._adopt(status, req, result),
        )

    def add_task(self, title: str, **fields) -> SyncRequest:
        status = TaskStatus.from_str(fields.get("status", "active")).value

        def appended(req, created):
            column = self.scopes[created.get("status", status)]
            column.append(created)
            self._renumber(column)

        return self._dispatch(
            "create task", [status],
            lambda: self.client.create_task(title, **fields),
            appended,
        )

    def remove_task(self, task_id: str) -> SyncRequest:
        self._debouncer.cancel(self._edit_key("tasks", task_id))
        with self._lock:
            status, index = self._find_task(task_id)
            column = self.scopes[status]
            column.pop(index)
            self._renumber(column)
            ids = [t["id"] for t in column]
        self._emit("applied", [status])

        def call():
            self.client.delete_task(task_id)
            return self.client.reorder_tasks(status, ids)

        return self._dispatch(
            "delete task", [status], call,
            lambda req, result: self._adopt(status, req, result),
        )

    def edit_task(self, task_id: str, **fields) -> None:
        """Content-only edit (title, description, priority, due_date); debounced."""
        if "status" in fields or "order" in fields or "position" in fields:
            raise ValueError("use move_task/reorder_tasks to change status or order")
        with self._lock:
            status, index = self._find_task(task_id)
            self.scopes[status][index].update(fields)
        self._emit("applied", [status])

        def persist(merged):
            # the task may have changed column since the edit was scheduled
            with self._lock:
                try:
                    scope = self._find_task(task_id)[0]
                except KeyError:
                    return
            self._dispatch(
                "update task", [scope],
                lambda: self.client.update_task(task_id, **merged),
            )

        self._debouncer.schedule(self._edit_key("tasks", task_id), fields, persist)

    # ── Draining ─────────────────────────────────────────────────────────

    def flush(self) -> None:
        """Send debounced edits now instead of waiting out the window."""
        self._debouncer.flush()

    def wait(self, timeout: float = 10.0) -> bool:
        """Block until no request is in flight. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            wait_futures(pending, timeout=remaining)

    def state(self) -> SyncState:
        """Aggregate state: PENDING/REVERTING if any request is, else IDLE."""
        with self._lock:
            states = {r.state for r in self.history}
        for s in (SyncState.REVERTING, SyncState.PENDING):
            if s in states:
                return s
        return SyncState.IDLE

    def close(self) -> None:
        self.flush()
        self.wait()
        self._executor.shutdown(wait=True)
