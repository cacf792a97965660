"""
Client-side synchronization: the debounced write path and the background poll.

A SyncSession ties together one DocumentState, the HTTP transport, a
DebouncedWriter (every local mutation schedules one full-document write) and
a SyncClient (periodic pull, merged in client orientation, suspended while
the user is typing).

Nothing here raises on network or server trouble. Failures are logged and
the next scheduled tick or mutation tries again.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

from .client import DocumentClient
from .config import SyncConfig
from .document import DocumentState
from .merge import Orientation
from .types import DEFAULT_ACTIVITY_LIMIT, empty_document, seed_document

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the sync layer needs from the server connection."""

    def fetch_document(self) -> Optional[dict]: ...

    def push_document(self, document: dict) -> Optional[dict]: ...


class SyncStatus(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    MERGING = "merging"
    SUSPENDED = "suspended"


class InputActivity:
    """
    Signal from the view layer that the user is entering text.

    Active while a text field holds focus, or until `quiet_period` seconds
    after the last keystroke.
    """

    def __init__(self, quiet_period: float = 4.0, clock: Callable[[], float] = time.monotonic):
        self._quiet_period = quiet_period
        self._clock = clock
        self._until = 0.0
        self._focused = False

    def bump(self) -> None:
        """Record a keystroke."""
        self._until = self._clock() + self._quiet_period

    def focus(self, active: bool = True) -> None:
        self._focused = active

    def is_active(self) -> bool:
        return self._focused or self._clock() < self._until


@dataclass
class OpenEditor:
    """The record currently open in an editor, with its unsaved fields."""
    collection: str = "notes"
    record_id: Optional[str] = None
    dirty: bool = False
    fields: dict = field(default_factory=dict)

    def open(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        self.dirty = False
        self.fields = {}

    def edit(self, **fields) -> None:
        self.fields.update(fields)
        self.dirty = True

    def saved(self) -> None:
        self.dirty = False
        self.fields = {}

    def close(self) -> None:
        self.record_id = None
        self.saved()

    def apply_to(self, state: DocumentState) -> bool:
        """Write unsaved edits into the (post-merge) record of the open id."""
        if not (self.record_id and self.dirty and self.fields):
            return False
        return state.overlay_fields(self.collection, self.record_id, self.fields)


class DebouncedWriter:
    """
    Batches rapid local mutations into one full-document write.

    Each mutation restarts a `delay`-second timer; when it fires, the whole
    snapshot is POSTed and the server's merged document is adopted. Changes
    to settings listed in `immediate_keys` are written without waiting.
    """

    def __init__(
        self,
        state: DocumentState,
        transport: Transport,
        *,
        delay: float = 0.4,
        immediate_keys: Iterable[str] = (),
    ):
        self._state = state
        self._transport = transport
        self._delay = delay
        self._immediate_keys = frozenset(immediate_keys)
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        # While paused, local state is kept dirty and never pushed
        self.paused = False
        self.writes = 0
        self.failures = 0
        state.subscribe(self._on_change)

    def _on_change(self, action: str, collection: str, record_id: str) -> None:
        if collection == "settings" and record_id in self._immediate_keys:
            self.schedule(0)
        else:
            self.schedule()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, delay: Optional[float] = None) -> None:
        """(Re)start the debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(
                self._delay if delay is None else delay, self._fire
            )
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        try:
            self.flush()
        except Exception as e:
            logger.error("Debounced write failed: %s", e, exc_info=True)

    def flush(self) -> bool:
        """
        Write now.

        Returns:
            True if the server accepted the write and its result was adopted
        """
        self.cancel()
        if self.paused:
            logger.debug("Write held: server document not loaded yet")
            return False
        with self._write_lock:
            generation = self._state.generation
            snapshot = self._state.snapshot()
            merged = self._transport.push_document(snapshot)
            if merged is None:
                self.failures += 1
                logger.warning("Write not persisted; keeping local state")
                return False
            self.writes += 1
            clean = self._state.adopt(merged, generation)
            if not clean:
                logger.debug("Local edits landed during write; another write follows")
            return True


class SyncClient:
    """
    Background reconciliation loop for one session.

    Every `interval` seconds: skip if the user is typing, otherwise fetch the
    server document, merge it into local state and ask the view to redraw.
    """

    def __init__(
        self,
        state: DocumentState,
        transport: Transport,
        *,
        interval: float = 10.0,
        initial_delay: float = 2.0,
        activity: Optional[InputActivity] = None,
        editor: Optional[OpenEditor] = None,
        render: Optional[Callable[[], None]] = None,
        enabled: bool = True,
        loaded: bool = True,
        on_loaded: Optional[Callable[[], None]] = None,
    ):
        self._state = state
        self._transport = transport
        self._interval = interval
        self._initial_delay = initial_delay
        self.activity = activity or InputActivity()
        self.editor = editor or OpenEditor()
        self._render = render
        self.enabled = enabled
        # False until one fetch has reached the server
        self.loaded = loaded
        self._on_loaded = on_loaded

        self._lock = threading.Lock()
        self._seq = 0
        self._applied_seq = 0
        self.status = SyncStatus.IDLE
        self.suspended_reason: Optional[str] = None

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _set_status(self, status: SyncStatus, reason: Optional[str] = None) -> None:
        self.status = status
        self.suspended_reason = reason

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def poll(self) -> bool:
        """Timer tick. Returns True if inbound changes were merged."""
        if not self.enabled:
            return False
        if self.activity.is_active():
            self._set_status(SyncStatus.SUSPENDED, "typing")
            logger.debug("Sync skipped: user typing")
            return False
        return self._run_once()

    def sync_now(self) -> bool:
        """Manual sync. Bypasses the typing guard and the enabled toggle."""
        logger.info("Manual sync triggered")
        return self._run_once()

    def on_visible(self) -> bool:
        """The session became visible again after being hidden."""
        return self.poll()

    def _run_once(self) -> bool:
        with self._lock:
            self._seq += 1
            seq = self._seq
            self._set_status(SyncStatus.POLLING)

        remote = self._transport.fetch_document()
        if remote is None:
            logger.debug("Sync: server unavailable")
            with self._lock:
                if seq == self._seq:
                    self._set_status(SyncStatus.IDLE)
            return False

        with self._lock:
            if seq < self._applied_seq:
                logger.info("Sync: dropping out-of-order response %d (applied %d)",
                            seq, self._applied_seq)
                return False
            self._applied_seq = seq
            first_load = not self.loaded
            self.loaded = True
            changed = False
            if remote:
                self._set_status(SyncStatus.MERGING)
                orientation = Orientation.SERVER if first_load else Orientation.CLIENT
                changed = self._state.merge_inbound(remote, orientation)
                if self.editor.apply_to(self._state):
                    logger.debug("Sync: kept unsaved edits of %s", self.editor.record_id)

        if first_load:
            logger.info("Sync: server reached, local writes resume")
            if self._on_loaded is not None:
                self._on_loaded()
        if not remote:
            logger.debug("Sync: server holds no document")
            with self._lock:
                self._set_status(SyncStatus.IDLE)
            return False

        if changed:
            logger.info("Sync: merged remote changes (version %d)", self._state.version)
        self._redraw()
        with self._lock:
            self._set_status(SyncStatus.IDLE)
        return changed

    def _redraw(self) -> None:
        if self._render is None:
            return
        try:
            self._render()
        except Exception as e:
            logger.warning("Render after sync failed: %s", e)

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="ultranote-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        delay = self._initial_delay
        while not self._stop.wait(delay):
            try:
                self.poll()
            except Exception as e:
                logger.warning("Sync tick failed: %s", e, exc_info=True)
            delay = self._interval


class SyncSession:
    """
    One client session: local state, write path and background sync.

    Usage::

        with SyncSession(config.sync, render=redraw) as session:
            session.state.create("notes", title="Hello")
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        transport: Optional[Transport] = None,
        render: Optional[Callable[[], None]] = None,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
    ):
        self._config = config or SyncConfig()
        self._owns_transport = transport is None
        self.transport = transport or DocumentClient(
            self._config.server_url, timeout=self._config.timeout
        )
        self._render = render
        self._activity_limit = activity_limit
        self.activity = InputActivity(self._config.typing_quiet_period)
        self.editor = OpenEditor()
        self.state: Optional[DocumentState] = None
        self.writer: Optional[DebouncedWriter] = None
        self.client: Optional[SyncClient] = None

    def open(self, *, start: bool = True) -> DocumentState:
        """
        Load the server document and start syncing.

        A server that answers with no document gets the seed document pushed.
        A server that cannot be reached is not taken for an empty one: the
        session starts from an empty document and holds all writes until a
        later fetch succeeds and merges the real document in.
        """
        remote = self.transport.fetch_document()
        if remote is None:
            logger.warning("Server unreachable; working offline until it answers")
            document = empty_document()
        elif not remote:
            logger.info("No server document; starting from the seed")
            document = seed_document()
        else:
            document = remote
        self.state = DocumentState(document, activity_limit=self._activity_limit)

        self.writer = DebouncedWriter(
            self.state, self.transport,
            delay=self._config.debounce,
            immediate_keys=self._config.immediate_keys,
        )
        self.writer.paused = remote is None
        self.client = SyncClient(
            self.state, self.transport,
            interval=self._config.poll_interval,
            initial_delay=self._config.initial_delay,
            activity=self.activity,
            editor=self.editor,
            render=self._render,
            enabled=self._config.auto_sync,
            loaded=remote is not None,
            on_loaded=self._resume_writes,
        )
        if remote == {}:
            self.writer.flush()
        if start:
            self.client.start()
        return self.state

    def _resume_writes(self) -> None:
        self.writer.paused = False
        if self.state.dirty:
            self.writer.schedule()

    def close(self) -> None:
        """Stop the poll, write any pending changes and release the transport."""
        if self.client is not None:
            self.client.stop()
        if self.writer is not None:
            if self.writer.pending or (self.state is not None and self.state.dirty):
                self.writer.flush()
            self.writer.cancel()
        if self._owns_transport:
            self.transport.close()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
