"""Background event dispatch.

Design goals
------------
1.  **Decoupled producers**: ``publish()`` only enqueues.  Any number of
    threads may publish concurrently; none of them ever runs a listener,
    so a listener can never re-enter the code that published.
2.  **Single dispatch thread**: one daemon thread drains the FIFO queue
    and calls listeners sequentially.  Events from one producer are
    delivered in publish order; there is no ordering across producers.
    A slow listener stalls all dispatch, so listeners must be quick.
3.  **Routing**: listeners subscribe to a kind, optionally narrowed to
    one or more source identifiers.  A listener subscribed without
    identifiers is a wildcard for that kind.
4.  **Error isolation**: a failing listener is logged, counted and
    recorded as a dead letter; other listeners still run.
5.  **Drain on halt**: ``halt_dispatch()`` stops accepting events and
    delivers everything already queued.  If the timeout elapses first,
    the remaining events are discarded and their count is reported and
    logged.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

from chunk_ledger.core.errors import BusHaltedError

from .events import Event

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]

_STOP = object()


@dataclass
class DeadLetter:
    """Record of a listener failure."""

    kind: str
    source_id: str | None
    event_id: str
    error: str
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class HaltReport:
    """Outcome of ``EventBus.halt_dispatch``."""

    delivered: int  # events dispatched while halting
    undelivered: int  # events discarded because the timeout elapsed
    timed_out: bool


class EventBus:
    """Thread-backed publish/subscribe bus.

    Parameters
    ----------
    poll_interval
        Seconds the dispatch thread blocks on the queue before waking to
        check for an abort.  New events wake it immediately.
    """

    def __init__(self, poll_interval: float = 0.05, name: str = "ledger-dispatch") -> None:
        self._poll_interval = poll_interval
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._listeners: dict[str, dict[str | None, list[Listener]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._listeners_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._idle = threading.Condition()
        self._in_flight = 0
        self._thread: threading.Thread | None = None
        self._accepting = True
        self._abort = threading.Event()
        self._halt_report: HaltReport | None = None

        # Observability
        self._messages_processed = 0
        self._unrouted = 0
        self._discarded = 0
        self._error_counts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[DeadLetter] = []

    # -- Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the dispatch thread (idempotent)."""
        with self._state_lock:
            if not self._accepting:
                raise BusHaltedError("Cannot restart a halted bus")
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run, name=self._name, daemon=True,
            )
            self._thread.start()
        logger.debug("Dispatch thread %s started", self._name)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def halted(self) -> bool:
        return not self._accepting

    def halt_dispatch(self, timeout: float | None = 5.0) -> HaltReport:
        """Stop accepting events and drain the queue.

        Returns a ``HaltReport``; calling it again returns the first report.
        """
        with self._state_lock:
            if self._halt_report is not None:
                return self._halt_report
            self._accepting = False
            delivered_before = self._messages_processed + self._unrouted
            pending = self._queue.qsize()
            self._queue.put(_STOP)
            thread = self._thread

        if thread is None:
            # Never started: drain on the caller's thread.
            self._drain_inline()
            timed_out = False
        else:
            thread.join(timeout)
            timed_out = thread.is_alive()
            if timed_out:
                self._abort.set()
                thread.join(self._poll_interval * 10)

        undelivered = self._discarded
        if thread is not None and thread.is_alive():
            # Still stuck in a listener; whatever is queued will be discarded.
            undelivered += max(self._queue.qsize() - 1, 0)
        report = HaltReport(
            delivered=min(
                pending,
                self._messages_processed + self._unrouted - delivered_before,
            ),
            undelivered=undelivered,
            timed_out=timed_out,
        )
        if undelivered:
            logger.warning(
                "Dispatch halted after %.2fs timeout; %d events discarded",
                timeout or 0.0, undelivered,
            )
        else:
            logger.debug("Dispatch halted; %d pending events drained", pending)
        self._halt_report = report
        return report

    # -- Core API ----------------------------------------------------------

    def subscribe(self, kind: str, listener: Listener, *identifiers: str) -> None:
        """Register *listener* for *kind*, narrowed to *identifiers* if given."""
        keys: tuple[str | None, ...] = identifiers or (None,)
        with self._listeners_lock:
            by_source = self._listeners[kind]
            for key in keys:
                if listener not in by_source[key]:
                    by_source[key].append(listener)

    def unsubscribe(
        self,
        listener: Listener,
        kind: str | None = None,
        *identifiers: str,
    ) -> None:
        """Remove *listener* from *kind* (or every kind).

        With *identifiers*, only those subscriptions are removed.
        """
        with self._listeners_lock:
            kinds = [kind] if kind is not None else list(self._listeners)
            for k in kinds:
                by_source = self._listeners.get(k)
                if not by_source:
                    continue
                keys = [i for i in identifiers if i in by_source] if identifiers else list(by_source)
                for key in keys:
                    registered = by_source[key]
                    while listener in registered:
                        registered.remove(listener)
                    if not registered:
                        del by_source[key]

    def publish(self, event: Event) -> None:
        """Enqueue *event* for delivery.

        Raises
        ------
        BusHaltedError
            If ``halt_dispatch()`` has been called.
        """
        with self._state_lock:
            if not self._accepting:
                raise BusHaltedError(
                    f"Bus halted; rejected {event.kind} event {event.event_id}"
                )
            with self._idle:
                self._in_flight += 1
            self._queue.put(event)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every published event has been dispatched.

        Returns ``False`` if *timeout* elapsed first.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    # -- Dispatch ----------------------------------------------------------

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if item is _STOP:
                return
            if self._abort.is_set():
                self._discard(item)
                continue
            self._dispatch(item)

    def _drain_inline(self) -> None:
        while True:
            item = self._queue.get_nowait()
            if item is _STOP:
                return
            self._dispatch(item)

    def _discard(self, event: Event) -> None:
        self._discarded += 1
        self._done()

    def _done(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def _targets(self, event: Event) -> list[Listener]:
        with self._listeners_lock:
            by_source = self._listeners.get(event.kind)
            if not by_source:
                return []
            targets: list[Listener] = []
            if event.source_id is not None:
                targets.extend(by_source.get(event.source_id, ()))
            for listener in by_source.get(None, ()):
                if listener not in targets:
                    targets.append(listener)
            return targets

    def _dispatch(self, event: Event) -> None:
        try:
            targets = self._targets(event)
            if not targets:
                self._unrouted += 1
                logger.debug(
                    "No listeners for kind=%s source=%s", event.kind, event.source_id,
                )
                return
            for listener in targets:
                try:
                    listener(event)
                except Exception as exc:
                    self._error_counts[event.kind] += 1
                    self._dead_letters.append(
                        DeadLetter(
                            kind=event.kind,
                            source_id=event.source_id,
                            event_id=event.event_id,
                            error=str(exc),
                        )
                    )
                    logger.exception(
                        "Listener error on kind=%s source=%s", event.kind, event.source_id,
                    )
            self._messages_processed += 1
        finally:
            self._done()

    # -- Observability -----------------------------------------------------

    @property
    def pending(self) -> int:
        """Events published but not yet dispatched."""
        with self._idle:
            return self._in_flight

    @property
    def messages_processed(self) -> int:
        """Events delivered to at least one listener."""
        return self._messages_processed

    @property
    def unrouted_count(self) -> int:
        """Events dispatched with no matching listener."""
        return self._unrouted

    def get_error_counts(self) -> dict[str, int]:
        """Return per-kind listener error counts."""
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        """Read-only snapshot of listener failures."""
        return list(self._dead_letters)

    def clear_dead_letters(self) -> list[DeadLetter]:
        """Drain the dead-letter list and return all entries."""
        drained = self._dead_letters[:]
        self._dead_letters.clear()
        return drained
