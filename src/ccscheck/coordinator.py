from __future__ import annotations
import os
import queue
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, Iterable, Iterator, Optional, Union

from .extract import Read, ReadSourceError
from .filtering import AtomicCounter
from .processor import PipelineRecord
from .utils import _log, _log_err, chain_messages


class PipelineState(str, Enum):
    IDLE = "idle"
    PRODUCING = "producing"
    COMPLETING = "completing"
    ABORTING = "aborting"
    DRAINED = "drained"
    JOINED = "joined"


class QueueClosed(Exception):
    """No more items will arrive."""


_END = object()


class BoundedQueue:
    """
    Blocking bounded queue with an explicit closed state. pop() blocks while
    empty and raises QueueClosed once the queue is closed and drained.
    Close only after the last push has returned.
    """

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError("queue size must be >= 1")
        self._q: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock = Lock()
        self._closed = False
        self._exhausted = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item) -> None:
        if self._closed:
            raise QueueClosed("push on a closed queue")
        self._q.put(item)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._q.put(_END)

    def pop(self):
        if self._exhausted:
            raise QueueClosed("queue is closed and drained")
        item = self._q.get()
        if item is _END:
            self._exhausted = True
            raise QueueClosed("queue is closed and drained")
        return item

    def __iter__(self) -> Iterator:
        while True:
            try:
                yield self.pop()
            except QueueClosed:
                return


@dataclass(frozen=True)
class ReadFailure:
    read: Read
    error: Exception


ReadOutcome = Union[PipelineRecord, ReadFailure]


class PipelineCoordinator:
    """
    Runs process_fn over a read source with a pool of worker threads and
    hands finished records to a single consumer through a bounded queue.

        coord = PipelineCoordinator(source, processor, workers=8)
        for rec in coord.run():
            mux.consume(rec)
        coord.join()   # re-raises ReadSourceError, after the drain

    A read whose processing raises is logged and dropped. A failure while
    enumerating the source stops production; queued records still drain.
    """

    def __init__(
        self,
        source: Iterable[Read],
        process_fn: Callable[[Read], PipelineRecord],
        workers: Optional[int] = None,
        queue_size: int = 256,
        verbose: bool = True,
    ):
        self.workers = max(1, int(workers or os.cpu_count() or 1))
        self.verbose = verbose
        self._source = source
        self._process = process_fn
        self._queue = BoundedQueue(queue_size)

        self._cursor: Optional[Iterator[Read]] = None
        self._cursor_lock = Lock()
        self._abort = Event()
        self._error: Optional[ReadSourceError] = None
        self._state = PipelineState.IDLE
        self._state_lock = Lock()
        self._producer: Optional[Thread] = None

        self.failed = AtomicCounter()
        self.enqueued = AtomicCounter()
        self.delivered = 0  # consumer thread only; records the consumer returned from

    # ---------- state ----------
    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def error(self) -> Optional[ReadSourceError]:
        return self._error

    def _set_state(self, new: PipelineState, only_from: Optional[PipelineState] = None) -> None:
        with self._state_lock:
            if only_from is None or self._state == only_from:
                self._state = new

    # ---------- public ----------
    def run(self) -> Iterator[PipelineRecord]:
        """Start the workers and return the consuming iterator."""
        with self._state_lock:
            if self._state != PipelineState.IDLE:
                raise RuntimeError("pipeline already started")
            self._cursor = iter(self._source)
            self._state = PipelineState.PRODUCING
        self._producer = Thread(target=self._produce, name="ccscheck-producer", daemon=True)
        self._producer.start()
        return self._drain()

    def join(self) -> None:
        """Wait for production to finish. Call after the records were consumed."""
        if self._producer is None:
            raise RuntimeError("pipeline was never started")
        self._producer.join()
        self._set_state(PipelineState.JOINED)
        if self._error is not None:
            raise self._error

    # ---------- consumer ----------
    def _drain(self) -> Iterator[PipelineRecord]:
        finished = False
        try:
            for rec in self._queue:
                yield rec
                # counted only once the consumer came back for the next one
                self.delivered += 1
            finished = True
        finally:
            if not finished:
                # consumer gave up: stop producers and unblock any pending push
                self._abort.set()
                for _ in self._queue:
                    pass
            self._set_state(PipelineState.DRAINED)

    # ---------- producers ----------
    def _produce(self) -> None:
        try:
            with ThreadPoolExecutor(max_workers=self.workers,
                                    thread_name_prefix="ccscheck-worker") as ex:
                futs = [ex.submit(self._work) for _ in range(self.workers)]
                for f in as_completed(futs):
                    f.result()
        except Exception as e:
            self._fail(e)
        finally:
            self._set_state(PipelineState.COMPLETING, only_from=PipelineState.PRODUCING)
            _log(f"[pipeline] production finished: queued={self.enqueued.value} "
                 f"failed={self.failed.value}", self.verbose)
            self._queue.close()

    def _work(self) -> None:
        while not self._abort.is_set():
            try:
                with self._cursor_lock:
                    read = next(self._cursor)
            except StopIteration:
                return
            except Exception as e:
                self._fail(e)
                return

            outcome = self._attempt(read)
            if isinstance(outcome, ReadFailure):
                self.failed.add(1)
                _log_err(f"[pipeline] CCS READ FAIL: {outcome.read.read_id}: {outcome.error}")
                continue
            self._queue.push(outcome)
            self.enqueued.add(1)

    def _attempt(self, read: Read) -> ReadOutcome:
        try:
            return self._process(read)
        except Exception as e:
            return ReadFailure(read, e)

    def _fail(self, exc: Exception) -> None:
        if isinstance(exc, ReadSourceError):
            err = exc
        else:
            err = ReadSourceError(f"Could not read input: {exc}")
            err.__cause__ = exc
        with self._state_lock:
            first = self._error is None
            if first:
                self._error = err
            self._state = PipelineState.ABORTING
        self._abort.set()
        if first:
            msgs = chain_messages(err)
            _log_err(f"[pipeline] {msgs[0]}")
            for m in msgs[1:]:
                _log_err(f"[pipeline]   caused by: {m}")
