"""Fixed pool of worker threads driven by a single coordinator.

Each worker owns an inbound queue; all workers answer on one shared
response queue. Responses carry the worker's ``i_thread`` so the
coordinator can correlate them. Two dispatch patterns are supported:
``broadcast`` (same message to every worker, one answer each) and
``task_queue`` (a lazy sequence of tasks handed out one at a time to idle workers,
answers reordered by task index).
"""

from __future__ import annotations
import logging
import os
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

from mocasa.errors import WorkerError

logger = logging.getLogger(__name__)


class Shutdown:
    """Sentinel asking a worker to leave its receive loop."""

    def __repr__(self) -> str:
        return "SHUTDOWN"


SHUTDOWN = Shutdown()


@dataclass
class WorkerFailure:
    i_thread: int
    exc: Optional[BaseException]


class WorkerLauncher(Protocol):
    def launch(self, sender: "queue.Queue", receiver: "queue.Queue", i_thread: int) -> None:
        ...


class TaskQueueObserver:
    """Callbacks around a task queue run. The base class ignores all of them."""

    def going_to_start_queue(self) -> None:
        pass

    def going_to_send(self, message: Any, i_task: int, i_thread: int) -> None:
        pass

    def have_received(self, response: Any, i_task: int, i_thread: int) -> None:
        pass

    def nothing_more_to_send(self) -> None:
        pass

    def completed_queue(self) -> None:
        pass


def default_n_threads() -> int:
    return max(os.cpu_count() or 1, 3)


class WorkerPool:
    def __init__(self, launcher: WorkerLauncher, n_threads: int, name: str = "mocasa") -> None:
        if n_threads < 1:
            raise ValueError("Need at least one worker thread.")
        self.n_threads = n_threads
        self._responses: "queue.Queue" = queue.Queue()
        self._inboxes: List["queue.Queue"] = [queue.Queue() for _ in range(n_threads)]
        self._closing = threading.Event()
        self._closed = False
        self._failed: Dict[int, Optional[BaseException]] = {}
        self._threads: List[threading.Thread] = []
        for i_thread in range(n_threads):
            thread = threading.Thread(
                target=self._run_worker,
                args=(launcher, i_thread),
                name=f"{name}-worker-{i_thread}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.debug("Started %d worker threads", n_threads)

    def _run_worker(self, launcher: WorkerLauncher, i_thread: int) -> None:
        try:
            launcher.launch(self._responses, self._inboxes[i_thread], i_thread)
        except Exception as exc:
            logger.exception("Worker %d failed", i_thread)
            self._responses.put(WorkerFailure(i_thread, exc))
        else:
            if not self._closing.is_set():
                self._responses.put(WorkerFailure(i_thread, None))

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def send(self, i_thread: int, message: Any) -> None:
        if i_thread in self._failed or not self._threads[i_thread].is_alive():
            raise WorkerError(f"Could not reach worker {i_thread}.")
        self._inboxes[i_thread].put(message)

    def receive(self) -> Any:
        response = self._responses.get()
        if isinstance(response, WorkerFailure):
            self._failed[response.i_thread] = response.exc
            if response.exc is None:
                raise WorkerError(f"Worker {response.i_thread} stopped unexpectedly.")
            raise WorkerError(f"Worker {response.i_thread} crashed: {response.exc!r}") from response.exc
        i_thread = getattr(response, "i_thread", None)
        if not isinstance(i_thread, int) or not 0 <= i_thread < self.n_threads:
            raise WorkerError(f"Response from unknown worker: {response!r}")
        return response

    def send_to_all(self, message: Any) -> None:
        """Send the message to every worker without waiting for answers."""
        for i_thread in range(self.n_threads):
            self.send(i_thread, message)

    def broadcast(self, message: Any) -> List[Any]:
        """Send the message to every worker and collect one response from each, indexed by worker."""
        self.send_to_all(message)
        responses: List[Any] = [None] * self.n_threads
        received = [False] * self.n_threads
        for _ in range(self.n_threads):
            response = self.receive()
            if received[response.i_thread]:
                raise WorkerError(f"Duplicate response from worker {response.i_thread}.")
            received[response.i_thread] = True
            responses[response.i_thread] = response
        return responses

    def task_queue(self, messages: Iterable[Any], observer: Optional[TaskQueueObserver] = None) -> List[Any]:
        """Hand out tasks to idle workers, at most one outstanding per worker.

        ``messages`` is consumed lazily, one task each time a worker is free.
        Returns the responses in task order.
        """
        observer = observer or TaskQueueObserver()
        tasks: Iterator[Any] = iter(messages)
        responses: List[Any] = []
        in_flight: Dict[int, int] = {}
        exhausted = False
        observer.going_to_start_queue()

        def send_next(i_thread: int) -> None:
            nonlocal exhausted
            try:
                message = next(tasks)
            except StopIteration:
                exhausted = True
                observer.nothing_more_to_send()
                return
            i_task = len(responses)
            responses.append(None)
            observer.going_to_send(message, i_task, i_thread)
            self.send(i_thread, message)
            in_flight[i_thread] = i_task

        for i_thread in range(self.n_threads):
            if exhausted:
                break
            send_next(i_thread)
        while in_flight:
            response = self.receive()
            i_thread = response.i_thread
            if i_thread not in in_flight:
                raise WorkerError(f"Unexpected response from worker {i_thread}, which has no task.")
            i_task = in_flight.pop(i_thread)
            responses[i_task] = response
            observer.have_received(response, i_task, i_thread)
            if not exhausted:
                send_next(i_thread)
        observer.completed_queue()
        return responses

    def close(self) -> None:
        """Ask every worker to shut down and join them. Failures are logged, not raised."""
        if self._closed:
            return
        self._closed = True
        self._closing.set()
        while True:
            try:
                pending = self._responses.get_nowait()
            except queue.Empty:
                break
            if isinstance(pending, WorkerFailure):
                self._failed[pending.i_thread] = pending.exc
        for i_thread, thread in enumerate(self._threads):
            if thread.is_alive() and i_thread not in self._failed:
                self._inboxes[i_thread].put(SHUTDOWN)
                logger.debug("Sent to worker %d request to shut down.", i_thread)
            else:
                logger.warning("Could not reach worker %d.", i_thread)
        for i_thread, thread in enumerate(self._threads):
            thread.join()
            if i_thread in self._failed:
                logger.warning("Worker %d has crashed.", i_thread)
            else:
                logger.debug("Worker %d has shut down.", i_thread)
