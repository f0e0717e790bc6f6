"""
The WorkerThread pulls class names from the WorkQueue and runs one
reconciliation at a time
"""

# Standard
from typing import Callable, Optional
import threading

# First Party
import alog

# Local
from ..reconciler import ReconciliationResult
from .base import ThreadBase

log = alog.use_channel("WRKTHRD")

# Forward declaration of WorkQueue
WORK_QUEUE_TYPE = "WorkQueue"

ReconcileFunction = Callable[[str, threading.Event], ReconciliationResult]


class WorkerThread(ThreadBase):
    """One slot of the worker pool. The pool size bounds how many
    reconciliations run at once, and the queue guarantees that no two
    workers ever hold the same class.
    """

    def __init__(
        self,
        work_queue: WORK_QUEUE_TYPE,
        reconcile: ReconcileFunction,
        cancel_event: threading.Event,
        name: Optional[str] = None,
        poll_time: float = 0.1,
    ):
        """
        Args:
            work_queue:  WorkQueue
                The queue to take class names from
            reconcile:  ReconcileFunction
                Called with (class_name, cancel_event). Must not raise.
            cancel_event:  threading.Event
                Shared cancellation token handed to every reconciliation
            name:  Optional[str]
                The name of the thread
            poll_time:  float
                Seconds between checks for shutdown while the queue is empty
        """
        super().__init__(name=name or "worker_thread", daemon=True)
        self.work_queue = work_queue
        self.reconcile = reconcile
        self.cancel_event = cancel_event
        self.poll_time = poll_time

    def run(self):
        """Take keys until shutdown. Each key is released with done() no
        matter how its reconciliation ended.
        """
        while not self.should_stop():
            class_name = self.work_queue.get(timeout=self.poll_time)
            if class_name is None:
                if self.work_queue.is_shutting_down():
                    log.debug2("Queue shut down. Stopping %s", self.name)
                    return
                continue

            try:
                self.process(class_name)
            finally:
                self.work_queue.done(class_name)

    def process(self, class_name: str):
        """Run one reconciliation and feed the outcome back into the queue"""
        log.debug2("%s reconciling %s", self.name, class_name)
        result = self.reconcile(class_name, self.cancel_event)
        if not result.requeue:
            self.work_queue.forget(class_name)
            return

        if result.requeue_after is not None:
            log.debug("Requeuing %s in %ss", class_name, result.requeue_after)
            self.work_queue.add_after(class_name, result.requeue_after)
        else:
            delay = self.work_queue.add_rate_limited(class_name)
            log.info(
                "Reconcile of %s failed (%s). Retrying in %ss",
                class_name,
                result.exception,
                delay,
                extra={"class_name": class_name},
            )
