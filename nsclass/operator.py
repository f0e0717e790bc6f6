"""
The Operator wires the runtime together: one WatchThread per watched kind
feeds class names into the WorkQueue, and a fixed pool of WorkerThreads drains
it through the reconciler.
"""

# Standard
from typing import Callable, List, Optional
import threading
import time

# First Party
import alog

# Local
from . import config, constants
from .mapper import TriggerMapper
from .membership import LabelMembershipIndex, MembershipIndex
from .object_store import ObjectStoreBase
from .rate_limiter import RateLimiterBase, default_rate_limiter
from .reconciler import NamespaceClassReconciler, ReconciliationResult
from .threads import TimerThread, WatchThread, WorkerThread
from .work_queue import WorkQueue

log = alog.use_channel("OPRATR")

# Every kind whose changes can trigger a reconcile
WATCHED_KINDS = [
    constants.CLASS_KIND,
    constants.NAMESPACE_KIND,
    constants.NETWORK_POLICY_KIND,
    constants.SERVICE_ACCOUNT_KIND,
]


class Operator:  # pylint: disable=too-many-instance-attributes
    """The running operator for NamespaceClass objects"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        object_store: ObjectStoreBase,
        reconcile: Optional[Callable[[str, threading.Event], ReconciliationResult]] = None,
        membership_index: Optional[MembershipIndex] = None,
        rate_limiter: Optional[RateLimiterBase] = None,
        max_concurrent_reconciles: Optional[int] = None,
        watched_kinds: Optional[List[str]] = None,
    ):
        """
        Args:
            object_store:  ObjectStoreBase
                The store to watch, read and write
            reconcile:  Optional[Callable[[str, threading.Event], ReconciliationResult]]
                The reconcile function run by the workers. Must not raise.
                Defaults to NamespaceClassReconciler.safe_reconcile.
            membership_index:  Optional[MembershipIndex]
                Resolves ownership for the trigger mapper and the reconciler
            rate_limiter:  Optional[RateLimiterBase]
                Retry delay strategy. Defaults to the configured composite.
            max_concurrent_reconciles:  Optional[int]
                Size of the worker pool. Defaults to the library config.
            watched_kinds:  Optional[List[str]]
                Kinds to watch. Defaults to the class, namespace and child
                kinds.
        """
        self.object_store = object_store
        self.membership_index = membership_index or LabelMembershipIndex(object_store)
        if reconcile is None:
            reconcile = NamespaceClassReconciler(
                object_store, membership_index=self.membership_index
            ).safe_reconcile
        self.reconcile = reconcile
        self.mapper = TriggerMapper(self.membership_index)
        self.max_concurrent_reconciles = (
            max_concurrent_reconciles or config.max_concurrent_reconciles
        )
        self.watched_kinds = (
            watched_kinds if watched_kinds is not None else WATCHED_KINDS
        )

        self.timer_thread = TimerThread()
        self.work_queue = WorkQueue(
            rate_limiter or default_rate_limiter(config.rate_limiter),
            timer_thread=self.timer_thread,
        )

        # Shared cancellation token for in-flight reconciliations
        self.cancel_event = threading.Event()

        self.watch_threads = [
            WatchThread(
                object_store=object_store,
                kind=kind,
                event_filter=self.mapper.has_membership_label,
                mapper=self.mapper.map_to_requests,
                enqueue=self.work_queue.add,
                watch_retry_count=config.watch_retry_count,
                watch_retry_delay=config.watch_retry_delay,
            )
            for kind in self.watched_kinds
        ]
        self.worker_threads = [
            WorkerThread(
                work_queue=self.work_queue,
                reconcile=self.reconcile,
                cancel_event=self.cancel_event,
                name=f"worker_thread_{i}",
                poll_time=config.shutdown_poll_time,
            )
            for i in range(self.max_concurrent_reconciles)
        ]
        self._started = False

    ## Lifecycle ###############################################################

    def start(self):
        """Start the timer, the workers and then the watches"""
        assert not self._started, "Operator already started"
        self._started = True
        log.info(
            "Starting operator with %d workers", self.max_concurrent_reconciles
        )
        self.timer_thread.start_thread()
        for worker in self.worker_threads:
            worker.start_thread()
        self._enqueue_existing_classes()
        for watch in self.watch_threads:
            watch.start_thread()

    def stop(self, timeout: Optional[float] = None):
        """Stop watching, cancel in-flight reconciliations and wait for the
        workers to finish

        Args:
            timeout:  Optional[float]
                Max seconds to wait for each thread to exit
        """
        log.info("Stopping operator")
        for watch in self.watch_threads:
            watch.stop_thread()
        self.cancel_event.set()
        self.work_queue.shutdown()
        for worker in self.worker_threads:
            worker.stop_thread()

        for thread in self.worker_threads + self.watch_threads + [self.timer_thread]:
            if thread.is_alive():
                thread.join(timeout)
        log.info("Operator stopped")

    def enqueue(self, class_name: str):
        """Request a reconcile of a class outside of the watches"""
        self.work_queue.add(class_name)

    ## Introspection ###########################################################

    def is_idle(self) -> bool:
        """True if nothing is queued, running or scheduled"""
        return (
            len(self.work_queue) == 0
            and not self.work_queue.in_flight()
            and self.timer_thread.pending_count() == 0
        )

    def wait_for_idle(self, timeout: float, settle_time: float = 0.05) -> bool:
        """Block until the operator stays idle for settle_time seconds

        Returns:
            idle:  bool
                False if the timeout passed first
        """
        deadline = time.monotonic() + timeout
        idle_since = None
        while time.monotonic() < deadline:
            if self.is_idle():
                idle_since = idle_since or time.monotonic()
                if time.monotonic() - idle_since >= settle_time:
                    return True
            else:
                idle_since = None
            time.sleep(config.shutdown_poll_time / 10)
        return False

    def watches_failed(self) -> bool:
        """True if any watch gave up after exhausting its retries"""
        return any(watch.failed for watch in self.watch_threads)

    ## Implementation Details ##################################################

    def _enqueue_existing_classes(self):
        """Queue every class that exists at startup so the first pass does not
        depend on when each watch delivers its initial list
        """
        if constants.CLASS_KIND not in self.watched_kinds:
            return
        success, classes = self.object_store.filter_objects_current_state(
            constants.CLASS_KIND
        )
        if not success:
            log.warning("Failed to list classes at startup. Relying on the watch")
            return
        log.debug("Queuing %d existing classes", len(classes))
        for ns_class in classes:
            self.work_queue.add(ns_class["metadata"]["name"])
