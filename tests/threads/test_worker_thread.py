"""
Tests for the WorkerThread
"""
# Standard
from unittest import mock
import threading

# Third Party
import pytest

# Local
from nsclass.rate_limiter import ItemExponentialFailureRateLimiter
from nsclass.reconciler import ReconciliationResult
from nsclass.test_helpers.helpers import ConcurrencyRecorder, wait_for
from nsclass.threads import WorkerThread
from nsclass.work_queue import WorkQueue

## Helpers #####################################################################


def setup_worker(reconcile):
    queue = WorkQueue(ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1))
    worker = WorkerThread(
        queue, reconcile, threading.Event(), name="test_worker", poll_time=0.01
    )
    return queue, worker


## Process #####################################################################


def test_process_success_forgets():
    """Make sure a success clears the failure history"""
    queue, worker = setup_worker(lambda *_: ReconciliationResult())
    queue.add_rate_limited = mock.Mock(return_value=0)
    queue.forget = mock.Mock()
    worker.process("a")
    queue.forget.assert_called_once_with("a")
    queue.add_rate_limited.assert_not_called()
    queue.shutdown()


def test_process_failure_rate_limited():
    """Make sure a failure goes back through the rate limiter"""
    queue, worker = setup_worker(
        lambda *_: ReconciliationResult(requeue=True, exception=ValueError("oops"))
    )
    queue.add_rate_limited = mock.Mock(return_value=0.01)
    worker.process("a")
    queue.add_rate_limited.assert_called_once_with("a")
    queue.shutdown()


def test_process_requeue_after():
    """Make sure an explicit delay bypasses the rate limiter"""
    queue, worker = setup_worker(
        lambda *_: ReconciliationResult(requeue=True, requeue_after=3)
    )
    queue.add_after = mock.Mock()
    queue.add_rate_limited = mock.Mock()
    worker.process("a")
    queue.add_after.assert_called_once_with("a", 3)
    queue.add_rate_limited.assert_not_called()
    queue.shutdown()


def test_process_passes_cancel_event():
    reconcile = mock.Mock(return_value=ReconciliationResult())
    queue, worker = setup_worker(reconcile)
    worker.process("a")
    reconcile.assert_called_once_with("a", worker.cancel_event)
    queue.shutdown()


## Thread ######################################################################


@pytest.mark.timeout(5)
def test_worker_retries_until_success():
    """Make sure a failing key is retried and then left alone"""
    recorder = ConcurrencyRecorder(hold_time=0, fail_times=2)
    queue, worker = setup_worker(recorder)
    worker.start_thread()
    try:
        queue.add("a")
        assert wait_for(lambda: len(recorder.calls) == 3)
        assert wait_for(lambda: not queue.in_flight())
        assert queue.num_requeues("a") == 0
        assert len(queue) == 0
    finally:
        queue.shutdown()
        worker.join()
    assert recorder.calls == ["a", "a", "a"]


@pytest.mark.timeout(5)
def test_worker_stops_on_queue_shutdown():
    queue, worker = setup_worker(ConcurrencyRecorder(hold_time=0))
    worker.start_thread()
    queue.shutdown()
    worker.join()
    assert not worker.is_alive()
