"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os
import threading
import time

# First Party
import alog

# Local
from nsclass import constants
from nsclass.config import library_config as config_detail_dict
from nsclass.object_store import DryRunObjectStore
from nsclass.reconciler import ReconciliationResult
from nsclass.registry import default_registry

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_CLASS_NAME = "test-class"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"
FIXED_TIMESTAMP = "2024-01-01T00:00:00Z"

DEFAULT_NETWORK_POLICY_TEMPLATE = {
    "podSelector": {},
    "policyTypes": ["Ingress"],
    "ingress": [
        {"from": [{"namespaceSelector": {"matchLabels": {"team": "admin"}}}]}
    ],
}


## Manifests ###################################################################


def make_class(
    name: str = TEST_CLASS_NAME,
    network_policy_template: Optional[dict] = None,
    service_account_template: Optional[dict] = None,
    **kwargs,
) -> dict:
    """Build a NamespaceClass manifest. Templates left as None are omitted."""
    spec = {}
    if network_policy_template is not None:
        spec[constants.NETWORK_POLICY_TEMPLATE_FIELD] = copy.deepcopy(
            network_policy_template
        )
    if service_account_template is not None:
        spec[constants.SERVICE_ACCOUNT_TEMPLATE_FIELD] = copy.deepcopy(
            service_account_template
        )
    manifest = {
        "apiVersion": constants.CLASS_API_VERSION,
        "kind": constants.CLASS_KIND,
        "metadata": {"name": name},
        "spec": spec,
    }
    manifest.update(kwargs)
    return manifest


def make_namespace(name: str = TEST_NAMESPACE, class_name: Optional[str] = None, **labels) -> dict:
    """Build a Namespace manifest, optionally labeled as a member of a class"""
    if class_name is not None:
        labels[constants.CLASS_LABEL_NAME] = class_name
    metadata = {"name": name}
    if labels:
        metadata["labels"] = labels
    return {"apiVersion": "v1", "kind": constants.NAMESPACE_KIND, "metadata": metadata}


def make_network_policy(
    namespace: str = TEST_NAMESPACE,
    class_name: Optional[str] = TEST_CLASS_NAME,
    spec: Optional[dict] = None,
    name: str = constants.NETWORK_POLICY_NAME,
) -> dict:
    metadata = {"name": name, "namespace": namespace}
    if class_name is not None:
        metadata["labels"] = {constants.CLASS_LABEL_NAME: class_name}
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": constants.NETWORK_POLICY_KIND,
        "metadata": metadata,
        "spec": copy.deepcopy(spec if spec is not None else DEFAULT_NETWORK_POLICY_TEMPLATE),
    }


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Failure Injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    """Wrap a method so that it fails according to fail_flag. The flag can be
    an exception (instance or type) to raise, a callable whose non-None return
    replaces the result, or a truthy value to return failure_return.
    """
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockObjectStore(DryRunObjectStore):
    """The MockObjectStore wraps a standard DryRunObjectStore so every
    operation is a mock.Mock (for call counting) that can be configured to
    simulate failures.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        resources: Optional[List[dict]] = None,
        get_state_fail=False,
        filter_fail=False,
        create_fail=False,
        update_fail=False,
        patch_status_fail=False,
        delete_fail=False,
        registry=None,
    ):
        super().__init__(registry or default_registry(), resources=resources)
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.create = mock.Mock(
            side_effect=get_failable_method(create_fail, super().create)
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(update_fail, super().update)
        )
        self.patch_status = mock.Mock(
            side_effect=get_failable_method(patch_status_fail, super().patch_status)
        )
        self.delete = mock.Mock(
            side_effect=get_failable_method(delete_fail, super().delete)
        )

    def get_obj(self, kind, name, namespace=None):
        return DryRunObjectStore.get_object_current_state(self, kind, name, namespace)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def reset_counts(self):
        """Reset the call records of every mocked operation"""
        for method in [
            self.get_object_current_state,
            self.filter_objects_current_state,
            self.create,
            self.update,
            self.patch_status,
            self.delete,
        ]:
            method.reset_mock()


## Concurrency #################################################################


class ConcurrencyRecorder:
    """Reconcile function that records how many calls overlap. Each call
    sleeps for hold_time so overlapping calls are observable.
    """

    def __init__(self, hold_time: float = 0.05, fail_times: int = 0):
        self.hold_time = hold_time
        self.fail_times = fail_times
        self.lock = threading.Lock()
        self.running = 0
        self.max_running = 0
        self.calls: List[str] = []
        self.running_keys = set()
        self.overlapping_keys = []

    def __call__(self, class_name: str, cancel_event: threading.Event) -> ReconciliationResult:
        with self.lock:
            if class_name in self.running_keys:
                self.overlapping_keys.append(class_name)
            self.running_keys.add(class_name)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.calls.append(class_name)
            should_fail = self.calls.count(class_name) <= self.fail_times
        try:
            cancel_event.wait(self.hold_time)
        finally:
            with self.lock:
                self.running -= 1
                self.running_keys.discard(class_name)
        if should_fail:
            return ReconciliationResult(requeue=True, exception=RuntimeError("Failed!"))
        return ReconciliationResult(requeue=False)


def wait_for(condition, timeout: float = 5.0, poll_time: float = 0.01) -> bool:
    """Poll until the condition is true or the timeout passes"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(poll_time)
    return condition()
