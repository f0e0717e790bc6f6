"""
The NamespaceClassReconciler is the control loop. Each call recomputes the full
desired state of one class from the cluster and corrects every member
namespace. Nothing is carried between calls.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set
import copy
import threading
import uuid

# First Party
import alog

# Local
from . import config, constants
from .exceptions import NotFoundError, ReconcileCanceledError, assert_cluster
from .membership import LabelMembershipIndex, MembershipIndex
from .object_store import ObjectStoreBase
from .synthesizer import CHILD_SYNTHESIZERS
from .utils import get_class_label, now_timestamp

log = alog.use_channel("RECONCL")

# Top level fields of each child kind that are copied from the desired object
# on every pass. Everything else on the live object is left alone.
MANAGED_FIELDS = {
    constants.NETWORK_POLICY_KIND: ["spec"],
    constants.SERVICE_ACCOUNT_KIND: [constants.AUTOMOUNT_TOKEN_FIELD],
}

# Child names by kind
CHILD_NAMES = {
    constants.NETWORK_POLICY_KIND: constants.NETWORK_POLICY_NAME,
    constants.SERVICE_ACCOUNT_KIND: constants.SERVICE_ACCOUNT_NAME,
}


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of one reconciliation of a class"""

    # Flag to control requeue of the class through the rate limiter
    requeue: bool = False
    # Explicit delay (seconds) for the requeue. None uses the rate limiter.
    requeue_after: Optional[float] = None
    # The exception that failed the reconciliation, if any
    exception: Optional[Exception] = None


class NamespaceClassReconciler:
    """Project a NamespaceClass onto the namespaces that carry its label"""

    def __init__(
        self,
        object_store: ObjectStoreBase,
        membership_index: Optional[MembershipIndex] = None,
        child_cleanup_policy: Optional[str] = None,
        clock: Callable[[], str] = now_timestamp,
    ):
        """
        Args:
            object_store:  ObjectStoreBase
                The store to read and write cluster state through
            membership_index:  Optional[MembershipIndex]
                Resolves member namespaces and child ownership. Defaults to
                the label backed index over the object store.
            child_cleanup_policy:  Optional[str]
                orphan or cascade. Defaults to the library config value.
            clock:  Callable[[], str]
                Source of the lastAppliedTime timestamp
        """
        self.object_store = object_store
        self.membership_index = membership_index or LabelMembershipIndex(object_store)
        self.child_cleanup_policy = child_cleanup_policy or config.child_cleanup_policy
        self.clock = clock
        assert self.child_cleanup_policy in [
            constants.CLEANUP_POLICY_ORPHAN,
            constants.CLEANUP_POLICY_CASCADE,
        ], f"Unknown child_cleanup_policy {self.child_cleanup_policy}"

    @property
    def cascade(self) -> bool:
        return self.child_cleanup_policy == constants.CLEANUP_POLICY_CASCADE

    ## Reconciliation ##########################################################

    @alog.logged_function(log.debug)
    @alog.timed_function(log.debug, "Reconcile finished in: ")
    def reconcile(
        self,
        class_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """Run one full pass for a class. The general path is:

            1. Fetch the class. A missing class ends the pass.
            2. Handle finalization (cascade policy only)
            3. List the member namespaces
            4. Create or overwrite each desired child in each member
            5. Prune children that are no longer wanted (cascade policy only)
            6. Record the generation that was applied on the class status

        Args:
            class_name:  str
                The name of the class to reconcile
            cancel_event:  Optional[threading.Event]
                When set, the pass stops before its next store call

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile. Failures are raised, not returned.

        Raises:
            ClusterError (and subclasses) on store failures
            ReconcileCanceledError if the pass was canceled
        """
        cancel_event = cancel_event or threading.Event()
        log_extra = {"class_name": class_name}

        self._check_canceled(cancel_event)
        success, ns_class = self.object_store.get_object_current_state(
            constants.CLASS_KIND, class_name
        )
        assert_cluster(success, f"Failed to fetch class {class_name}")
        if ns_class is None:
            log.debug("Class %s not found. Nothing to do", class_name, extra=log_extra)
            return ReconciliationResult(requeue=False)

        metadata = ns_class.get("metadata", {})
        if metadata.get("deletionTimestamp"):
            self._finalize(ns_class, cancel_event)
            return ReconciliationResult(requeue=False)

        if self.cascade and constants.CLASS_FINALIZER_NAME not in (
            metadata.get("finalizers") or []
        ):
            ns_class = self._add_finalizer(ns_class, cancel_event)

        members = self.membership_index.list_members(class_name)
        member_names = {namespace["metadata"]["name"] for namespace in members}
        log.debug2(
            "Class %s has %d member namespaces", class_name, len(member_names), extra=log_extra
        )

        for namespace in sorted(member_names):
            for kind, synthesizer in CHILD_SYNTHESIZERS.items():
                self._check_canceled(cancel_event)
                desired = synthesizer(ns_class, namespace, self.object_store.registry)
                if desired is not None:
                    self._apply_child(class_name, desired, cancel_event)
                elif self.cascade:
                    self._prune_child(class_name, kind, namespace, cancel_event)

        if self.cascade:
            self._prune_non_members(class_name, member_names, cancel_event)

        self._update_status(ns_class, cancel_event)
        log.info("Reconciled class %s", class_name, extra=log_extra)
        return ReconciliationResult(requeue=False)

    def safe_reconcile(
        self,
        class_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """This function calls out to reconcile but catches any errors thrown.
        A failed reconciliation comes back with requeue set so the caller can
        retry it through the rate limiter.
        """
        reconciliation_id = str(uuid.uuid4())
        log_extra = {"class_name": class_name, "reconciliation_id": reconciliation_id}
        try:
            return self.reconcile(class_name, cancel_event)
        except ReconcileCanceledError as exc:
            log.info("Reconcile of %s canceled", class_name, extra=log_extra)
            return ReconciliationResult(requeue=True, exception=exc)
        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning(
                "Handling caught error in reconcile of %s: %s",
                class_name,
                exc,
                exc_info=True,
                extra=log_extra,
            )
            return ReconciliationResult(requeue=True, exception=exc)

    ## Children ################################################################

    def _apply_child(
        self,
        class_name: str,
        desired: dict,
        cancel_event: threading.Event,
    ):
        """Create the child if missing, otherwise fix its label and overwrite
        its managed fields with a compare-and-swap update
        """
        kind = desired["kind"]
        name = desired["metadata"]["name"]
        namespace = desired["metadata"]["namespace"]

        self._check_canceled(cancel_event)
        success, current = self.object_store.get_object_current_state(
            kind, name, namespace
        )
        assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")

        try:
            if current is None:
                log.debug2("Creating %s in %s", kind, namespace, extra={"resource": desired})
                self._check_canceled(cancel_event)
                self.object_store.create(desired)
                return

            updated = copy.deepcopy(current)
            labels = updated.setdefault("metadata", {}).get("labels") or {}
            if get_class_label(updated) != class_name:
                log.debug2(
                    "Correcting stale class label on %s/%s: %s",
                    namespace,
                    name,
                    labels.get(constants.CLASS_LABEL_NAME),
                )
                labels[constants.CLASS_LABEL_NAME] = class_name
            updated["metadata"]["labels"] = labels

            for field_name in MANAGED_FIELDS[kind]:
                if field_name in desired:
                    updated[field_name] = copy.deepcopy(desired[field_name])
                else:
                    updated.pop(field_name, None)

            log.debug3("Updating %s in %s", kind, namespace, extra={"resource": updated})
            self._check_canceled(cancel_event)
            self.object_store.update(updated)

        # The namespace went away mid-pass. Its next trigger (if any) comes
        # from the namespace watch.
        except NotFoundError as err:
            log.debug("Skipping %s in vanished namespace %s: %s", kind, namespace, err)

    def _prune_child(
        self,
        class_name: str,
        kind: str,
        namespace: str,
        cancel_event: threading.Event,
    ):
        """Delete the child of an unset template if this class owns it"""
        name = CHILD_NAMES[kind]
        self._check_canceled(cancel_event)
        success, current = self.object_store.get_object_current_state(
            kind, name, namespace
        )
        assert_cluster(success, f"Failed to fetch {kind} {namespace}/{name}")
        if current is not None and self.membership_index.owner_of(current) == class_name:
            log.debug("Pruning %s %s/%s with unset template", kind, namespace, name)
            self._check_canceled(cancel_event)
            self.object_store.delete(kind, name, namespace)

    def _prune_non_members(
        self,
        class_name: str,
        member_names: Set[str],
        cancel_event: threading.Event,
    ):
        """Delete children owned by the class outside its member namespaces"""
        for child in self._owned_children(class_name, cancel_event):
            namespace = child["metadata"].get("namespace")
            if namespace in member_names:
                continue
            log.debug(
                "Pruning %s %s/%s from former member",
                child["kind"],
                namespace,
                child["metadata"]["name"],
            )
            self._check_canceled(cancel_event)
            self.object_store.delete(child["kind"], child["metadata"]["name"], namespace)

    def _owned_children(
        self,
        class_name: str,
        cancel_event: threading.Event,
    ) -> List[dict]:
        children = []
        for kind in CHILD_SYNTHESIZERS:
            self._check_canceled(cancel_event)
            for child in self.membership_index.list_owned(class_name, kind):
                # Only the fixed names are generated. Other labeled objects
                # are not ours to delete.
                if child["metadata"].get("name") == CHILD_NAMES[kind]:
                    children.append(child)
        return children

    ## Finalizers ##############################################################

    def _add_finalizer(self, ns_class: dict, cancel_event: threading.Event) -> dict:
        updated = copy.deepcopy(ns_class)
        finalizers = updated["metadata"].get("finalizers") or []
        updated["metadata"]["finalizers"] = finalizers + [constants.CLASS_FINALIZER_NAME]
        log.debug("Adding finalizer to class %s", ns_class["metadata"]["name"])
        self._check_canceled(cancel_event)
        return self.object_store.update(updated)

    def _finalize(self, ns_class: dict, cancel_event: threading.Event):
        """Handle a class that is being deleted. Children are only removed
        under the cascade policy. The finalizer is dropped under either
        policy so a policy change never blocks deletion.
        """
        class_name = ns_class["metadata"]["name"]
        finalizers = ns_class["metadata"].get("finalizers") or []
        if constants.CLASS_FINALIZER_NAME not in finalizers:
            log.debug("Class %s is being deleted. Nothing to do", class_name)
            return

        if self.cascade:
            for child in self._owned_children(class_name, cancel_event):
                log.debug(
                    "Deleting %s %s/%s of deleted class %s",
                    child["kind"],
                    child["metadata"].get("namespace"),
                    child["metadata"]["name"],
                    class_name,
                )
                self._check_canceled(cancel_event)
                self.object_store.delete(
                    child["kind"],
                    child["metadata"]["name"],
                    child["metadata"].get("namespace"),
                )

        updated = copy.deepcopy(ns_class)
        updated["metadata"]["finalizers"] = [
            finalizer
            for finalizer in finalizers
            if finalizer != constants.CLASS_FINALIZER_NAME
        ]
        log.debug("Removing finalizer from class %s", class_name)
        self._check_canceled(cancel_event)
        try:
            self.object_store.update(updated)
        except NotFoundError:
            log.debug("Class %s already gone", class_name)

    ## Status ##################################################################

    def _update_status(self, ns_class: dict, cancel_event: threading.Event):
        """Record the applied generation. The observed generation never moves
        backwards.
        """
        class_name = ns_class["metadata"]["name"]
        generation = ns_class["metadata"].get("generation") or 0
        previous = (ns_class.get("status") or {}).get(constants.OBSERVED_GENERATION_FIELD)
        status_patch: Dict[str, object] = {
            constants.OBSERVED_GENERATION_FIELD: max(previous or 0, generation),
            constants.LAST_APPLIED_TIME_FIELD: self.clock(),
        }
        self._check_canceled(cancel_event)
        try:
            self.object_store.patch_status(
                constants.CLASS_KIND, class_name, None, status_patch
            )
        except NotFoundError:
            log.debug("Class %s deleted before status update", class_name)

    ## Helpers #################################################################

    @staticmethod
    def _check_canceled(cancel_event: threading.Event):
        if cancel_event.is_set():
            raise ReconcileCanceledError("Reconciliation canceled")
