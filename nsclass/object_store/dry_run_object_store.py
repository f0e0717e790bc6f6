"""
The DryRunObjectStore implements the ObjectStore interface but does not
actually interact with the cluster and instead holds the state of the cluster
in a local map. It follows the api server's semantics closely enough to back
dry-run mode and the unit tests: resource versions are compare-and-swap
tokens, writes that change nothing keep the current version, and generation
only moves when the non-metadata content changes.
"""

# Standard
from datetime import datetime, timezone
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import re
import threading
import uuid

# First Party
import alog

# Local
from .. import constants
from ..exceptions import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    NotFoundError,
)
from ..managed_object import ManagedObject
from ..registry import ResourceRegistry
from ..utils import merge_configs
from .base import ObjectStoreBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# Metadata fields owned by the server. These are never taken from the client
# and never count as a change.
SERVER_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "uid",
    "creationTimestamp",
]

# Seconds between checks of the stop event while a watch is idle
WATCH_POLL_TIME = 0.1

ObjectKey = Tuple[str, Optional[str], str]
WatchCallback = Callable[[KubeEventType, dict], None]


class DryRunObjectStore(ObjectStoreBase):
    """
    Object store which doesn't actually talk to a cluster!
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        resources: Optional[List[dict]] = None,
    ):
        """
        Args:
            registry:  ResourceRegistry
                Metadata for the kinds this store may hold
            resources:  Optional[List[dict]]
                Objects to seed the store with. Namespaces are created first.
        """
        super().__init__(registry)
        self._lock = RLock()
        self._cluster_content: Dict[ObjectKey, dict] = {}
        self._watches: Dict[str, List[WatchCallback]] = {}
        self._resource_versions = itertools.count(1)

        # Objects removed under the lock whose DELETED events have not been
        # delivered yet. Callbacks never run with the lock held.
        self._pending_deletes: List[dict] = []

        seed = sorted(
            resources or [],
            key=lambda res: res.get("kind") != constants.NAMESPACE_KIND,
        )
        for resource in seed:
            self.create(resource)

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None):
        log.debug2("DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace)
        key = self._key(kind, name, namespace)
        with self._lock:
            current = self._cluster_content.get(key)
            return True, copy.deepcopy(current)

    def filter_objects_current_state(self, kind, namespace=None, label_selector=None):
        log.debug2("DRY RUN filter_objects_current_state of [%s] in [%s] with [%s]", kind, namespace, label_selector)
        requirements = parse_label_selector(label_selector or "")
        matches = []
        with self._lock:
            for (obj_kind, obj_namespace, _), resource in sorted(
                self._cluster_content.items(), key=lambda item: str(item[0])
            ):
                if obj_kind != kind:
                    continue
                if namespace is not None and obj_namespace != namespace:
                    continue
                labels = resource.get("metadata", {}).get("labels") or {}
                if not match_labels(labels, requirements):
                    continue
                matches.append(copy.deepcopy(resource))
        log.debug3("Found %d matches", len(matches))
        return True, matches

    def create(self, resource_definition):
        kind, name, namespace = self._identifiers(resource_definition)
        log.debug("DRY RUN create [%s/%s] in [%s]", kind, name, namespace)
        key = self._key(kind, name, namespace)
        with self._lock:
            if key in self._cluster_content:
                raise AlreadyExistsError(f"{kind} {name} already exists in {namespace}")
            if namespace is not None and not self._namespace_exists(namespace):
                raise NotFoundError(f"Namespace {namespace} not found")

            resource = copy.deepcopy(resource_definition)
            metadata = resource.setdefault("metadata", {})
            for field_name in SERVER_METADATA_FIELDS:
                metadata.pop(field_name, None)
            if self.resource_type(kind).has_status:
                resource.pop("status", None)
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = _now()
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_resource_version()
            self._cluster_content[key] = resource
            stored = copy.deepcopy(resource)

        self._notify(KubeEventType.ADDED, stored)
        return copy.deepcopy(stored)

    def update(self, resource_definition):
        kind, name, namespace = self._identifiers(resource_definition)
        log.debug("DRY RUN update [%s/%s] in [%s]", kind, name, namespace)
        key = self._key(kind, name, namespace)
        with self._lock:
            current = self._cluster_content.get(key)
            if current is None:
                raise NotFoundError(f"{kind} {name} not found in {namespace}")

            expected_version = resource_definition.get("metadata", {}).get("resourceVersion")
            current_version = current["metadata"]["resourceVersion"]
            if expected_version and expected_version != current_version:
                raise ConflictError(
                    f"{kind} {name} resourceVersion {expected_version} is stale "
                    f"(current {current_version})"
                )

            resource = copy.deepcopy(resource_definition)
            metadata = resource.setdefault("metadata", {})
            for field_name in SERVER_METADATA_FIELDS:
                metadata[field_name] = current["metadata"].get(field_name)
            if self.resource_type(kind).has_status:
                resource.pop("status", None)
                if "status" in current:
                    resource["status"] = copy.deepcopy(current["status"])

            stored = self._store_change(key, current, resource)

        if stored is not None:
            self._notify_write(stored)
            return copy.deepcopy(stored)
        return copy.deepcopy(current)

    def patch_status(self, kind, name, namespace, status_patch):
        log.debug("DRY RUN patch_status [%s/%s] in [%s]: %s", kind, name, namespace, status_patch)
        if not self.resource_type(kind).has_status:
            raise ClusterError(f"{kind} has no status subresource")
        key = self._key(kind, name, namespace)
        with self._lock:
            current = self._cluster_content.get(key)
            if current is None:
                raise NotFoundError(f"{kind} {name} not found in {namespace}")
            resource = copy.deepcopy(current)
            status = resource.get("status") or {}
            resource["status"] = merge_configs(status, copy.deepcopy(status_patch))
            stored = self._store_change(key, current, resource)

        if stored is not None:
            self._notify_write(stored)
            return copy.deepcopy(stored)
        return copy.deepcopy(current)

    def delete(self, kind, name, namespace=None):
        log.debug("DRY RUN delete [%s/%s] in [%s]", kind, name, namespace)
        key = self._key(kind, name, namespace)
        with self._lock:
            current = self._cluster_content.get(key)
            if current is None:
                return False

            # Objects holding finalizers are only marked for deletion
            if current["metadata"].get("finalizers"):
                if not current["metadata"].get("deletionTimestamp"):
                    current["metadata"]["deletionTimestamp"] = _now()
                    current["metadata"]["resourceVersion"] = self._next_resource_version()
                    stored = copy.deepcopy(current)
                else:
                    stored = None
            else:
                stored = None
                self._remove(key)

            # Deleting a namespace removes everything inside it
            children = []
            if kind == constants.NAMESPACE_KIND and stored is None:
                children = [
                    obj_key
                    for obj_key in self._cluster_content
                    if obj_key[1] == name
                ]

        if stored is not None:
            self._notify(KubeEventType.MODIFIED, stored)
            return True
        self._flush_deletes()
        for child_kind, child_namespace, child_name in children:
            self.delete(child_kind, child_name, child_namespace)
        return True

    def watch_objects(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunObjectStore for changes by registering a callback"""
        stop_event = stop_event or threading.Event()
        requirements = parse_label_selector(label_selector or "")
        event_queue = Queue()

        def add_event(event_type: KubeEventType, manifest: dict):
            manifest_namespace = manifest.get("metadata", {}).get("namespace")
            if namespace is not None and manifest_namespace != namespace:
                return
            labels = manifest.get("metadata", {}).get("labels") or {}
            if not match_labels(labels, requirements):
                return
            event_queue.put(KubeWatchEvent(event_type, ManagedObject(manifest)))

        # Register before listing so nothing is lost in between
        with self._lock:
            self._watches.setdefault(kind, []).append(add_event)
            _, manifests = self.filter_objects_current_state(
                kind, namespace=namespace, label_selector=label_selector
            )

        try:
            for manifest in manifests:
                event = KubeWatchEvent(KubeEventType.ADDED, ManagedObject(manifest))
                log.debug2("Yielding initial event %s", event)
                yield event

            while not stop_event.is_set():
                try:
                    event = event_queue.get(timeout=WATCH_POLL_TIME)
                except Empty:
                    continue
                log.debug2("Yielding event %s", event)
                yield event
        finally:
            with self._lock:
                self._watches[kind].remove(add_event)

    ## Implementation Details ##################################################

    def _key(self, kind: str, name: str, namespace: Optional[str]) -> ObjectKey:
        if not self.resource_type(kind).namespaced:
            namespace = None
        return (kind, namespace, name)

    def _identifiers(self, resource_definition: dict) -> Tuple[str, str, Optional[str]]:
        kind = resource_definition.get("kind")
        metadata = resource_definition.get("metadata") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if kind not in self.registry:
            raise ClusterError(f"Unknown kind {kind}")
        if not name:
            raise ClusterError("Cannot write a resource without a name")
        if self.resource_type(kind).namespaced:
            if not namespace:
                raise ClusterError(f"Namespaced kind {kind} requires a namespace")
        else:
            namespace = None
        return kind, name, namespace

    def _namespace_exists(self, namespace: str) -> bool:
        return (constants.NAMESPACE_KIND, None, namespace) in self._cluster_content

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _store_change(self, key: ObjectKey, current: dict, resource: dict) -> Optional[dict]:
        """Store the new content of an object if it differs from the current
        content. Returns the stored copy, or None if nothing changed. Must be
        called with the lock held.
        """
        if _strip_server_fields(resource) == _strip_server_fields(current):
            log.debug2("No change for %s", key)
            return None

        metadata = resource["metadata"]
        if _content(resource) != _content(current):
            metadata["generation"] = (current["metadata"].get("generation") or 0) + 1
        metadata["resourceVersion"] = self._next_resource_version()

        # Finalized objects marked for deletion are removed once the last
        # finalizer is gone
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            self._remove(key)
        else:
            self._cluster_content[key] = resource
        return copy.deepcopy(resource)

    def _remove(self, key: ObjectKey):
        """Drop an object and queue its DELETED event. Must be called with the
        lock held.
        """
        self._pending_deletes.append(self._cluster_content.pop(key))

    def _notify_write(self, stored: dict):
        kind, name, namespace = self._identifiers(stored)
        with self._lock:
            still_present = self._key(kind, name, namespace) in self._cluster_content
        if still_present:
            self._notify(KubeEventType.MODIFIED, stored)
        else:
            self._flush_deletes()

    def _notify(self, event_type: KubeEventType, manifest: dict):
        self._flush_deletes()
        with self._lock:
            callbacks = list(self._watches.get(manifest.get("kind"), []))
        for callback in callbacks:
            log.debug3("Calling registered watch [%s] for %s", callback, event_type)
            callback(event_type, copy.deepcopy(manifest))

    def _flush_deletes(self):
        with self._lock:
            pending = self._pending_deletes
            self._pending_deletes = []
            callbacks = {
                kind: list(callbacks) for kind, callbacks in self._watches.items()
            }
        for removed in pending:
            for callback in callbacks.get(removed.get("kind"), []):
                callback(KubeEventType.DELETED, copy.deepcopy(removed))


## Helpers #####################################################################


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _strip_server_fields(resource: dict) -> dict:
    stripped = copy.deepcopy(resource)
    for field_name in SERVER_METADATA_FIELDS:
        stripped.get("metadata", {}).pop(field_name, None)
    return stripped


def _content(resource: dict) -> dict:
    """Everything but metadata and status. Changes here move the generation."""
    return {
        key: val
        for key, val in resource.items()
        if key not in ["metadata", "status"]
    }


## Label Selectors #############################################################

# One requirement of a label selector. The set based forms must be checked
# before the equality based ones.
_SET_REQUIREMENT = re.compile(r"^\s*([^\s!=,()]+)\s+(in|notin)\s+\(([^)]*)\)\s*$")
_EQUALITY_REQUIREMENT = re.compile(r"^\s*([^\s!=,()]+)\s*(==|=|!=)\s*([^\s!=,()]*)\s*$")
_EXISTS_REQUIREMENT = re.compile(r"^\s*(!?)\s*([^\s!=,()]+)\s*$")


def parse_label_selector(selector: str) -> List[Callable[[dict], bool]]:
    """Parse a kubernetes label selector into a list of predicates on a label
    dict. See
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#label-selectors

    Raises:
        ValueError if a requirement cannot be parsed
    """
    requirements = []
    for requirement in _split_selector(selector):
        set_match = _SET_REQUIREMENT.match(requirement)
        equality_match = _EQUALITY_REQUIREMENT.match(requirement)
        exists_match = _EXISTS_REQUIREMENT.match(requirement)
        if set_match:
            key, operator, values = set_match.groups()
            value_set = {val.strip() for val in values.split(",") if val.strip()}
            if operator == "in":
                requirements.append(
                    lambda labels, k=key, v=value_set: labels.get(k) in v
                )
            else:
                requirements.append(
                    lambda labels, k=key, v=value_set: labels.get(k) not in v
                )
        elif equality_match:
            key, operator, value = equality_match.groups()
            if operator == "!=":
                requirements.append(lambda labels, k=key, v=value: labels.get(k) != v)
            else:
                requirements.append(lambda labels, k=key, v=value: labels.get(k) == v)
        elif exists_match:
            negated, key = exists_match.groups()
            if negated:
                requirements.append(lambda labels, k=key: k not in labels)
            else:
                requirements.append(lambda labels, k=key: k in labels)
        else:
            raise ValueError(f"Invalid label selector requirement: {requirement}")
    return requirements


def match_labels(labels: dict, requirements: List[Callable[[dict], bool]]) -> bool:
    """True if the labels satisfy every requirement"""
    return all(requirement(labels) for requirement in requirements)


def _split_selector(selector: str) -> List[str]:
    """Split a selector on commas that are not inside parentheses, e.g.
    'app,tier in (frontend, backend)' -> ['app', 'tier in (frontend, backend)']
    """
    output_list = []
    current = ""
    depth = 0
    for char in selector:
        if char == "," and not depth:
            output_list.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        current += char
    if current.strip():
        output_list.append(current)
    return [req for req in output_list if req.strip()]
