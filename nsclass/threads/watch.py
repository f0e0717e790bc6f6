"""The WatchThread Class is responsible for monitoring the cluster for
resource events
"""
# Standard
from typing import Callable, Dict, List
import copy

# First Party
import alog

# Local
from ..managed_object import ManagedObject
from ..object_store import KubeEventType, KubeWatchEvent, ObjectStoreBase
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")

# Metadata fields that change on every write and never indicate a change the
# operator cares about
VOLATILE_METADATA_FIELDS = ["resourceVersion", "managedFields"]


class WatchThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """The WatchThread monitors the cluster for changes to a single kind. Every
    event that passes the event filter is mapped to class names, each of which
    is handed to the enqueue callback.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        object_store: ObjectStoreBase,
        kind: str,
        event_filter: Callable[[KubeWatchEvent], bool],
        mapper: Callable[[KubeWatchEvent], List[str]],
        enqueue: Callable[[str], None],
        watch_retry_count: int = 5,
        watch_retry_delay: float = 5.0,
    ):
        """Initialize a WatchThread by assigning instance variables

        Args:
            object_store:  ObjectStoreBase
                The store to watch
            kind:  str
                The kind to watch
            event_filter:  Callable[[KubeWatchEvent], bool]
                Events for which this returns False are dropped
            mapper:  Callable[[KubeWatchEvent], List[str]]
                Translates an event into the class names to reconcile
            enqueue:  Callable[[str], None]
                Called with every class name produced by the mapper
            watch_retry_count:  int
                Number of consecutive failed watch attempts before giving up
            watch_retry_delay:  float
                Seconds to wait before restarting a failed watch
        """
        self.object_store = object_store
        self.kind = kind
        self.event_filter = event_filter
        self.mapper = mapper
        self.enqueue = enqueue
        self.watch_retry_count = watch_retry_count
        self.retry_delay = watch_retry_delay
        self.attempts_left = watch_retry_count

        # The last seen state of every object. Used to drop events that only
        # touch the status and to route updates by their old state.
        self._last_seen: Dict[str, ManagedObject] = {}

        # Set if the watch gave up after running out of retries
        self.failed = False

        super().__init__(name=f"watch_thread_{self.kind}", daemon=True)

    def run(self):
        """The WatchThread's control loop continuously watches the ObjectStore
        for new events and submits the mapped class names. A failed watch is
        restarted after a delay until the retries run out.
        """
        while not self.should_stop():
            try:
                for event in self.object_store.watch_objects(
                    self.kind, stop_event=self.shutdown
                ):
                    if self.should_stop():
                        log.debug("Watch of %s shutting down", self.kind)
                        return

                    # A healthy stream resets the retry count
                    self.attempts_left = self.watch_retry_count
                    self._handle_event(event)

            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s: %s",
                    self.kind,
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch of %s within %d attempts",
                        self.kind,
                        self.watch_retry_count,
                    )
                    self.failed = True
                    return

                if not self.wait_on_shutdown(self.retry_delay):
                    log.debug("Shutdown requested during retry of %s", self.kind)
                    return
                self.attempts_left = self.attempts_left - 1
                log.info(
                    "Restarting watch of %s with %d attempts left",
                    self.kind,
                    self.attempts_left,
                )

    ## Implementation Details ##################################################

    def _handle_event(self, event: KubeWatchEvent):
        resource = event.resource
        key = str(resource)
        previous = self._last_seen.get(key)
        if event.type == KubeEventType.DELETED:
            self._last_seen.pop(key, None)
        else:
            self._last_seen[key] = resource

        if (
            event.type == KubeEventType.MODIFIED
            and previous is not None
            and _comparable(previous) == _comparable(resource)
        ):
            log.debug3("Skipping status only change of %s", resource)
            return

        # An update is routed by both its old and new state so that removing
        # a class label still reaches the class that lost the object
        candidates = [event]
        if event.type == KubeEventType.MODIFIED and previous is not None:
            candidates.append(KubeWatchEvent(event.type, previous, event.timestamp))

        class_names = []
        for candidate in candidates:
            if not self.event_filter(candidate):
                log.debug3("Event for %s filtered out", candidate.resource)
                continue
            for class_name in self.mapper(candidate):
                if class_name not in class_names:
                    class_names.append(class_name)

        for class_name in class_names:
            log.debug(
                "Requesting reconcile of %s for %s %s",
                class_name,
                event.type.value,
                resource,
                extra={"resource": resource, "class_name": class_name},
            )
            self.enqueue(class_name)


def _comparable(resource: ManagedObject) -> dict:
    """The content of an object minus its status and volatile metadata"""
    content = copy.deepcopy(resource.definition)
    content.pop("status", None)
    for field_name in VOLATILE_METADATA_FIELDS:
        content.get("metadata", {}).pop(field_name, None)
    return content
