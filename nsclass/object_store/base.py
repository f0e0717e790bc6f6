"""
This defines the base class for all ObjectStore types. An ObjectStore is the
only way the operator reads or writes cluster state.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc
import threading

# Local
from ..registry import ResourceRegistry, ResourceType
from .kube_event import KubeWatchEvent


class ObjectStoreBase(abc.ABC):
    """
    Base class for object stores. Reads report success as a flag alongside the
    content, writes raise the errors from nsclass.exceptions:

    * NotFoundError: the object (or its namespace) does not exist
    * AlreadyExistsError: create of a name that is taken
    * ConflictError: the resourceVersion carried by an update is stale
    * ClusterError: anything else (unavailable, forbidden, rejected body)
    """

    def __init__(self, registry: ResourceRegistry):
        """
        Args:
            registry:  ResourceRegistry
                Metadata for every kind this store can be asked about
        """
        self.registry = registry

    def resource_type(self, kind: str) -> ResourceType:
        """Look up the registered metadata for a kind"""
        return self.registry.get(kind)

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the latest known state of a single object

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object, None if cluster scoped

        Returns:
            success:  bool
                Whether or not the fetch operation succeeded
            current_state:  Optional[dict]
                The dict representation of the object, or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind that match a label selector

        Args:
            kind:  str
                The kind of the objects to list
            namespace:  Optional[str]
                Restrict the list to one namespace. None lists cluster wide
            label_selector:  Optional[str]
                Kubernetes label selector (e.g. "a=b,c")

        Returns:
            success:  bool
                Whether or not the list operation succeeded
            current_state:  List[dict]
                The matching objects, or an empty list if none match
        """

    @abc.abstractmethod
    def create(self, resource_definition: dict) -> dict:
        """Create a new object

        Args:
            resource_definition:  dict
                The full manifest to create

        Returns:
            created:  dict
                The object as stored, including its resourceVersion
        """

    @abc.abstractmethod
    def update(self, resource_definition: dict) -> dict:
        """Replace an existing object. The metadata.resourceVersion of the
        definition is the expected current version (compare-and-swap).

        Args:
            resource_definition:  dict
                The full manifest to store

        Returns:
            updated:  dict
                The object as stored
        """

    @abc.abstractmethod
    def patch_status(
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status_patch: dict,
    ) -> dict:
        """Apply a json merge-patch to the status subresource of an object

        Args:
            kind:  str
                The kind of the object to patch
            name:  str
                The name of the object to patch
            namespace:  Optional[str]
                The namespace of the object, None if cluster scoped
            status_patch:  dict
                The merge-patch body for the status field

        Returns:
            patched:  dict
                The object as stored
        """

    @abc.abstractmethod
    def delete(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> bool:
        """Delete an object if it exists

        Returns:
            changed:  bool
                True if an object was deleted, False if it was already gone
        """

    @abc.abstractmethod
    def watch_objects(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream change notifications for a kind. The stream starts with an
        ADDED event for every existing object and ends once stop_event is set.

        Args:
            kind:  str
                The kind to watch
            namespace:  Optional[str]
                Restrict the watch to one namespace. None watches cluster wide
            label_selector:  Optional[str]
                Only stream objects matching this selector
            stop_event:  Optional[threading.Event]
                Set to end the stream

        Returns:
            watch_stream:  Iterator[KubeWatchEvent]
                A stream of KubeWatchEvents
        """
