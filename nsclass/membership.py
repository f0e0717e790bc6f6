"""
The MembershipIndex answers the two ownership questions the reconciler asks:
which namespaces belong to a class, and which class owns a child object.
Membership is encoded as a label today, but nothing outside this module
depends on that.
"""

# Standard
from typing import List, Optional
import abc

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster
from .object_store import ObjectStoreBase
from .utils import get_class_label

log = alog.use_channel("MEMBR")


class MembershipIndex(abc.ABC):
    """Interface for resolving class membership and ownership"""

    @abc.abstractmethod
    def list_members(self, class_name: str) -> List[dict]:
        """List the namespaces that belong to the given class

        Args:
            class_name:  str
                The name of the class

        Returns:
            namespaces:  List[dict]
                The current state of every member namespace

        Raises:
            ClusterError if the namespaces could not be listed
        """

    @abc.abstractmethod
    def owner_of(self, child: dict) -> Optional[str]:
        """Get the name of the class owning a child object (or a namespace),
        or None if it has no owner
        """

    @abc.abstractmethod
    def list_owned(self, class_name: str, kind: str) -> List[dict]:
        """List every object of the given kind owned by the class, across all
        namespaces
        """


class LabelMembershipIndex(MembershipIndex):
    """MembershipIndex backed by equality on the class label"""

    def __init__(self, object_store: ObjectStoreBase):
        self.object_store = object_store

    def list_members(self, class_name: str) -> List[dict]:
        return self.list_owned(class_name, constants.NAMESPACE_KIND)

    def owner_of(self, child: dict) -> Optional[str]:
        return get_class_label(child)

    def list_owned(self, class_name: str, kind: str) -> List[dict]:
        success, objects = self.object_store.filter_objects_current_state(
            kind=kind,
            label_selector=self.label_selector(class_name),
        )
        assert_cluster(success, f"Failed to list {kind} objects of class {class_name}")
        log.debug3("Found %d %s objects for class %s", len(objects), kind, class_name)
        return objects

    @staticmethod
    def label_selector(class_name: str) -> str:
        return f"{constants.CLASS_LABEL_NAME}={class_name}"
