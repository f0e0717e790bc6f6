"""
The trigger mapper turns a change notification on any watched kind into the
name of the class that needs to be resynchronized. The event payload is never
inspected beyond the object's identity and its class label, so every trigger
leads to a full level-triggered pass.
"""

# Standard
from typing import List, Union

# First Party
import alog

# Local
from . import constants
from .managed_object import ManagedObject
from .membership import MembershipIndex
from .object_store import KubeWatchEvent

log = alog.use_channel("MAPPR")

# Kinds whose changes are routed back to a class through the class label
MAPPED_KINDS = [
    constants.NAMESPACE_KIND,
    constants.NETWORK_POLICY_KIND,
    constants.SERVICE_ACCOUNT_KIND,
]


class TriggerMapper:
    """Map watch events to synchronization requests"""

    def __init__(self, membership_index: MembershipIndex):
        self.membership_index = membership_index

    def has_membership_label(self, event: Union[KubeWatchEvent, ManagedObject]) -> bool:
        """Event filter. Class events always pass. Events on other kinds only
        pass when the object carries the class label.
        """
        resource = _resource(event)
        if resource.kind == constants.CLASS_KIND:
            return True
        return self.membership_index.owner_of(resource.definition) is not None

    def map_to_requests(self, event: Union[KubeWatchEvent, ManagedObject]) -> List[str]:
        """Get the class names to reconcile for an event

        Returns:
            requests:  List[str]
                Empty if the object has no owning class, otherwise exactly one
                class name
        """
        resource = _resource(event)
        if resource.kind == constants.CLASS_KIND:
            log.debug3("Class event for %s", resource.name)
            return [resource.name]

        if resource.kind not in MAPPED_KINDS:
            log.debug2("Ignoring event for unmapped kind %s", resource)
            return []

        class_name = self.membership_index.owner_of(resource.definition)
        if class_name is None:
            log.debug3("No class label on %s", resource)
            return []

        log.debug2("Mapped %s to class %s", resource, class_name)
        return [class_name]


def _resource(event: Union[KubeWatchEvent, ManagedObject]) -> ManagedObject:
    if isinstance(event, KubeWatchEvent):
        return event.resource
    return event
