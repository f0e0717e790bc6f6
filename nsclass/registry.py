"""
The ResourceRegistry holds the metadata for every kind the operator reads or
writes. It is constructed once at startup and handed to the object store and
anything else that needs kind metadata.
"""

# Standard
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("REGSTRY")


@dataclass(frozen=True)
class ResourceType:
    """Identity and scope of a single kind"""

    api_version: str
    kind: str
    namespaced: bool = True
    has_status: bool = False

    def __str__(self):
        return f"{self.api_version}/{self.kind}"


class ResourceRegistry:
    """Lookup table of the known kinds"""

    def __init__(self, resource_types: Optional[List[ResourceType]] = None):
        self._types: Dict[str, ResourceType] = {}
        for resource_type in resource_types or []:
            self.register(resource_type)

    def register(self, resource_type: ResourceType):
        """Add a kind to the registry. Kinds are unique by name."""
        assert (
            resource_type.kind not in self._types
        ), f"Kind {resource_type.kind} registered twice"
        log.debug2("Registering kind %s", resource_type)
        self._types[resource_type.kind] = resource_type

    def get(self, kind: str) -> ResourceType:
        """Get the metadata for a registered kind

        Raises:
            KeyError if the kind was never registered
        """
        return self._types[kind]

    def __contains__(self, kind: str) -> bool:
        return kind in self._types

    def __iter__(self) -> Iterator[ResourceType]:
        return iter(self._types.values())


def default_registry() -> ResourceRegistry:
    """Build the registry holding the class kind, namespaces and the two child
    kinds
    """
    return ResourceRegistry(
        [
            ResourceType(
                api_version=constants.CLASS_API_VERSION,
                kind=constants.CLASS_KIND,
                namespaced=False,
                has_status=True,
            ),
            ResourceType(
                api_version="v1",
                kind=constants.NAMESPACE_KIND,
                namespaced=False,
            ),
            ResourceType(
                api_version="networking.k8s.io/v1",
                kind=constants.NETWORK_POLICY_KIND,
            ),
            ResourceType(
                api_version="v1",
                kind=constants.SERVICE_ACCOUNT_KIND,
            ),
        ]
    )
