"""
Helper object to represent a kubernetes object seen by the operator
"""
# Standard
from typing import Optional


class ManagedObject:
    """Basic struct to represent a kubernetes object read from the store"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.api_version = definition.get("apiVersion")
        self.metadata = definition.get("metadata") or {}
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid")
        self.resource_version = self.metadata.get("resourceVersion")
        self.labels = self.metadata.get("labels") or {}
        self.definition = definition

        assert self.kind is not None, "No kind found"
        assert self.name is not None, "No name found"

    @property
    def generation(self) -> Optional[int]:
        return self.metadata.get("generation")

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash on the identity of the object in the cluster, never its
        content
        """
        return hash((self.kind, self.namespace, self.name))

    def __eq__(self, other):
        return hash(self) == hash(other)
