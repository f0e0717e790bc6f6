"""
The object_store module holds the implementations of the ObjectStore interface
used to read and write cluster state
"""

# Local
from .base import ObjectStoreBase
from .dry_run_object_store import DryRunObjectStore
from .kube_event import KubeEventType, KubeWatchEvent
from .kube_object_store import KubeObjectStore
