"""
Package exports
"""

# Local
from . import config, constants, synthesizer
from .exceptions import assert_cluster, assert_config
from .mapper import TriggerMapper
from .membership import LabelMembershipIndex, MembershipIndex
from .object_store import DryRunObjectStore, KubeObjectStore, ObjectStoreBase
from .operator import Operator
from .rate_limiter import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimiterBase,
)
from .reconciler import NamespaceClassReconciler, ReconciliationResult
from .registry import ResourceRegistry, ResourceType, default_registry
from .work_queue import WorkQueue
