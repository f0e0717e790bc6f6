"""
Pure functions that compute the children a class wants in a namespace. Nothing
here touches the cluster, and no output shares structure with the class or
with another output.
"""

# Standard
from typing import List, Optional
import copy

# Local
from . import constants
from .registry import ResourceRegistry, default_registry


def _child_metadata(class_name: str, name: str, namespace: str) -> dict:
    return {
        "name": name,
        "namespace": namespace,
        "labels": {constants.CLASS_LABEL_NAME: class_name},
    }


def desired_network_policy(
    ns_class: dict,
    namespace: str,
    registry: Optional[ResourceRegistry] = None,
) -> Optional[dict]:
    """Build the NetworkPolicy for a namespace, or None if the class has no
    network policy template
    """
    template = (ns_class.get("spec") or {}).get(constants.NETWORK_POLICY_TEMPLATE_FIELD)
    if not template:
        return None
    registry = registry or default_registry()
    class_name = ns_class["metadata"]["name"]
    return {
        "apiVersion": registry.get(constants.NETWORK_POLICY_KIND).api_version,
        "kind": constants.NETWORK_POLICY_KIND,
        "metadata": _child_metadata(class_name, constants.NETWORK_POLICY_NAME, namespace),
        "spec": copy.deepcopy(template),
    }


def desired_service_account(
    ns_class: dict,
    namespace: str,
    registry: Optional[ResourceRegistry] = None,
) -> Optional[dict]:
    """Build the ServiceAccount for a namespace, or None if the class has no
    service account template
    """
    template = (ns_class.get("spec") or {}).get(constants.SERVICE_ACCOUNT_TEMPLATE_FIELD)
    if not template:
        return None
    registry = registry or default_registry()
    class_name = ns_class["metadata"]["name"]
    service_account = {
        "apiVersion": registry.get(constants.SERVICE_ACCOUNT_KIND).api_version,
        "kind": constants.SERVICE_ACCOUNT_KIND,
        "metadata": _child_metadata(class_name, constants.SERVICE_ACCOUNT_NAME, namespace),
    }
    automount = template.get(constants.AUTOMOUNT_TOKEN_FIELD)
    if automount is not None:
        service_account[constants.AUTOMOUNT_TOKEN_FIELD] = automount
    return service_account


# The kinds of children a class can generate, in the order they are applied
CHILD_SYNTHESIZERS = {
    constants.NETWORK_POLICY_KIND: desired_network_policy,
    constants.SERVICE_ACCOUNT_KIND: desired_service_account,
}


def synthesize(
    ns_class: dict,
    namespace: str,
    registry: Optional[ResourceRegistry] = None,
) -> List[dict]:
    """Build every child the class wants in the namespace

    Args:
        ns_class:  dict
            The current state of the class
        namespace:  str
            The name of the target namespace
        registry:  Optional[ResourceRegistry]
            Kind metadata for the children

    Returns:
        children:  List[dict]
            The desired children. Unset templates contribute nothing.
    """
    children = []
    for synthesizer in CHILD_SYNTHESIZERS.values():
        child = synthesizer(ns_class, namespace, registry)
        if child is not None:
            children.append(child)
    return children
