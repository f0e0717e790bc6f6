"""
Shared module to hold constant values for the library
"""

# The label that both declares namespace membership in a class and marks the
# children generated for that class
CLASS_LABEL_NAME = "namespaceclass.akuity.io/name"

# Finalizer set on classes when the cascade cleanup policy is enabled
CLASS_FINALIZER_NAME = "namespaceclass.akuity.io/finalizer"

# Group/version/kind of the class resource
CLASS_API_VERSION = "core.resource-wrapper.io/v1alpha1"
CLASS_KIND = "NamespaceClass"

# Kinds read or written by the reconciler
NAMESPACE_KIND = "Namespace"
NETWORK_POLICY_KIND = "NetworkPolicy"
SERVICE_ACCOUNT_KIND = "ServiceAccount"

# Fixed names of the generated children
NETWORK_POLICY_NAME = "admin-network-policy"
SERVICE_ACCOUNT_NAME = "admin-service-account"

# Spec fields of the class holding the child templates
NETWORK_POLICY_TEMPLATE_FIELD = "networkPolicyTemplate"
SERVICE_ACCOUNT_TEMPLATE_FIELD = "serviceAccountTemplate"
AUTOMOUNT_TOKEN_FIELD = "automountServiceAccountToken"

# Status fields maintained on the class
OBSERVED_GENERATION_FIELD = "observedGeneration"
LAST_APPLIED_TIME_FIELD = "lastAppliedTime"

# Values for the child_cleanup_policy config
CLEANUP_POLICY_ORPHAN = "orphan"
CLEANUP_POLICY_CASCADE = "cascade"

# Field manager name used for writes to the live cluster
FIELD_MANAGER = "nsclass"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
