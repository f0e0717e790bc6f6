"""
Custom logging formats that carry the identity of the object being handled
"""

# First Party
from alog import AlogJsonFormatter


class NsClassJsonFormatter(AlogJsonFormatter):
    """Json formatter that adds the identifiers of the resource a log line is
    about. Callers attach the resource with extra={"resource": manifest} and
    the reconciliation with extra={"reconciliation_id": ...}.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "thread",
        "threadName",
        "className",
        "kind",
        "resourceName",
        "resourceNamespace",
        "resourceVersion",
        "reconciliationId",
    ]

    def format(self, record):
        if reconciliation_id := getattr(record, "reconciliation_id", None):
            record.reconciliationId = reconciliation_id

        if class_name := getattr(record, "class_name", None):
            record.className = class_name

        if resource := getattr(record, "resource", None):
            metadata = resource.get("metadata") or {}
            record.kind = resource.get("kind")
            record.resourceName = metadata.get("name")
            record.resourceNamespace = metadata.get("namespace")
            record.resourceVersion = metadata.get("resourceVersion")

        return super().format(record)
