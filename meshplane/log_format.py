"""
Custom logging formats that carry the identity of the control plane being
reconciled
"""

# First Party
from alog import AlogJsonFormatter


class MeshplaneJsonFormatter(AlogJsonFormatter):
    """Extends AlogJsonFormatter with the control plane resource identity, the
    reconcile id and thread information
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "namespace",
        "resourceName",
        "generation",
        "reconcileId",
    ]

    def __init__(self, manifest=None, reconcile_id=None):
        super().__init__()
        self.manifest = manifest
        self.reconcile_id = reconcile_id

    def format(self, record):
        if self.reconcile_id:
            record.reconcileId = self.reconcile_id

        # A log call may carry its own resource via extra={"resource": ...}
        if resource := getattr(record, "resource", self.manifest):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.namespace = metadata.get("namespace")
            record.resourceName = metadata.get("name")
            record.generation = metadata.get("generation")

        return super().format(record)
