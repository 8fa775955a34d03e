"""
The DryRunClusterClient implements the ClusterClientBase interface but does not
interact with a cluster and instead holds the state of the cluster in a local
map keyed by namespace, kind, apiVersion and name.

It mimics the server behaviors the reconcile depends on:

* uid, creationTimestamp, resourceVersion and generation are assigned
* generation is bumped when anything outside metadata and status changes
* updates carrying a stale resourceVersion fail with ConflictError
* objects with finalizers are only marked for deletion until the finalizers
  are removed
"""

# Standard
from threading import RLock
from typing import List, Optional
import copy
import itertools
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError, InvalidError, NotFoundError
from ..patch_strategic_merge import patch_strategic_merge
from ..utils import get_finalizers, now_timestamp
from .base import ClusterClientBase

log = alog.use_channel("DRY-RUN")

# Lock to ensure operations against the in-memory cluster are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()


class DryRunClusterClient(ClusterClientBase):
    """
    Cluster client which doesn't actually touch a cluster!
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional list of objects that already exist"""
        self._cluster_content = {}
        self._resource_versions = itertools.count(1)
        for resource in resources or []:
            self.create(resource)

    ## Interface ###############################################################

    def get(self, api_version, kind, name, namespace=None):
        log.debug2("DRY RUN get [%s/%s/%s] in [%s]", api_version, kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._entries(namespace, kind, api_version).get(name)
            return copy.deepcopy(current) if current is not None else None

    def list(self, api_version, kind, namespace=None, label_selector=None):
        log.debug2("DRY RUN list [%s/%s] in [%s]", api_version, kind, namespace)
        selector = _parse_label_selector(label_selector)
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            namespaces = (
                [namespace or ""] if namespace else list(self._cluster_content.keys())
            )
            for nspace in namespaces:
                for obj in self._entries(nspace, kind, api_version).values():
                    labels = obj.get("metadata", {}).get("labels") or {}
                    if all(labels.get(key) == val for key, val in selector.items()):
                        matches.append(copy.deepcopy(obj))
        return matches

    def create(self, obj):
        obj = copy.deepcopy(obj)
        api_version, kind, name, namespace = self._identifiers(obj)
        log.debug("DRY RUN create [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            entries = self._entries(namespace, kind, api_version, create=True)
            if name in entries:
                raise ConflictError(f"{kind}/{name} already exists in {namespace}")
            metadata = obj.setdefault("metadata", {})
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = now_timestamp()
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_resource_version()
            for server_field in ["deletionTimestamp", "managedFields", "selfLink"]:
                metadata.pop(server_field, None)
            entries[name] = obj
            return copy.deepcopy(obj)

    def update(self, obj):
        obj = copy.deepcopy(obj)
        api_version, kind, name, namespace = self._identifiers(obj)
        log.debug("DRY RUN update [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_or_raise(api_version, kind, name, namespace)
            self._check_resource_version(current, obj)
            current_metadata = current["metadata"]
            metadata = obj.setdefault("metadata", {})

            # Server owned fields are never taken from the request
            for server_field in [
                "uid",
                "creationTimestamp",
                "deletionTimestamp",
                "generation",
            ]:
                if server_field in current_metadata:
                    metadata[server_field] = current_metadata[server_field]
                else:
                    metadata.pop(server_field, None)
            obj["status"] = current.get("status")
            if obj["status"] is None:
                del obj["status"]

            if _spec_of(obj) != _spec_of(current):
                metadata["generation"] = current_metadata.get("generation", 0) + 1
            metadata["resourceVersion"] = self._next_resource_version()
            self._store(obj)
            return copy.deepcopy(obj)

    def patch(self, api_version, kind, name, patch, namespace=None):
        log.debug("DRY RUN patch [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_or_raise(api_version, kind, name, namespace)
            patched = patch_strategic_merge(current, patch, merge_patch_keys={})
            patched.get("metadata", {}).pop("resourceVersion", None)
            return self.update(patched)

    def delete(self, api_version, kind, name, namespace=None, propagation_policy=None):
        log.debug(
            "DRY RUN delete [%s/%s/%s] in [%s] (%s)",
            api_version,
            kind,
            name,
            namespace,
            propagation_policy,
        )
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_or_raise(api_version, kind, name, namespace)
            if get_finalizers(current):
                log.debug2("Marking [%s/%s] for deletion", kind, name)
                if not current["metadata"].get("deletionTimestamp"):
                    current["metadata"]["deletionTimestamp"] = now_timestamp()
                    current["metadata"]["resourceVersion"] = (
                        self._next_resource_version()
                    )
                return
            self._delete_key(namespace, kind, api_version, name)

    def update_status(self, obj):
        api_version, kind, name, namespace = self._identifiers(obj)
        log.debug(
            "DRY RUN update_status [%s/%s/%s] in %s", api_version, kind, name, namespace
        )
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_or_raise(api_version, kind, name, namespace)
            self._check_resource_version(current, obj)
            current["status"] = copy.deepcopy(obj.get("status"))
            current["metadata"]["resourceVersion"] = self._next_resource_version()
            return copy.deepcopy(current)

    ## Implementation Details ##################################################

    @staticmethod
    def _identifiers(obj: dict):
        metadata = obj.get("metadata") or {}
        api_version = obj.get("apiVersion")
        kind = obj.get("kind")
        name = metadata.get("name")
        if not (api_version and kind and name):
            raise InvalidError("Object requires apiVersion, kind and metadata.name")
        return api_version, kind, name, metadata.get("namespace") or ""

    def _entries(self, namespace, kind, api_version, create=False) -> dict:
        namespace = namespace or ""
        if create:
            return (
                self._cluster_content.setdefault(namespace, {})
                .setdefault(kind, {})
                .setdefault(api_version, {})
            )
        return (
            self._cluster_content.get(namespace, {}).get(kind, {}).get(api_version, {})
        )

    def _get_or_raise(self, api_version, kind, name, namespace) -> dict:
        current = self._entries(namespace, kind, api_version).get(name)
        if current is None:
            raise NotFoundError(f"{kind}/{name} not found in {namespace}")
        return current

    def _store(self, obj: dict):
        api_version, kind, name, namespace = self._identifiers(obj)
        metadata = obj["metadata"]

        # Removing the last finalizer of an object marked for deletion
        # completes the deletion
        if metadata.get("deletionTimestamp") and not get_finalizers(obj):
            log.debug2("Finalizers cleared for [%s/%s]. Deleting", kind, name)
            self._delete_key(namespace, kind, api_version, name)
            return
        self._entries(namespace, kind, api_version, create=True)[name] = obj

    @staticmethod
    def _check_resource_version(current: dict, obj: dict):
        requested = obj.get("metadata", {}).get("resourceVersion")
        stored = current.get("metadata", {}).get("resourceVersion")
        if requested and stored and requested != stored:
            raise ConflictError(
                f"resourceVersion {requested} is out of date (current {stored})"
            )

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _delete_key(self, namespace, kind, api_version, name):
        namespace = namespace or ""
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]


def _spec_of(obj: dict) -> dict:
    """Everything that counts toward the generation of an object"""
    return {key: val for key, val in obj.items() if key not in ["metadata", "status"]}


def _parse_label_selector(label_selector: Optional[str]) -> dict:
    """Parse an equality based label selector (a=b,c=d)"""
    selector = {}
    for part in (label_selector or "").split(","):
        part = part.strip()
        if not part:
            continue
        key, _, val = part.partition("=")
        selector[key.strip()] = val.lstrip("=").strip()
    return selector
