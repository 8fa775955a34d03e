"""
This cluster client delegates cluster operations to the openshift library. It
is the one used when the operator makes live changes, either from inside the
cluster or from outside with a kube config.
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
import threading

# Third Party
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
    UnprocessibleEntityError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from .. import exceptions
from ..exceptions import assert_cluster
from .base import ClusterClientBase

log = alog.use_channel("OSFTC")

# Field manager recorded for every write
FIELD_MANAGER = "meshplane"


class OpenshiftClusterClient(ClusterClientBase):
    """This client uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from the in-cluster config or the local kube config.
        """
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        with self._client_lock:
            if self._client is None:
                self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get(self, api_version, kind, name, namespace=None):
        handle = self._get_resource_handle(api_version, kind, namespace)
        if handle is None:
            return None
        try:
            with _translate_errors(kind, name, namespace):
                return handle.get(name=name, namespace=namespace).to_dict()
        except exceptions.NotFoundError:
            log.debug2("No object [%s/%s] found in [%s]", kind, name, namespace)
            return None

    def list(self, api_version, kind, namespace=None, label_selector=None):
        handle = self._require_resource_handle(api_version, kind, namespace)
        with _translate_errors(kind, "", namespace):
            result = handle.get(namespace=namespace, label_selector=label_selector)
        return result.to_dict().get("items", [])

    @alog.logged_function(log.debug2)
    def create(self, obj):
        api_version, kind, name, namespace = _identifiers(obj)
        handle = self._require_resource_handle(api_version, kind, namespace)
        log.debug2("Creating [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with _translate_errors(kind, name, namespace):
            return handle.create(
                body=obj, namespace=namespace, field_manager=FIELD_MANAGER
            ).to_dict()

    @alog.logged_function(log.debug2)
    def update(self, obj):
        api_version, kind, name, namespace = _identifiers(obj)
        handle = self._require_resource_handle(api_version, kind, namespace)
        log.debug2("Replacing [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with _translate_errors(kind, name, namespace):
            return handle.replace(
                body=obj,
                name=name,
                namespace=namespace,
                field_manager=FIELD_MANAGER,
            ).to_dict()

    def patch(self, api_version, kind, name, patch, namespace=None):
        handle = self._require_resource_handle(api_version, kind, namespace)
        log.debug2("Patching [%s/%s/%s] in %s", api_version, kind, name, namespace)
        with _translate_errors(kind, name, namespace):
            return handle.patch(
                body=patch,
                name=name,
                namespace=namespace,
                content_type="application/merge-patch+json",
                field_manager=FIELD_MANAGER,
            ).to_dict()

    @alog.logged_function(log.debug2)
    def delete(self, api_version, kind, name, namespace=None, propagation_policy=None):
        handle = self._get_resource_handle(api_version, kind, namespace)
        if handle is None:
            raise exceptions.NotFoundError(f"Unknown kind {api_version}/{kind}")
        body = None
        if propagation_policy:
            body = {
                "apiVersion": "v1",
                "kind": "DeleteOptions",
                "propagationPolicy": propagation_policy,
            }
        log.debug2(
            "Deleting [%s/%s/%s] from %s (%s)",
            api_version,
            kind,
            name,
            namespace,
            propagation_policy,
        )
        with _translate_errors(kind, name, namespace):
            handle.delete(name=name, namespace=namespace, body=body)

    def update_status(self, obj):
        api_version, kind, name, namespace = _identifiers(obj)
        handle = self._require_resource_handle(api_version, kind, namespace)
        log.debug2("Updating status of [%s/%s] in %s", kind, name, namespace)
        with _translate_errors(kind, name, namespace):
            return handle.status.replace(body=obj, namespace=namespace).to_dict()

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str],
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a kind. None if the cluster
        does not know the kind.
        """
        try:
            handle = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No unique resource kind [%s] found for [%s]", kind, api_version
            )
            return None
        if not namespace:
            handle.namespaced = False
        return handle

    def _require_resource_handle(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str],
    ) -> Resource:
        handle = self._get_resource_handle(api_version, kind, namespace)
        assert_cluster(
            handle is not None,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )
        return handle


## Implementation Details ######################################################


def _identifiers(obj: dict):
    metadata = obj.get("metadata") or {}
    api_version = obj.get("apiVersion")
    kind = obj.get("kind")
    name = metadata.get("name")
    assert_cluster(
        None not in [api_version, kind, name],
        "Cannot send object without apiVersion, kind or name",
    )
    return api_version, kind, name, metadata.get("namespace") or None


@contextmanager
def _translate_errors(kind: str, name: str, namespace: Optional[str]):
    """Translate openshift client errors into meshplane cluster errors"""
    target = f"{kind}/{name} in {namespace}"
    try:
        yield
    except NotFoundError as err:
        raise exceptions.NotFoundError(f"{target}: {err.summary()}") from err
    except ConflictError as err:
        raise exceptions.ConflictError(f"{target}: {err.summary()}") from err
    except UnprocessibleEntityError as err:
        raise exceptions.InvalidError(f"{target}: {err.summary()}") from err
    except DynamicApiError as err:
        if err.status == 410:
            raise exceptions.GoneError(f"{target}: {err.summary()}") from err
        raise exceptions.ClusterApiError(
            f"{target}: {err.summary()}", status_code=err.status
        ) from err
