"""
Hooks let the reconcile adjust objects before they are sent to the cluster and
react to objects being created or deleted, without the reconcilers knowing
about any particular kind.

Object hooks are keyed by (group, kind) and may additionally be restricted to a
single object name. Component hooks are keyed by component name, or by "*" for
every component, and run after a component has been installed.
"""

# Standard
from typing import Callable, Dict, List, Optional, Tuple
import re

# First Party
import aconfig
import alog

# Local
from . import config
from .cluster import ClusterClientBase
from .constants import ALL_COMPONENTS
from .exceptions import HookError, MeshplaneError
from .readiness import ReadinessWaiter
from .scc import CapabilityGrants
from .status import ComponentStatus
from .utils import split_api_version

log = alog.use_channel("HOOKS")

# Signature of an object hook: (object, control plane instance)
ObjectHook = Callable[[dict, dict], None]

# Signature of a component hook: (component name, component status, instance)
ComponentHook = Callable[[str, ComponentStatus, dict], None]

_GroupKind = Tuple[str, str]
_HookTable = Dict[_GroupKind, List[Tuple[Optional[str], ObjectHook]]]


class HookRegistry:
    """Lookup tables from (group, kind) to object hooks and from component name
    to component hooks. Hooks run in registration order.
    """

    def __init__(self):
        self._preprocess: _HookTable = {}
        self._post_create: _HookTable = {}
        self._post_delete: _HookTable = {}
        self._component: Dict[str, List[ComponentHook]] = {}

    ## Registration ############################################################

    def register_preprocess(
        self, group: str, kind: str, hook: ObjectHook, name: Optional[str] = None
    ):
        """Register a hook that may modify the desired object before it is
        created or patched

        Args:
            group:  str
                API group of the kind ("" for the core group)
            kind:  str
                The kind the hook applies to
            hook:  ObjectHook
                The function to call with (object, instance)
            name:  Optional[str]
                If given, the hook only applies to objects with this name
        """
        self._preprocess.setdefault((group, kind), []).append((name, hook))

    def register_post_create(
        self, group: str, kind: str, hook: ObjectHook, name: Optional[str] = None
    ):
        """Register a hook called with the created object"""
        self._post_create.setdefault((group, kind), []).append((name, hook))

    def register_post_delete(
        self, group: str, kind: str, hook: ObjectHook, name: Optional[str] = None
    ):
        """Register a hook called with a placeholder of the deleted object"""
        self._post_delete.setdefault((group, kind), []).append((name, hook))

    def register_component_hook(self, component: str, hook: ComponentHook):
        """Register a hook run after the named component (or every component
        for "*") has been installed
        """
        self._component.setdefault(component, []).append(hook)

    ## Dispatch ################################################################

    def preprocess(self, obj: dict, instance: dict):
        self._run(self._preprocess, "preprocess", obj, instance)

    def post_create(self, obj: dict, instance: dict):
        self._run(self._post_create, "post-create", obj, instance)

    def post_delete(self, obj: dict, instance: dict):
        self._run(self._post_delete, "post-delete", obj, instance)

    def post_install(self, name: str, status: ComponentStatus, instance: dict):
        """Run the component hooks for a component. Hooks for "*" run after the
        hooks registered for the name.
        """
        hooks = self._component.get(name, []) + self._component.get(ALL_COMPONENTS, [])
        for hook in hooks:
            log.debug3("Running component hook %s for [%s]", hook, name)
            try:
                hook(name, status, instance)
            except MeshplaneError:
                raise
            except Exception as err:
                raise HookError(f"component hook failed for {name}: {err}") from err

    ## Implementation ##########################################################

    @staticmethod
    def _run(table: dict, stage: str, obj: dict, instance: dict):
        group, _ = split_api_version(obj.get("apiVersion", ""))
        kind = obj.get("kind", "")
        name = (obj.get("metadata") or {}).get("name")
        for hook_name, hook in table.get((group, kind), []):
            if hook_name is not None and hook_name != name:
                continue
            log.debug3("Running %s hook for %s/%s", stage, kind, name)
            try:
                hook(obj, instance)
            except MeshplaneError:
                raise
            except Exception as err:
                message = f"{stage} hook failed for {kind}/{name}: {err}"
                raise HookError(message) from err


## Default Hooks ###############################################################

ROUTE_API_VERSION = "route.openshift.io/v1"
ROUTE_KIND = "Route"

KIALI_CONFIG_KEY = "config.yaml"
_GRAFANA_URL_EXPR = re.compile(r"(grafana:\s*url:).*?\n")
_JAEGER_URL_EXPR = re.compile(r"(jaeger:\s*url:).*?\n")


def get_route_host(client: ClusterClientBase, name: str, namespace: str) -> str:
    """Look up the host of a Route. A missing Route gives an empty host."""
    route = client.get(
        api_version=ROUTE_API_VERSION, kind=ROUTE_KIND, name=name, namespace=namespace
    )
    if route is None:
        log.debug2("Route %s/%s not found", namespace, name)
        return ""
    return (route.get("spec") or {}).get("host", "")


class KialiConfigHook:
    """Fills the grafana and jaeger URLs in the kiali ConfigMap from their
    Routes
    """

    def __init__(self, client: ClusterClientBase):
        self._client = client

    def __call__(self, config_map: dict, _instance: Optional[dict] = None):
        data = config_map.get("data") or {}
        config_yaml = data.get(KIALI_CONFIG_KEY)
        if config_yaml is None:
            return
        namespace = config_map.get("metadata", {}).get("namespace", "")

        grafana_host = get_route_host(self._client, "grafana", namespace)
        config_yaml = _GRAFANA_URL_EXPR.sub(
            lambda match: f"{match.group(1)} http://{grafana_host}\n", config_yaml
        )
        jaeger_host = get_route_host(self._client, "jaeger-query", namespace)
        config_yaml = _JAEGER_URL_EXPR.sub(
            lambda match: f"{match.group(1)} https://{jaeger_host}\n", config_yaml
        )

        log.debug2("Updated kiali config with grafana and jaeger urls")
        data[KIALI_CONFIG_KEY] = config_yaml


class KialiOAuthClientHook:
    """Adds the kiali Route URL to the redirect URIs of the kiali
    OAuthClient
    """

    def __init__(self, client: ClusterClientBase):
        self._client = client

    def __call__(self, oauth_client: dict, instance: dict):
        redirect_uris = oauth_client.get("redirectURIs")
        if redirect_uris is None:
            return
        namespace = (instance.get("metadata") or {}).get("namespace", "")
        route = self._client.get(
            api_version=ROUTE_API_VERSION,
            kind=ROUTE_KIND,
            name="kiali",
            namespace=namespace,
        )
        if route is None:
            log.debug2("kiali Route not found in %s", namespace)
            return
        spec = route.get("spec") or {}
        host = spec.get("host")
        if not host:
            raise HookError("could not determine kiali host from its Route")
        scheme = "https" if (spec.get("tls") or {}).get("termination") else "http"
        oauth_client["redirectURIs"] = [f"{scheme}://{host}"] + list(redirect_uris)


def default_hooks(
    client: ClusterClientBase,
    hook_config: Optional[aconfig.Config] = None,
) -> HookRegistry:
    """Build the registry with the hooks every control plane uses

    Args:
        client:  ClusterClientBase
            The client the hooks talk to the cluster with
        hook_config:  Optional[aconfig.Config]
            The library config. Defaults to the global library config.

    Returns:
        registry:  HookRegistry
            The populated registry
    """
    hook_config = hook_config or config
    registry = HookRegistry()
    registry.register_preprocess("", "ConfigMap", KialiConfigHook(client), name="kiali")
    registry.register_preprocess(
        "oauth.openshift.io", "OAuthClient", KialiOAuthClientHook(client), name="kiali"
    )

    grants = CapabilityGrants(client, hook_config.capability_grants or {})
    registry.register_post_create("", "ServiceAccount", grants.grant)
    registry.register_post_delete("", "ServiceAccount", grants.revoke)

    readiness = hook_config.readiness
    if readiness.enabled:
        registry.register_component_hook(
            ALL_COMPONENTS,
            ReadinessWaiter(
                client,
                max_attempts=readiness.max_attempts,
                backoff_seconds=readiness.backoff_seconds,
                backoff_factor=readiness.backoff_factor,
            ),
        )
    return registry
