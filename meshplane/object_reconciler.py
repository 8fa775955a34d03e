"""
The ObjectReconciler brings a single rendered object in line with the cluster
and records the outcome in the status of the object.
"""

# Standard
from typing import Optional, Set
import copy

# First Party
import aconfig
import alog

# Local
from . import config
from .cluster import ClusterClientBase, add_owner_reference
from .constants import (
    KUBE_LIST_KIND,
    KUBERNETES_APP_COMPONENT_KEY,
    KUBERNETES_APP_INSTANCE_KEY,
    KUBERNETES_APP_MANAGED_BY_KEY,
    KUBERNETES_APP_NAME_KEY,
    KUBERNETES_APP_PART_OF_KEY,
    KUBERNETES_APP_VERSION_KEY,
    MESH_GENERATION_KEY,
    OWNER_KEY,
    PROPAGATION_BACKGROUND,
)
from .exceptions import ClusterApiError, aggregate, is_invalid
from .hooks import HookRegistry
from .patch import PatchFactory, set_last_applied
from .status import ComponentStatus, ConditionType, ResourceKey, Status
from .status import update_reconcile_status
from .utils import set_annotation, set_label

log = alog.use_channel("OBJRC")


def get_mesh_generation(instance: dict, operator_version: str) -> str:
    """The mesh generation stamped on every object: the operator version and
    the generation of the control plane
    """
    generation = (instance.get("metadata") or {}).get("generation", 0)
    return f"{operator_version}-{generation}"


class ObjectReconciler:
    """Creates or patches single objects on behalf of a control plane"""

    def __init__(
        self,
        client: ClusterClientBase,
        instance: dict,
        hooks: Optional[HookRegistry] = None,
        patch_factory: Optional[PatchFactory] = None,
        reconcile_config: Optional[aconfig.Config] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client used for all cluster operations
            instance:  dict
                The control plane resource the objects belong to
            hooks:  Optional[HookRegistry]
                The hooks to run around object operations. Defaults to none.
            patch_factory:  Optional[PatchFactory]
                Factory used to compute patches. Defaults to one bound to the
                client.
            reconcile_config:  Optional[aconfig.Config]
                Library config override
        """
        self.client = client
        self.instance = instance
        self.hooks = hooks or HookRegistry()
        self.patch_factory = patch_factory or PatchFactory(client)
        self.config = reconcile_config or config
        self.mesh_generation = get_mesh_generation(
            instance, self.config.operator_version
        )

    def reconcile_object(
        self,
        desired: dict,
        resources_processed: Set[ResourceKey],
        old_component_status: Optional[ComponentStatus],
        new_component_status: ComponentStatus,
    ):
        """Create or patch the desired object and track it in the new component
        status. The status entry is added even when the object fails.

        Args:
            desired:  dict
                The rendered object. It is modified in place with the labels,
                annotations and owner reference added by the reconcile.
            resources_processed:  Set[ResourceKey]
                Keys of every object seen in this pass. The key of the desired
                object is added.
            old_component_status:  Optional[ComponentStatus]
                The status of the component from the previous pass
            new_component_status:  ComponentStatus
                The status of the component being built in this pass

        Raises:
            The error from reconciling the object, or an AggregateError for
            a List whose items failed
        """
        if desired.get("kind") == KUBE_LIST_KIND:
            self._reconcile_list(
                desired, resources_processed, old_component_status, new_component_status
            )
            return

        self._stamp(desired, new_component_status.resource)
        key = ResourceKey.from_object(desired)
        resources_processed.add(key)

        status = None
        if old_component_status is not None:
            status = old_component_status.find_resource_by_key(key)
        status = copy.deepcopy(status) if status is not None else Status(resource=key)
        new_component_status.resources.append(status)

        error = None
        try:
            self.hooks.preprocess(desired, self.instance)
            set_last_applied(desired)
            self._create_or_patch(desired, status)
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Failed to reconcile %s: %s", key, err)
            error = err
        update_reconcile_status(status, error)
        if error is not None:
            raise error

    ## Implementation ##########################################################

    def _reconcile_list(
        self,
        desired: dict,
        resources_processed: Set[ResourceKey],
        old_component_status: Optional[ComponentStatus],
        new_component_status: ComponentStatus,
    ):
        errors = []
        for item in desired.get("items") or []:
            try:
                self.reconcile_object(
                    item,
                    resources_processed,
                    old_component_status,
                    new_component_status,
                )
            except Exception as err:  # pylint: disable=broad-except
                errors.append(err)
        error = aggregate(errors)
        if error is not None:
            raise error

    def _stamp(self, desired: dict, component: str):
        """Add the ownership labels, annotations and owner reference"""
        instance_namespace = (self.instance.get("metadata") or {}).get("namespace", "")
        if (desired.get("metadata") or {}).get("namespace") == instance_namespace:
            add_owner_reference(self.instance, desired)

        labels = {
            KUBERNETES_APP_NAME_KEY: component,
            KUBERNETES_APP_INSTANCE_KEY: instance_namespace,
            KUBERNETES_APP_VERSION_KEY: self.mesh_generation,
            KUBERNETES_APP_COMPONENT_KEY: component,
            KUBERNETES_APP_PART_OF_KEY: self.config.app_part_of,
            KUBERNETES_APP_MANAGED_BY_KEY: self.config.app_managed_by,
            OWNER_KEY: instance_namespace,
        }
        for label, value in labels.items():
            set_label(desired, label, value)
        set_annotation(desired, MESH_GENERATION_KEY, self.mesh_generation)

    def _create_or_patch(self, desired: dict, status: Status):
        key = ResourceKey.from_object(desired)
        current = self.client.get_by_key(key)
        if current is None:
            log.info("Creating %s", key)
            self._create(desired, status)
            return

        patch = self.patch_factory.create_patch(current, desired)
        if patch is None:
            log.debug2("%s is up to date", key)
            return

        log.info("Updating %s", key)
        status.remove_condition(ConditionType.RECONCILED)
        try:
            updated = patch.apply()
        except ClusterApiError as err:
            if not (is_invalid(err) and self.config.recreate_on_invalid_patch):
                raise
            log.info("Patch of %s was rejected. Recreating: %s", key, err)
            self.client.delete_by_key(key, propagation_policy=PROPAGATION_BACKGROUND)
            self._create(desired, status)
            return
        status.observed_generation = (updated.get("metadata") or {}).get(
            "generation", status.observed_generation
        )

    def _create(self, desired: dict, status: Status):
        created = self.client.create(desired)
        status.observed_generation = 1
        try:
            self.hooks.post_create(created, self.instance)
        except Exception as err:  # pylint: disable=broad-except
            log.warning(
                "Post-create hook failed for %s: %s",
                ResourceKey.from_object(desired),
                err,
            )
